"""Kafka-compatible broker client used by ``produce`` and ``consume`` records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from .config import RunConfig

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BrokerMessage:
    topic: str
    key: Optional[str]
    value: Optional[str]


class BrokerClient(Protocol):
    async def produce(self, topic: str, key: Optional[str], value: Optional[str]) -> None: ...

    async def subscribe(self, topic: str) -> None: ...

    async def poll(self, timeout: float) -> List[BrokerMessage]: ...

    async def close(self) -> None: ...


def _decode(raw: Optional[bytes]) -> Optional[str]:
    if raw is None:
        return None
    return raw.decode("utf-8", errors="replace")


def _encode(text: Optional[str]) -> Optional[bytes]:
    return None if text is None else text.encode("utf-8")


class KafkaBroker:
    """One producer and one consumer per scenario, both created on first use."""

    def __init__(self, config: RunConfig) -> None:
        self.config = config
        self._producer: Optional[AIOKafkaProducer] = None
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._topics: set[str] = set()

    async def produce(self, topic: str, key: Optional[str], value: Optional[str]) -> None:
        if self._producer is None:
            self._producer = AIOKafkaProducer(bootstrap_servers=self.config.broker_bootstrap_servers)
            await self._producer.start()
        await self._producer.send_and_wait(topic, value=_encode(value), key=_encode(key))
        await self._producer.flush()
        log.info("Produced message to topic %s with key %s", topic, key)

    async def subscribe(self, topic: str) -> None:
        if topic in self._topics:
            return
        self._topics.add(topic)
        if self._consumer is None:
            self._consumer = AIOKafkaConsumer(
                bootstrap_servers=self.config.broker_bootstrap_servers,
                group_id=self.config.broker_group_id,
                auto_offset_reset="latest",
            )
            await self._consumer.start()
        self._consumer.subscribe(topics=sorted(self._topics))
        log.debug("Subscribed to topics %s", sorted(self._topics))

    async def poll(self, timeout: float) -> List[BrokerMessage]:
        if self._consumer is None:
            return []
        batches: Dict = await self._consumer.getmany(timeout_ms=int(timeout * 1000))
        messages: List[BrokerMessage] = []
        for partition, records in batches.items():
            for record in records:
                messages.append(BrokerMessage(topic=partition.topic, key=_decode(record.key), value=_decode(record.value)))
        return messages

    async def close(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
        if self._consumer is not None:
            await self._consumer.stop()
            self._consumer = None
        self._topics.clear()
