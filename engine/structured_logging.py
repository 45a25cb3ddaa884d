"""Structured JSONL event log for interpreter runs."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class LogPaths:
    base: Path
    shots: Path
    events: Path


class StructuredLogger:
    """Writes one JSONL event per executed step or assertion."""

    def __init__(self, run_id: str, paths: LogPaths) -> None:
        self.run_id = run_id
        self.paths = paths
        self._step = 0
        self._events_file = paths.events.open("a", encoding="utf-8")

    def log_event(
        self,
        *,
        test_id: str,
        record: Dict[str, Any],
        description: str,
        ok: bool,
        row: Optional[int] = None,
        attempts: int = 0,
        result: Optional[Dict[str, Any]] = None,
        warnings: Optional[List[str]] = None,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
        selector: Optional[Dict[str, Any]] = None,
    ) -> int:
        self._step += 1
        payload = {
            "ts": time.time(),
            "run_id": self.run_id,
            "step": self._step,
            "test_id": test_id,
            "row": row,
            "index": record.get("index"),
            "record": record,
            "description": description,
            "ok": ok,
            "attempts": attempts,
            "resolved_selector": selector,
            "result": result,
            "warnings": warnings or [],
            "error": error,
            "error_code": error_code,
        }
        self._events_file.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        self._events_file.flush()
        return self._step

    def close(self) -> None:
        if not self._events_file.closed:
            self._events_file.close()


def prepare_log_paths(run_id: str, base_dir: Path) -> LogPaths:
    base_dir.mkdir(parents=True, exist_ok=True)
    shots_dir = base_dir / "shots"
    shots_dir.mkdir(parents=True, exist_ok=True)
    events_file = base_dir / "events.jsonl"
    return LogPaths(base=base_dir, shots=shots_dir, events=events_file)
