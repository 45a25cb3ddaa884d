"""Typed record registries and the validated test script container."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from engine.errors import (
    ConfigurationError,
    UnsupportedAssertion,
    UnsupportedCondition,
    UnsupportedLocatorStrategy,
    UnsupportedOperation,
    UnsupportedWait,
)

from .models import (
    CHECK_CONDITIONS,
    COMPARISON_OPERATORS,
    LOCATOR_STRATEGIES,
    WAIT_KINDS,
    ActionBase,
    AssertionBase,
    AttributeAssertion,
    CheckAction,
    ClearAction,
    ClickAction,
    ConsumeAction,
    CountAssertion,
    DoubleClickAction,
    EnabledAssertion,
    EnterTextAction,
    HoverAction,
    HttpCallAction,
    LoadStateAction,
    LocatorCandidate,
    NavigateAction,
    ProduceAction,
    RecordBase,
    SaveStateAction,
    SelectOptionAction,
    SubmitAction,
    TextAssertion,
    UploadFileAction,
    UrlAssertion,
    VisibleAssertion,
)

# Tag spellings used by older catalogs.
OPERATION_ALIASES: Dict[str, str] = {
    "enter": "enter_text",
    "type": "enter_text",
    "select": "select_option",
    "doubleClick": "double_click",
    "uploadFile": "upload_file",
    "saveState": "save_state",
    "loadState": "load_state",
    "kafkaProduce": "produce",
    "kafkaConsume": "consume",
    "restCall": "http_call",
}

WAIT_ALIASES: Dict[str, str] = {
    "url.contains": "url_contains",
    "text.present": "text_present",
    "staleness": "stale",
}

OPERATOR_ALIASES: Dict[str, str] = {
    "greater_than": "greaterThan",
    "less_than": "lessThan",
}

R = TypeVar("R", bound=RecordBase)


@dataclass(slots=True)
class RecordSpec:
    name: str
    model: Type[RecordBase]
    description: str | None = None

    def to_metadata(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description or ""}


class RecordRegistry:
    """Registry turning raw catalog mappings into typed record variants."""

    def __init__(
        self,
        *,
        tag_field: str,
        unsupported: Type[ConfigurationError],
        aliases: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.tag_field = tag_field
        self._unsupported = unsupported
        self._aliases = dict(aliases or {})
        self._records: Dict[str, RecordSpec] = {}
        self._adapter: Optional[TypeAdapter[Any]] = None

    def register(self, model: Type[R], *, description: str | None = None) -> Type[R]:
        if not issubclass(model, RecordBase):
            raise TypeError("model must subclass RecordBase")
        name = model.__record_name__
        self._records[name] = RecordSpec(name=name, model=model, description=description)
        self._adapter = None
        return model

    def get(self, name: str) -> RecordSpec:
        try:
            return self._records[self._aliases.get(name, name)]
        except KeyError as exc:
            raise self._unsupported(f"Unsupported {self.tag_field}: {name}") from exc

    def __contains__(self, name: str) -> bool:  # pragma: no cover - trivial
        return self._aliases.get(name, name) in self._records

    def __iter__(self) -> Iterator[RecordSpec]:  # pragma: no cover - trivial
        return iter(self._records.values())

    def parse(self, data: Mapping[str, Any]) -> RecordBase:
        if isinstance(data, RecordBase):
            return data
        raw = dict(data)
        tag = raw.get(self.tag_field)
        if tag is None:
            raise ConfigurationError(f"Record is missing '{self.tag_field}': {raw}")
        spec = self.get(str(tag))
        raw[self.tag_field] = spec.name
        raw = _normalize_common(raw)
        try:
            return spec.model.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid {spec.name} record at index {raw.get('index')}: {exc}",
                details={"record": raw},
            ) from exc

    def schema(self) -> Dict[str, Any]:
        return {name: spec.to_metadata() for name, spec in self._records.items()}


def _normalize_common(raw: Dict[str, Any]) -> Dict[str, Any]:
    wait = raw.get("wait")
    if isinstance(wait, str):
        wait = {"kind": wait}
    if isinstance(wait, Mapping):
        wait = dict(wait)
        kind = wait.get("kind")
        kind = WAIT_ALIASES.get(kind, kind)
        if kind not in WAIT_KINDS:
            raise UnsupportedWait(f"Unsupported wait: {wait.get('kind')}")
        wait["kind"] = kind
        raw["wait"] = wait
    if "condition" in raw and "operation" in raw:
        if raw["condition"] not in CHECK_CONDITIONS:
            raise UnsupportedCondition(f"Unsupported condition: {raw['condition']}")
    for key in ("operator", "condition"):
        if key in raw and "assertion_type" in raw:
            operator = OPERATOR_ALIASES.get(raw[key], raw[key])
            if operator not in COMPARISON_OPERATORS:
                raise UnsupportedCondition(f"Unsupported condition: {raw[key]}")
            raw[key] = operator
    if raw.get("index") is not None:
        raw["index"] = int(raw["index"])
    return raw


def parse_candidate(data: Mapping[str, Any]) -> LocatorCandidate:
    if isinstance(data, LocatorCandidate):
        return data
    strategy = data.get("strategy") or data.get("type")
    if strategy not in LOCATOR_STRATEGIES:
        raise UnsupportedLocatorStrategy(f"Unsupported locator type: {strategy}")
    try:
        return LocatorCandidate(
            ordinal=int(data.get("ordinal", data.get("index", 0))),
            strategy=strategy,
            value=str(data["value"]),
        )
    except (KeyError, ValueError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid locator candidate: {dict(data)}") from exc


operations = RecordRegistry(tag_field="operation", unsupported=UnsupportedOperation, aliases=OPERATION_ALIASES)
operations.register(EnterTextAction, description="Type text into a field and confirm its value")
operations.register(ClickAction)
operations.register(SelectOptionAction, description="Select an option by visible text")
operations.register(HoverAction)
operations.register(ClearAction)
operations.register(SubmitAction)
operations.register(DoubleClickAction)
operations.register(UploadFileAction)
operations.register(NavigateAction)
operations.register(CheckAction, description="Conditional jump")
operations.register(SaveStateAction)
operations.register(LoadStateAction)
operations.register(ProduceAction)
operations.register(ConsumeAction)
operations.register(HttpCallAction)

assertions = RecordRegistry(tag_field="assertion_type", unsupported=UnsupportedAssertion)
assertions.register(UrlAssertion)
assertions.register(VisibleAssertion)
assertions.register(EnabledAssertion)
assertions.register(TextAssertion)
assertions.register(AttributeAssertion)
assertions.register(CountAssertion)


def _ordered(records: List[RecordBase], kind: str, test_id: str) -> Tuple[RecordBase, ...]:
    ordered = sorted(records, key=lambda record: record.index)
    for position, record in enumerate(ordered, start=1):
        if record.index != position:
            raise ConfigurationError(
                f"Test '{test_id}' {kind} indices must be contiguous from 1; "
                f"expected {position}, found {record.index}"
            )
    return tuple(ordered)


class TestScript(BaseModel):
    """Actions and assertions of one test, validated and ordered by index."""

    __test__ = False  # keep pytest from collecting this class

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    test_id: str
    actions: Tuple[ActionBase, ...] = Field(default_factory=tuple)
    assertions: Tuple[AssertionBase, ...] = Field(default_factory=tuple)

    @model_validator(mode="before")
    @classmethod
    def _coerce_records(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        value = dict(value)
        test_id = str(value.get("test_id", "?"))
        parsed_actions = [operations.parse(entry) for entry in value.get("actions", ())]
        parsed_assertions = [assertions.parse(entry) for entry in value.get("assertions", ())]
        value["actions"] = _ordered(parsed_actions, "action", test_id)
        value["assertions"] = _ordered(parsed_assertions, "assertion", test_id)
        return value

    def __len__(self) -> int:
        return len(self.actions)

    def branch_targets(self) -> List[int]:
        return [
            target
            for action in self.actions
            if isinstance(action, CheckAction)
            for target in (action.if_true_next, action.if_false_next)
        ]
