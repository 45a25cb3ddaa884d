"""Typed record models for test scripts, waits and locator candidates."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Dict, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

LocatorStrategy = Literal["id", "class", "css", "xpath", "name", "tag", "text", "aria_label"]
CheckCondition = Literal["visible", "enabled", "present"]
ComparisonOperator = Literal["equals", "contains", "true", "false", "greaterThan", "lessThan"]

LOCATOR_STRATEGIES: tuple[str, ...] = LocatorStrategy.__args__  # type: ignore[attr-defined]
CHECK_CONDITIONS: tuple[str, ...] = CheckCondition.__args__  # type: ignore[attr-defined]
COMPARISON_OPERATORS: tuple[str, ...] = ComparisonOperator.__args__  # type: ignore[attr-defined]


class LocatorCandidate(BaseModel):
    """One way of finding a logical element, tried in ascending ``ordinal``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ordinal: int = Field(ge=0)
    strategy: LocatorStrategy
    value: str


# ---------------------------------------------------------------------------
# wait predicates
# ---------------------------------------------------------------------------
class WaitBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    __needs_element__: ClassVar[bool] = True

    timeout: Optional[float] = Field(default=None, gt=0)


class WaitForVisible(WaitBase):
    kind: Literal["visible"] = "visible"


class WaitForClickable(WaitBase):
    kind: Literal["clickable"] = "clickable"


class WaitForPresent(WaitBase):
    kind: Literal["present"] = "present"


class WaitForInvisible(WaitBase):
    kind: Literal["invisible"] = "invisible"


class WaitForStale(WaitBase):
    kind: Literal["stale"] = "stale"


class WaitForUrl(WaitBase):
    __needs_element__ = False

    kind: Literal["url_contains"] = "url_contains"
    fragment: str = Field(validation_alias=AliasChoices("fragment", "contains", "url"))


class WaitForText(WaitBase):
    kind: Literal["text_present"] = "text_present"
    text: str


class WaitForScript(WaitBase):
    """Escape hatch: a script evaluated in the page that must return ``true``."""

    __needs_element__ = False

    kind: Literal["custom"] = "custom"
    script: str


WaitSpec = Annotated[
    Union[
        WaitForVisible,
        WaitForClickable,
        WaitForPresent,
        WaitForInvisible,
        WaitForStale,
        WaitForUrl,
        WaitForText,
        WaitForScript,
    ],
    Field(discriminator="kind"),
]

WAIT_KINDS: tuple[str, ...] = (
    "visible",
    "clickable",
    "present",
    "invisible",
    "stale",
    "url_contains",
    "text_present",
    "custom",
)


# ---------------------------------------------------------------------------
# shared record shape
# ---------------------------------------------------------------------------
class RecordBase(BaseModel):
    """Fields common to action and assertion records."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    __record_name__: ClassVar[str]
    __requires_element__: ClassVar[bool] = False

    index: int = Field(ge=1)
    page: Optional[str] = Field(default=None, validation_alias=AliasChoices("page", "page_id"))
    element: Optional[str] = Field(default=None, validation_alias=AliasChoices("element", "element_id"))
    wait: Optional[WaitSpec] = None
    timeout: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_targets(self) -> "RecordBase":
        if self.__requires_element__ and not (self.page and self.element):
            raise ValueError(f"'{self.__record_name__}' requires both page and element")
        if self.element and not self.page:
            raise ValueError("element given without page")
        if self.wait is not None and self.wait.__needs_element__ and not (self.page and self.element):
            raise ValueError(f"wait '{self.wait.kind}' needs page and element")
        return self

    @property
    def record_name(self) -> str:
        return self.__record_name__

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# actions
# ---------------------------------------------------------------------------
class ActionBase(RecordBase):
    value: Optional[str] = None

    def describe(self) -> str:
        parts = [f"Action {self.index} '{self.record_name}' on page '{self.page or 'N/A'}'"]
        if self.element:
            parts.append(f", element '{self.element}'")
        if self.value is not None:
            parts.append(f" with value '{self.value}'")
        return "".join(parts)


class EnterTextAction(ActionBase):
    __record_name__ = "enter_text"
    __requires_element__ = True

    operation: Literal["enter_text"] = "enter_text"
    value: str = ""


class ClickAction(ActionBase):
    __record_name__ = "click"
    __requires_element__ = True

    operation: Literal["click"] = "click"


class SelectOptionAction(ActionBase):
    __record_name__ = "select_option"
    __requires_element__ = True

    operation: Literal["select_option"] = "select_option"
    value: str


class HoverAction(ActionBase):
    __record_name__ = "hover"
    __requires_element__ = True

    operation: Literal["hover"] = "hover"


class ClearAction(ActionBase):
    __record_name__ = "clear"
    __requires_element__ = True

    operation: Literal["clear"] = "clear"


class SubmitAction(ActionBase):
    __record_name__ = "submit"
    __requires_element__ = True

    operation: Literal["submit"] = "submit"


class DoubleClickAction(ActionBase):
    __record_name__ = "double_click"
    __requires_element__ = True

    operation: Literal["double_click"] = "double_click"


class UploadFileAction(ActionBase):
    __record_name__ = "upload_file"
    __requires_element__ = True

    operation: Literal["upload_file"] = "upload_file"
    value: str = Field(validation_alias=AliasChoices("value", "path"))


class NavigateAction(ActionBase):
    """Optionally click a trigger element, then wait for the target page."""

    __record_name__ = "navigate"

    operation: Literal["navigate"] = "navigate"
    target_page: str = Field(validation_alias=AliasChoices("target_page", "targetPage"))

    def describe(self) -> str:
        return f"{super().describe()}, target page '{self.target_page}'"


class CheckAction(ActionBase):
    """The only branching instruction."""

    __record_name__ = "check"
    __requires_element__ = True

    operation: Literal["check"] = "check"
    condition: CheckCondition
    if_true_next: int = Field(ge=1, validation_alias=AliasChoices("if_true_next", "ifTrueNext"))
    if_false_next: int = Field(ge=1, validation_alias=AliasChoices("if_false_next", "ifFalseNext"))

    def next_index(self, condition_met: bool) -> int:
        return self.if_true_next if condition_met else self.if_false_next


class SaveStateAction(ActionBase):
    __record_name__ = "save_state"

    operation: Literal["save_state"] = "save_state"
    state_key: str = Field(validation_alias=AliasChoices("state_key", "stateKey"))


class LoadStateAction(ActionBase):
    __record_name__ = "load_state"

    operation: Literal["load_state"] = "load_state"
    state_key: str = Field(validation_alias=AliasChoices("state_key", "stateKey"))


class ProduceAction(ActionBase):
    __record_name__ = "produce"

    operation: Literal["produce"] = "produce"
    topic: str
    key: Optional[str] = None
    message: Optional[str] = Field(default=None, validation_alias=AliasChoices("message", "payload"))


class ConsumeAction(ActionBase):
    __record_name__ = "consume"

    operation: Literal["consume"] = "consume"
    topic: str
    key: str
    value_contains: Optional[str] = Field(default=None, validation_alias=AliasChoices("value_contains", "valueContains"))


class HttpCallAction(ActionBase):
    __record_name__ = "http_call"

    operation: Literal["http_call"] = "http_call"
    method: str = "GET"
    url: str
    body: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    def describe(self) -> str:
        return f"Action {self.index} 'http_call' {self.method.upper()} {self.url}"


ActionRecord = Union[
    EnterTextAction,
    ClickAction,
    SelectOptionAction,
    HoverAction,
    ClearAction,
    SubmitAction,
    DoubleClickAction,
    UploadFileAction,
    NavigateAction,
    CheckAction,
    SaveStateAction,
    LoadStateAction,
    ProduceAction,
    ConsumeAction,
    HttpCallAction,
]


# ---------------------------------------------------------------------------
# assertions
# ---------------------------------------------------------------------------
class AssertionBase(RecordBase):
    expected: Optional[str] = Field(default=None, validation_alias=AliasChoices("expected", "value"))
    operator: ComparisonOperator = Field(validation_alias=AliasChoices("operator", "condition"))

    def describe(self) -> str:
        parts = [f"Assertion {self.index} '{self.record_name}' on page '{self.page or 'N/A'}'"]
        if self.element:
            parts.append(f", element '{self.element}'")
        parts.append(f" with expected value '{self.expected}' and operator '{self.operator}'")
        return "".join(parts)


class UrlAssertion(AssertionBase):
    __record_name__ = "url"

    assertion_type: Literal["url"] = "url"


class VisibleAssertion(AssertionBase):
    __record_name__ = "visible"
    __requires_element__ = True

    assertion_type: Literal["visible"] = "visible"


class EnabledAssertion(AssertionBase):
    __record_name__ = "enabled"
    __requires_element__ = True

    assertion_type: Literal["enabled"] = "enabled"


class TextAssertion(AssertionBase):
    __record_name__ = "text"
    __requires_element__ = True

    assertion_type: Literal["text"] = "text"


class AttributeAssertion(AssertionBase):
    __record_name__ = "attribute"
    __requires_element__ = True

    assertion_type: Literal["attribute"] = "attribute"
    attribute_name: str = Field(validation_alias=AliasChoices("attribute_name", "attributeName"))


class CountAssertion(AssertionBase):
    __record_name__ = "count"
    __requires_element__ = True

    assertion_type: Literal["count"] = "count"


AssertionRecord = Union[
    UrlAssertion,
    VisibleAssertion,
    EnabledAssertion,
    TextAssertion,
    AttributeAssertion,
    CountAssertion,
]
