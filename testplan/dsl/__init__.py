"""Typed records for indexed action/assertion scripts."""

from .models import (
    ActionBase,
    ActionRecord,
    AssertionBase,
    AssertionRecord,
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
    WaitForClickable,
    WaitForInvisible,
    WaitForPresent,
    WaitForScript,
    WaitForStale,
    WaitForText,
    WaitForUrl,
    WaitForVisible,
    WaitSpec,
)
from .registry import TestScript, assertions, operations, parse_candidate
from .resolution import CandidateAttempt, ResolvedElement

__all__ = [
    "ActionBase",
    "ActionRecord",
    "AssertionBase",
    "AssertionRecord",
    "AttributeAssertion",
    "CandidateAttempt",
    "CheckAction",
    "ClearAction",
    "ClickAction",
    "ConsumeAction",
    "CountAssertion",
    "DoubleClickAction",
    "EnabledAssertion",
    "EnterTextAction",
    "HoverAction",
    "HttpCallAction",
    "LoadStateAction",
    "LocatorCandidate",
    "NavigateAction",
    "ProduceAction",
    "RecordBase",
    "ResolvedElement",
    "SaveStateAction",
    "SelectOptionAction",
    "SubmitAction",
    "TestScript",
    "TextAssertion",
    "UploadFileAction",
    "UrlAssertion",
    "VisibleAssertion",
    "WaitForClickable",
    "WaitForInvisible",
    "WaitForPresent",
    "WaitForScript",
    "WaitForStale",
    "WaitForText",
    "WaitForUrl",
    "WaitForVisible",
    "WaitSpec",
    "assertions",
    "operations",
    "parse_candidate",
]
