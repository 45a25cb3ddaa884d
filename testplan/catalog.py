"""Test catalog: pages, locator candidates, scripts, datasets and parameters.

The catalog is read once per scenario from a TOML document::

    [params]
    password = "s3cret"

    [pages.login]
    path = "/login"

    [pages.login.elements.username]
    locators = [
        { strategy = "id", value = "user" },
        { strategy = "css", value = "input[name='user']" },
    ]

    [tests.login_ok]
    data_file = "data/users.csv"
    start_page = "login"

    [[tests.login_ok.actions]]
    index = 1
    operation = "enter_text"
    page = "login"
    element = "username"
    value = "${data.user}"

Dataset files are CSV (header row) or JSON (list of objects).
"""

from __future__ import annotations

import csv
import json
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from engine.errors import ConfigurationError

from .dsl.models import CheckAction, LocatorCandidate, NavigateAction
from .dsl.registry import TestScript, parse_candidate

DatasetRow = Dict[str, str]


class PageDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    page_id: str
    path: str = ""
    elements: Dict[str, Tuple[LocatorCandidate, ...]] = Field(default_factory=dict)

    def candidates(self, element_id: str) -> Tuple[LocatorCandidate, ...]:
        try:
            return self.elements[element_id]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown element '{element_id}' on page '{self.page_id}'") from exc


class TestDefinition(BaseModel):
    __test__ = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    test_id: str
    script: TestScript
    data_file: Optional[str] = None
    dataset: Optional[Tuple[DatasetRow, ...]] = None
    start_page: Optional[str] = None
    reset_session_per_row: bool = False


class TestCatalog(BaseModel):
    """Immutable view over everything the interpreter reads from configuration."""

    __test__ = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    pages: Dict[str, PageDefinition] = Field(default_factory=dict)
    tests: Dict[str, TestDefinition] = Field(default_factory=dict)
    params: Dict[str, str] = Field(default_factory=dict)

    def page(self, page_id: str) -> PageDefinition:
        try:
            return self.pages[page_id]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown page '{page_id}'") from exc

    def test(self, test_id: str) -> TestDefinition:
        try:
            return self.tests[test_id]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown test '{test_id}'") from exc

    def candidates(self, page_id: str, element_id: str) -> Tuple[LocatorCandidate, ...]:
        return self.page(page_id).candidates(element_id)

    def page_path(self, page_id: str) -> str:
        return self.page(page_id).path

    def dataset(self, test_id: str) -> Optional[List[DatasetRow]]:
        rows = self.test(test_id).dataset
        return None if rows is None else [dict(row) for row in rows]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], base_dir: Optional[Path] = None) -> "TestCatalog":
        base_dir = base_dir or Path.cwd()
        pages = {
            page_id: _build_page(page_id, page_data)
            for page_id, page_data in (data.get("pages") or {}).items()
        }
        tests = {
            test_id: _build_test(test_id, test_data, base_dir)
            for test_id, test_data in (data.get("tests") or {}).items()
        }
        params = {str(key): str(value) for key, value in (data.get("params") or {}).items()}
        catalog = cls(pages=pages, tests=tests, params=params)
        catalog._check_references()
        return catalog

    def _check_references(self) -> None:
        for definition in self.tests.values():
            if definition.start_page:
                self.page(definition.start_page)
            for record in (*definition.script.actions, *definition.script.assertions):
                if record.page:
                    page = self.page(record.page)
                    if record.element:
                        page.candidates(record.element)
                if isinstance(record, NavigateAction):
                    self.page(record.target_page)
                if isinstance(record, CheckAction) and record.element is None:
                    raise ConfigurationError(f"Check at index {record.index} has no element")


def _build_page(page_id: str, data: Mapping[str, Any]) -> PageDefinition:
    elements: Dict[str, Tuple[LocatorCandidate, ...]] = {}
    for element_id, element_data in (data.get("elements") or {}).items():
        raw_candidates = element_data.get("locators") if isinstance(element_data, Mapping) else element_data
        if not raw_candidates:
            raise ConfigurationError(f"Element '{element_id}' on page '{page_id}' has no locators")
        parsed = []
        for position, entry in enumerate(raw_candidates):
            entry = dict(entry)
            entry.setdefault("ordinal", position)
            parsed.append(parse_candidate(entry))
        elements[element_id] = tuple(sorted(parsed, key=lambda candidate: candidate.ordinal))
    return PageDefinition(page_id=page_id, path=str(data.get("path", "")), elements=elements)


def _build_test(test_id: str, data: Mapping[str, Any], base_dir: Path) -> TestDefinition:
    script = TestScript.model_validate(
        {
            "test_id": test_id,
            "actions": list(data.get("actions") or []),
            "assertions": list(data.get("assertions") or []),
        }
    )
    data_file = data.get("data_file")
    dataset = None
    if data_file:
        dataset = tuple(load_dataset(base_dir / data_file))
    return TestDefinition(
        test_id=test_id,
        script=script,
        data_file=data_file,
        dataset=dataset,
        start_page=data.get("start_page"),
        reset_session_per_row=bool(data.get("reset_session_per_row", False)),
    )


def load_dataset(path: Path) -> List[DatasetRow]:
    """Read a tabular dataset; every value becomes a string."""

    if not path.exists():
        raise ConfigurationError(f"Dataset file not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".csv":
        with path.open("r", encoding="utf-8", newline="") as fh:
            return [
                {str(key): "" if value is None else str(value) for key, value in row.items()}
                for row in csv.DictReader(fh)
            ]
    if suffix == ".json":
        with path.open("r", encoding="utf-8") as fh:
            rows = json.load(fh)
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise ConfigurationError(f"JSON dataset must be a list of objects: {path}")
        return [{str(key): str(value) for key, value in row.items()} for row in rows]
    raise ConfigurationError(f"Unsupported data file format: {path}")


def load_catalog(path: Path) -> TestCatalog:
    """Load a TOML catalog; dataset paths are relative to the catalog file."""

    if not path.exists():
        raise ConfigurationError(f"Catalog file not found: {path}")
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    return TestCatalog.from_mapping(data, base_dir=path.parent)
