"""``${...}`` placeholder substitution for templated record fields."""

from __future__ import annotations

import re
from typing import Mapping, Optional

PARAM_PREFIX = "param."
DATA_PREFIX = "data."

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")

DatasetRow = Mapping[str, str]


class ParameterResolver:
    """Resolve placeholders against static parameters and the current row.

    ``${param.<name>}`` reads the static parameter table and
    ``${data.<column>}`` reads the dataset row. Anything that cannot be
    resolved (unknown names, data lookups without a row) is left in the
    string exactly as written.
    """

    def __init__(self, params: Optional[Mapping[str, str]] = None) -> None:
        self._params = dict(params or {})

    @property
    def params(self) -> Mapping[str, str]:
        return dict(self._params)

    def resolve(self, template: Optional[str], row: Optional[DatasetRow] = None) -> Optional[str]:
        if template is None or "${" not in template:
            return template
        return _PLACEHOLDER.sub(lambda match: self._lookup(match, row), template)

    def resolve_mapping(self, values: Mapping[str, str], row: Optional[DatasetRow] = None) -> dict[str, str]:
        return {key: self.resolve(value, row) for key, value in values.items()}

    def _lookup(self, match: re.Match[str], row: Optional[DatasetRow]) -> str:
        name = match.group(1)
        value: Optional[str] = None
        if name.startswith(PARAM_PREFIX):
            value = self._params.get(name[len(PARAM_PREFIX):])
        elif name.startswith(DATA_PREFIX) and row is not None:
            value = row.get(name[len(DATA_PREFIX):])
        if value is None:
            return match.group(0)
        return str(value)
