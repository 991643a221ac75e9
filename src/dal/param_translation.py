"""Rewrite `@Name` parameter markers into driver placeholder styles."""

import re
from typing import Any, Dict, List, Literal, Mapping, Tuple

from common.errors import QueryBuildError
from schema.cells import unwrap

ParamStyle = Literal["dollar", "qmark"]

_NON_WORD = re.compile(r"\W")


def parameter_name(column_name: str) -> str:
    """Return a stable bind-parameter name for a column name."""
    return _NON_WORD.sub("_", column_name)


def bind_parameter(
    params: Dict[str, Any], column_name: str, value: Any, prefix: str = ""
) -> str:
    """Bind `value` under a name derived from `column_name` and return the name.

    Distinct columns can map to the same name (`Unit Price`, `Unit-Price`), and
    markers resolve case-insensitively, so a taken name gets a `_2`, `_3`, ...
    suffix instead of overwriting the earlier value.
    """
    base = prefix + parameter_name(column_name)
    taken = {key.lstrip("@").lower() for key in params}
    name = base
    suffix = 2
    while name.lower() in taken:
        name = f"{base}_{suffix}"
        suffix += 1
    params[name] = value
    return name


def _normalize_keys(params: Mapping[str, Any]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for key, value in params.items():
        normalized[key.lstrip("@")] = unwrap(value)
    return normalized


def _lookup(values: Dict[str, Any], folded: Dict[str, str], name: str) -> Any:
    if name in values:
        return values[name]
    key = folded.get(name.lower())
    if key is None:
        raise QueryBuildError(f"No value supplied for parameter @{name}.")
    return values[key]


def translate_named_params(
    sql: str, params: Mapping[str, Any], style: ParamStyle
) -> Tuple[str, List[Any]]:
    """Translate `@Name` markers to `$n` (dollar) or `?` (qmark) placeholders.

    Markers inside single-quoted literals and double-quoted identifiers are left
    alone. Names resolve exactly first, then case-insensitively. With the dollar
    style a repeated name reuses its position; with qmark every occurrence binds
    its own copy of the value.
    """
    values = _normalize_keys(params or {})
    folded = {key.lower(): key for key in values}
    out: List[str] = []
    bound: List[Any] = []
    positions: Dict[str, int] = {}
    quote = None
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if quote:
            out.append(ch)
            if ch == quote:
                if i + 1 < n and sql[i + 1] == quote:
                    out.append(quote)
                    i += 2
                    continue
                quote = None
            i += 1
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
            i += 1
            continue
        if ch == "@" and i + 1 < n and (sql[i + 1].isalpha() or sql[i + 1] == "_"):
            j = i + 1
            while j < n and (sql[j].isalnum() or sql[j] == "_"):
                j += 1
            name = sql[i + 1 : j]
            value = _lookup(values, folded, name)
            if style == "dollar":
                key = name.lower()
                if key not in positions:
                    bound.append(value)
                    positions[key] = len(bound)
                out.append(f"${positions[key]}")
            else:
                bound.append(value)
                out.append("?")
            i = j
            continue
        out.append(ch)
        i += 1
    return "".join(out), bound
