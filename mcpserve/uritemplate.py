"""URI templates (RFC 6570) used to match resource URIs and extract variables."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import unquote

_UNRESERVED = "-._~"
_RESERVED = ":/?#[]@!$&'()*+,;="
_VARNAME = r"(?:[A-Za-z0-9_]|%[0-9A-Fa-f]{2})(?:\.?(?:[A-Za-z0-9_]|%[0-9A-Fa-f]{2}))*"
_VARSPEC = re.compile(
    rf"(?P<name>{_VARNAME})(?:(?P<explode>\*)|:(?P<prefix>[1-9][0-9]{{0,3}}))?"
)
_RESERVED_OPERATORS = "=,!@|"


@dataclass(frozen=True)
class _Operator:
    first: str
    sep: str
    named: bool
    allow_reserved: bool


_OPERATORS = {
    "": _Operator("", ",", False, False),
    "+": _Operator("", ",", False, True),
    "#": _Operator("#", ",", False, True),
    ".": _Operator(".", ".", False, False),
    "/": _Operator("/", "/", False, False),
    ";": _Operator(";", ";", True, False),
    "?": _Operator("?", "&", True, False),
    "&": _Operator("&", "&", True, False),
}


@dataclass(frozen=True)
class _VarSpec:
    name: str
    explode: bool
    prefix: int | None


@dataclass(frozen=True)
class _Capture:
    group: str
    operator: _Operator
    spec: _VarSpec


class URITemplate:
    """A parsed URI template that can test and decompose concrete URIs."""

    __slots__ = ("raw", "_regex", "_captures")

    def __init__(self, raw: str) -> None:
        self.raw = raw
        pattern, captures = _compile(raw)
        self._regex = re.compile(pattern)
        self._captures = captures

    @property
    def regex(self) -> re.Pattern[str]:
        """The compiled pattern a matching URI must satisfy in full."""
        return self._regex

    def matches(self, uri: str) -> bool:
        """Return True when ``uri`` is an expansion of this template."""
        return self._regex.fullmatch(uri) is not None

    def match(self, uri: str) -> dict[str, list[str]] | None:
        """Return the decoded variable values of ``uri``, or None if it does not match."""
        found = self._regex.fullmatch(uri)
        if found is None:
            return None
        values: dict[str, list[str]] = {}
        for capture in self._captures:
            text = found.group(capture.group)
            if text is not None:
                values[capture.spec.name] = _split_values(text, capture.operator, capture.spec)
        return values

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"URITemplate({self.raw!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, URITemplate):
            return self.raw == other.raw
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.raw)


def _compile(raw: str) -> tuple[str, list[_Capture]]:
    parts: list[str] = []
    captures: list[_Capture] = []
    pos = 0
    while pos < len(raw):
        start = raw.find("{", pos)
        if start < 0:
            parts.append(_literal(raw[pos:], raw))
            break
        if start > pos:
            parts.append(_literal(raw[pos:start], raw))
        end = raw.find("}", start)
        if end < 0:
            raise ValueError(f"unclosed expression in URI template {raw!r}")
        parts.append(_expression(raw[start + 1 : end], captures, raw))
        pos = end + 1
    return "".join(parts), captures


def _literal(text: str, raw: str) -> str:
    if "}" in text:
        raise ValueError(f"unexpected '}}' in URI template {raw!r}")
    return re.escape(text)


def _expression(body: str, captures: list[_Capture], raw: str) -> str:
    op_char = ""
    if body and body[0] in _OPERATORS and body[0] != "":
        op_char, body = body[0], body[1:]
    elif body and body[0] in _RESERVED_OPERATORS:
        raise ValueError(f"unsupported operator {body[0]!r} in URI template {raw!r}")
    if not body:
        raise ValueError(f"empty expression in URI template {raw!r}")
    operator = _OPERATORS[op_char]

    pieces: list[str] = []
    for index, text in enumerate(body.split(",")):
        spec = _parse_varspec(text, raw)
        group = f"v{len(captures)}"
        captures.append(_Capture(group, operator, spec))
        capture = f"(?P<{group}>{_variable_pattern(operator, spec)})"
        if index == 0:
            pieces.append(re.escape(operator.first) + capture)
        else:
            pieces.append(f"(?:{re.escape(operator.sep)}{capture})?")
    return "(?:" + "".join(pieces) + ")?"


def _parse_varspec(text: str, raw: str) -> _VarSpec:
    found = _VARSPEC.fullmatch(text)
    if found is None:
        raise ValueError(f"invalid variable {text!r} in URI template {raw!r}")
    prefix = found.group("prefix")
    return _VarSpec(
        name=found.group("name"),
        explode=found.group("explode") is not None,
        prefix=int(prefix) if prefix else None,
    )


def _variable_pattern(operator: _Operator, spec: _VarSpec) -> str:
    extra = _UNRESERVED + (_RESERVED if operator.allow_reserved else "")
    excluded = {operator.sep, ","}
    chars = "".join(re.escape(c) for c in extra if c not in excluded)
    unit = f"(?:[A-Za-z0-9{chars}]|%[0-9A-Fa-f]{{2}})"
    value = unit + (f"{{0,{spec.prefix}}}" if spec.prefix else "*")
    sep = re.escape(operator.sep)
    if operator.named:
        name = re.escape(spec.name)
        if spec.explode:
            item = f"{name}(?:={value})?"
            return f"{item}(?:{sep}{item})*"
        return f"{name}(?:={value}(?:,{value})*)?"
    if spec.explode:
        return f"{value}(?:{sep}{value})*"
    return f"{value}(?:,{value})*"


def _named_value(item: str, name: str) -> str:
    rest = item[len(name) :]
    return rest[1:] if rest.startswith("=") else rest


def _split_values(text: str, operator: _Operator, spec: _VarSpec) -> list[str]:
    if operator.named:
        if spec.explode:
            return [unquote(_named_value(item, spec.name)) for item in text.split(operator.sep)]
        return [unquote(part) for part in _named_value(text, spec.name).split(",")]
    separator = operator.sep if spec.explode else ","
    return [unquote(part) for part in text.split(separator)]