from __future__ import annotations

import keyword
import logging
import re
from dataclasses import dataclass
from http import HTTPStatus
from typing import Literal, Optional

from jinjamux.errors import GrammarError

log = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

# Names every generated handler or routes function already binds.
RESERVED_SCOPE = ("ctx", "request", "response", "form")
GENERATED_NAMES = ("receiver", "logger", "paths_prefix")

SegmentKind = Literal["literal", "param", "wildcard", "end"]

_LABEL = re.compile(
    r"^(?:(?P<method>[A-Za-z]+)\s+)?"
    r"(?P<host>[^/\s]*)"
    r"(?P<path>/\S*)"
    r"(?:\s+(?P<status>\d\S*|(?:http\.)?HTTPStatus\.\S+))?"
    r"(?P<call>\s+.*)?$",
    re.DOTALL,
)
_HOST = re.compile(r"^(?:[a-z0-9-]+\.)+[a-z0-9-]+(?::\d+)?$|^[a-z0-9-]+:\d+$")
_PARAM = re.compile(r"^\{(?P<name>[^{}]*?)(?P<wildcard>\.\.\.)?\}$")
_SPACES = re.compile(r"\s+")


@dataclass(frozen=True)
class PathSegment:
    kind: SegmentKind
    value: str  # literal text or parameter name

    def __str__(self) -> str:
        if self.kind == "literal":
            return self.value
        if self.kind == "end":
            return "{$}"
        if self.kind == "wildcard":
            return "{" + self.value + "...}"
        return "{" + self.value + "}"


@dataclass(frozen=True)
class RouteLabel:
    name: str
    method: str
    host: str
    path: str
    segments: tuple[PathSegment, ...]
    status_code: int
    explicit_status: bool
    call_text: str

    @property
    def pattern(self) -> str:
        route = self.host + self.path
        return f"{self.method} {route}" if self.method else route

    @property
    def path_params(self) -> list[str]:
        return [s.value for s in self.segments if s.kind in ("param", "wildcard")]

    @property
    def exact(self) -> bool:
        """True for paths ending in ``{$}``."""
        return bool(self.segments) and self.segments[-1].kind == "end"

    @property
    def subtree(self) -> bool:
        """True for paths ending in a slash without ``{$}``; they match every path below."""
        return self.path.endswith("/")


def normalize_label(name: str) -> str:
    return _SPACES.sub(" ", name.strip())


def match_label(name: str) -> Optional[re.Match[str]]:
    m = _LABEL.match(normalize_label(name))
    if m is None:
        return None
    host = m.group("host")
    # "partials/nav.html" style template names are not routes.
    if host and not _HOST.match(host.lower()):
        log.debug("%r is not a route: host %r has neither a dot nor a port", name, host)
        return None
    return m


def parse_route_label(name: str) -> Optional[RouteLabel]:
    """
    Parse a fragment name such as ``GET example.com/user/{id} 200 GetUser(ctx, id)``.
    Returns None when the name is not a route label at all.
    """
    m = match_label(name)
    if m is None:
        return None

    method = (m.group("method") or "").upper()
    if method and method not in HTTP_METHODS:
        raise GrammarError(f"{method} method not allowed", label=name)

    host = m.group("host").lower()
    path = m.group("path")
    segments = parse_path(path, label=name)

    status_text = m.group("status")
    status_code = parse_status(status_text, label=name) if status_text else int(HTTPStatus.OK)

    call_text = (m.group("call") or "").strip()

    return RouteLabel(
        name=name,
        method=method,
        host=host,
        path=path,
        segments=segments,
        status_code=status_code,
        explicit_status=status_text is not None,
        call_text=call_text,
    )


def parse_status(text: str, label: str = "") -> int:
    if text[0].isdigit():
        try:
            code = int(text, 10)
        except ValueError:
            raise GrammarError(f"failed to parse status code {text!r}", label=label) from None
        if not 100 <= code <= 999:
            raise GrammarError(f"status code {code} out of range", label=label)
        return code
    constant = text.removeprefix("http.").removeprefix("HTTPStatus.")
    try:
        return int(HTTPStatus[constant])
    except KeyError:
        raise GrammarError(f"unknown HTTPStatus constant {text}", label=label) from None


def parse_path(path: str, label: str = "") -> tuple[PathSegment, ...]:
    parts = path.split("/")[1:]
    segments: list[PathSegment] = []
    for i, part in enumerate(parts):
        last = i == len(parts) - 1
        if part == "":
            if last:
                # trailing slash: subtree route
                continue
            raise GrammarError("template has an empty path segment", label=label)
        if "{" not in part and "}" not in part:
            segments.append(PathSegment("literal", part))
            continue
        m = _PARAM.match(part)
        if m is None:
            raise GrammarError(f"bad wildcard segment {part!r}: must be a whole segment", label=label)
        name = m.group("name")
        if name == "$":
            if not last or m.group("wildcard"):
                raise GrammarError("{$} not at end", label=label)
            segments.append(PathSegment("end", "$"))
            continue
        if m.group("wildcard"):
            if not last:
                raise GrammarError(f"{{{name}...}} wildcard not at end", label=label)
            segments.append(PathSegment("wildcard", name))
            continue
        segments.append(PathSegment("param", name))

    check_path_params([s.value for s in segments if s.kind in ("param", "wildcard")], label=label)
    return tuple(segments)


def check_path_params(names: list[str], label: str = "") -> None:
    seen: set[str] = set()
    for name in names:
        if not name.isidentifier() or keyword.iskeyword(name):
            raise GrammarError(
                f"path parameter name not permitted: {name!r} is not a Python identifier", label=label
            )
        if name.startswith("_"):
            raise GrammarError(
                f"path parameter name not permitted: {name!r} must not start with an underscore", label=label
            )
        if name == "self":
            raise GrammarError("path parameter name not permitted: self names the URL builder instance", label=label)
        if name in RESERVED_SCOPE or name in GENERATED_NAMES:
            raise GrammarError(
                f"the name {name} is not allowed as a path parameter it is already in scope", label=label
            )
        if name in seen:
            raise GrammarError(f"forbidden repeated path parameter names: {name}", label=label)
        seen.add(name)
