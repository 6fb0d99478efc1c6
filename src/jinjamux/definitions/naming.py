from __future__ import annotations

import re
from collections import Counter
from types import MappingProxyType
from typing import Mapping, Sequence

from jinjamux.definitions.definition import EndpointDefinition

_VERB_WORDS = {
    "POST": "Create",
    "GET": "Read",
    "PUT": "Replace",
    "PATCH": "Update",
    "DELETE": "Delete",
}

_WORDS = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|[0-9]+")
_NON_WORD = re.compile(r"\W+")


def pascal_case(text: str) -> str:
    """``user-profile`` -> ``UserProfile``, ``userID`` -> ``UserID``."""
    return "".join(w[:1].upper() + w[1:] for w in _WORDS.findall(text))


def snake_case(text: str) -> str:
    """``UserProfile`` -> ``user_profile``, ``user-profile.v2`` -> ``user_profile_v2``."""
    return "_".join(w.lower() for w in _WORDS.findall(text))


def group_identifier(group: str) -> str:
    """Identifier prefix for a fragment file name: ``user-profile.html`` -> ``user_profile``."""
    if not group:
        return ""
    stem = group.rsplit(".", 1)[0] if "." in group.lstrip(".") else group
    ident = snake_case(_NON_WORD.sub(" ", stem))
    if not ident:
        return ""
    if ident[0].isdigit():
        ident = "t" + ident
    return ident


def route_identifier(definition: EndpointDefinition) -> str:
    """Derive a name from the route alone, e.g. ``GET /user/{id}`` -> ``ReadUserById``."""
    label = definition.label
    parts = [_VERB_WORDS.get(label.method, pascal_case(label.method.lower()))]
    params: list[str] = []

    if label.path == "/":
        if label.host:
            parts.append(pascal_case(label.host))
        parts.append("Index")
    else:
        if label.host:
            parts.append(pascal_case(label.host))
        for segment in label.segments:
            if segment.kind == "end":
                parts.append("Index")
            elif segment.kind == "literal":
                parts.append(pascal_case(segment.value.rstrip(".")))
            else:
                params.append(pascal_case(segment.value))

    if params:
        parts.append("By")
        if len(params) > 1:
            params[-1:] = ["And" + params[-1]]
        parts.extend(params)

    ident = "".join(parts) or "Index"
    if ident[0].isdigit():
        ident = "Route" + ident
    return ident


def allocate_identifiers(definitions: Sequence[EndpointDefinition]) -> Mapping[int, str]:
    """
    Assign every definition a distinct identifier, keyed by its index.

    A callee used by exactly one definition names it directly. A callee shared
    by several definitions gives each ``<route identifier>Calling<callee>``.
    Definitions without a call use their route identifier. Anything still
    colliding after that gets a numeric suffix in definition order.
    """
    callee_counts = Counter(d.call.callee for d in definitions if d.call is not None)

    proposed: list[str] = []
    for d in definitions:
        if d.call is None:
            proposed.append(route_identifier(d))
        elif callee_counts[d.call.callee] > 1:
            proposed.append(route_identifier(d) + "Calling" + d.call.callee)
        else:
            proposed.append(d.call.callee)

    table: dict[int, str] = {}
    taken: set[str] = set()
    for i, ident in enumerate(proposed):
        candidate = ident
        n = 2
        while candidate in taken:
            candidate = f"{ident}{n}"
            n += 1
        taken.add(candidate)
        table[i] = candidate
    return MappingProxyType(table)


def assign_identifiers(definitions: Sequence[EndpointDefinition]) -> Mapping[int, str]:
    table = allocate_identifiers(definitions)
    for i, d in enumerate(definitions):
        d.identifier = table[i]
    return table
