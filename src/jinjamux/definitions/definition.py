from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Optional

from jinjamux.definitions.call import CallExpression, check_call_scope, parse_call
from jinjamux.definitions.pattern import RESERVED_SCOPE, RouteLabel, parse_route_label
from jinjamux.errors import DuplicatePatternError, GrammarError

if TYPE_CHECKING:
    from jinjamux.fragments.fragment_set import Fragment
    from jinjamux.hosttypes.signatures import Signature

log = logging.getLogger(__name__)


@dataclass
class EndpointDefinition:
    """One routable fragment. Parsing fills the label; later passes fill the rest."""

    label: RouteLabel
    call: Optional[CallExpression] = None
    source: str = ""
    group: str = ""

    identifier: str = ""
    signature: Optional[Signature] = None
    path_types: dict[str, Any] = field(default_factory=dict)
    can_redirect: bool = False

    @property
    def name(self) -> str:
        return self.label.name

    @property
    def pattern(self) -> str:
        return self.label.pattern

    @property
    def method(self) -> str:
        return self.label.method

    @property
    def host(self) -> str:
        return self.label.host

    @property
    def path(self) -> str:
        return self.label.path

    @property
    def status_code(self) -> int:
        return self.label.status_code

    @property
    def path_params(self) -> list[str]:
        return self.label.path_params

    @property
    def has_response_writer_arg(self) -> bool:
        return self.call is not None and self.call.mentions("response")

    def path_type(self, name: str) -> Any:
        return self.path_types.get(name, str)

    def location(self) -> str:
        return f"{self.source}: {self.name!r}" if self.source else repr(self.name)


def new_definition(name: str, source: str = "", group: str = "") -> Optional[EndpointDefinition]:
    """
    Parse one fragment name. Non-route names give None;
    malformed route labels raise GrammarError.
    """
    label = parse_route_label(name)
    if label is None:
        return None

    call: Optional[CallExpression] = None
    if label.call_text:
        try:
            call = parse_call(label.call_text)
            check_call_scope(call, frozenset(RESERVED_SCOPE) | frozenset(label.path_params))
        except GrammarError as err:
            raise GrammarError(str(err), label=name) from err

    if label.explicit_status and call is not None and call.mentions("response"):
        raise GrammarError(
            "you can not use response as an argument and specify an HTTP status code", label=name
        )

    return EndpointDefinition(label=label, call=call, source=source, group=group)


def build_definitions(fragments: Iterable[Fragment]) -> list[EndpointDefinition]:
    """Parse every fragment name, reject duplicate patterns and return definitions in a stable order."""
    definitions: list[EndpointDefinition] = []
    seen: dict[str, EndpointDefinition] = {}

    for fragment in sorted(fragments, key=lambda f: (f.filename or "", f.name)):
        definition = new_definition(fragment.name, source=fragment.filename or "", group=fragment.group)
        if definition is None:
            log.debug("skipping non-route fragment %r", fragment.name)
            continue
        previous = seen.get(definition.pattern)
        if previous is not None:
            raise DuplicatePatternError(definition.pattern, previous.location(), definition.location())
        seen[definition.pattern] = definition
        definitions.append(definition)

    definitions.sort(key=sort_key)
    return definitions


def sort_key(definition: EndpointDefinition) -> tuple[str, str, str, str]:
    return (definition.path, definition.method, definition.host, definition.name)
