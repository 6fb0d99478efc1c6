from __future__ import annotations

import logging
from typing import Iterable, Optional

from jinja2 import nodes

from jinjamux.definitions.definition import EndpointDefinition
from jinjamux.fragments.fragment_set import FragmentSet

log = logging.getLogger(__name__)

# Name the per-request TemplateData is bound to while rendering.
CARRIER = "data"

# TemplateData accessors that can never trigger a redirect.
SAFE_ACCESSORS = frozenset(
    {"result", "err", "request", "receiver", "ok", "path", "status_code", "header", "version"}
)

_CALLABLE_NODES = (nodes.Call, nodes.Filter, nodes.Test)
_TEMPLATE_REFS = (nodes.Include, nodes.Import, nodes.FromImport, nodes.Extends)


def annotate_redirects(definitions: Iterable[EndpointDefinition], fragments: FragmentSet) -> None:
    for definition in definitions:
        definition.can_redirect = can_redirect(fragments, definition.name, frozenset())
        if definition.can_redirect:
            log.debug("%r may redirect", definition.name)


def can_redirect(fragments: FragmentSet, name: str, visited: frozenset[str]) -> bool:
    """
    Whether rendering template ``name`` may call ``data.redirect``.

    ``visited`` holds the templates on the current include path. Anything the
    walk cannot prove harmless counts as a possible redirect.
    """
    if name in visited:
        return False
    tree = fragments.tree(name)
    if tree is None:
        return False
    return node_can_redirect(tree, fragments, visited | {name})


def node_can_redirect(node: nodes.Node, fragments: FragmentSet, visited: frozenset[str]) -> bool:
    if isinstance(node, nodes.Getattr):
        if node.attr == "redirect":
            return True
        if _is_carrier(node.node) and node.attr not in SAFE_ACCESSORS:
            return True

    elif isinstance(node, nodes.Getitem) and _is_carrier(node.node):
        key = node.arg
        if not isinstance(key, nodes.Const) or key.value == "redirect" or key.value not in SAFE_ACCESSORS:
            return True

    elif isinstance(node, _CALLABLE_NODES):
        if isinstance(node, (nodes.Filter, nodes.Test)) and node.node is not None and _is_carrier(node.node):
            return True
        for arg in _call_arguments(node):
            if _is_carrier(arg) or _is_chain_on_call(arg):
                return True

    elif isinstance(node, nodes.Assign):
        if _is_carrier(node.node):
            return True

    elif isinstance(node, nodes.With):
        if any(_is_carrier(v) for v in node.values):
            return True

    elif isinstance(node, nodes.For):
        if _is_carrier(node.iter):
            return True

    elif isinstance(node, _TEMPLATE_REFS):
        names = _template_names(node.template)
        if names is None:
            return True
        if any(can_redirect(fragments, n, visited) for n in names):
            return True

    return any(node_can_redirect(child, fragments, visited) for child in node.iter_child_nodes())


def _is_carrier(node: Optional[nodes.Node]) -> bool:
    return isinstance(node, nodes.Name) and node.name == CARRIER


def _is_chain_on_call(node: nodes.Node) -> bool:
    """``f(x).a.b`` style chains whose root is a call result."""
    if not isinstance(node, (nodes.Getattr, nodes.Getitem)):
        return False
    while isinstance(node, (nodes.Getattr, nodes.Getitem)):
        node = node.node
    return isinstance(node, nodes.Call)


def _call_arguments(node: nodes.Call | nodes.Filter | nodes.Test) -> list[nodes.Node]:
    args: list[nodes.Node] = list(node.args)
    args.extend(kw.value for kw in node.kwargs)
    if node.dyn_args is not None:
        args.append(node.dyn_args)
    if node.dyn_kwargs is not None:
        args.append(node.dyn_kwargs)
    return args


def _template_names(node: nodes.Expr) -> Optional[list[str]]:
    """Constant template names referenced by an include/import/extends; None when not constant."""
    if isinstance(node, nodes.Const) and isinstance(node.value, str):
        return [node.value]
    if isinstance(node, (nodes.List, nodes.Tuple)):
        names: list[str] = []
        for item in node.items:
            if not (isinstance(item, nodes.Const) and isinstance(item.value, str)):
                return None
            names.append(item.value)
        return names
    return None
