from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Optional

from jinja2 import DictLoader, Environment, TemplateNotFound, nodes


@dataclass(frozen=True)
class Fragment:
    name: str
    source: str
    filename: Optional[str] = None

    @property
    def group(self) -> str:
        """Basename of the file the fragment came from; empty when registered programmatically."""
        return os.path.basename(self.filename) if self.filename else ""


class FragmentSet:
    """Read-only view over the templates known to a Jinja environment."""

    def __init__(self, environment: Environment, names: Optional[Iterable[str]] = None) -> None:
        if environment.loader is None:
            raise ValueError("jinja environment has no loader")
        self.environment = environment
        self._names = sorted(set(names) if names is not None else environment.list_templates())
        self._fragments: dict[str, Optional[Fragment]] = {}
        self._trees: dict[str, nodes.Template] = {}

    @classmethod
    def from_mapping(cls, templates: Mapping[str, str]) -> FragmentSet:
        return cls(Environment(loader=DictLoader(dict(templates)), autoescape=True))

    def names(self) -> list[str]:
        return list(self._names)

    def get(self, name: str) -> Optional[Fragment]:
        if name not in self._fragments:
            assert self.environment.loader is not None
            try:
                source, filename, _ = self.environment.loader.get_source(self.environment, name)
            except TemplateNotFound:
                self._fragments[name] = None
            else:
                self._fragments[name] = Fragment(name=name, source=source, filename=filename)
        return self._fragments[name]

    def tree(self, name: str) -> Optional[nodes.Template]:
        """Parsed render tree of ``name``, or None when the environment does not know it."""
        if name not in self._trees:
            fragment = self.get(name)
            if fragment is None:
                return None
            self._trees[name] = self.environment.parse(fragment.source, name, fragment.filename)
        return self._trees[name]

    def __iter__(self) -> Iterator[Fragment]:
        for name in self._names:
            fragment = self.get(name)
            if fragment is not None:
                yield fragment

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __len__(self) -> int:
        return len(self._names)
