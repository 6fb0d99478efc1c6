from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from jinja2 import BaseLoader, Environment, TemplateNotFound

from jinjamux.errors import FragmentDefinitionError

_DEFINE = re.compile(r"\{#-?\s*define\s+(?P<q>[\"'])(?P<name>.+?)(?P=q)\s*-?#\}")
_END = re.compile(r"\{#-?\s*end\s*-?#\}")

SourceTuple = tuple[str, Optional[str], Optional[Callable[[], bool]]]


def split_fragments(source: str, filename: str = "") -> dict[str, str]:
    """
    Cut ``{# define "NAME" #} ... {# end #}`` blocks out of a template file.

    The markers are Jinja comments, so the file stays a valid template on its own.
    Blocks do not nest.
    """
    out: dict[str, str] = {}
    pos = 0
    while True:
        start = _DEFINE.search(source, pos)
        if start is None:
            break
        end = _END.search(source, start.end())
        if end is None:
            raise FragmentDefinitionError(f"{filename}: define {start.group('name')!r} has no end marker")
        nested = _DEFINE.search(source, start.end(), end.start())
        if nested is not None:
            raise FragmentDefinitionError(
                f"{filename}: define {nested.group('name')!r} nested inside {start.group('name')!r}"
            )
        name = start.group("name")
        if name in out:
            raise FragmentDefinitionError(f"{filename}: fragment {name!r} defined more than once")
        out[name] = source[start.end():end.start()]
        pos = end.end()
    return out


class FragmentFileLoader(BaseLoader):
    """
    Load templates from files under ``root``.

    Every file is available under its relative POSIX path, and every
    ``define`` block inside it under the block's name. The source filename
    returned for a block is the file that holds it.
    """

    def __init__(
        self,
        root: Union[str, Path],
        patterns: Iterable[str] = ("*.html", "*.jinja", "*.j2"),
        encoding: str = "utf-8",
    ) -> None:
        self.root = Path(root)
        self.patterns = tuple(patterns)
        self.encoding = encoding
        self._index: Optional[dict[str, tuple[Path, Optional[str]]]] = None

    def _files(self) -> list[Path]:
        found: set[Path] = set()
        for pattern in self.patterns:
            found.update(p for p in self.root.rglob(pattern) if p.is_file())
        return sorted(found)

    def _build_index(self) -> dict[str, tuple[Path, Optional[str]]]:
        index: dict[str, tuple[Path, Optional[str]]] = {}
        for path in self._files():
            rel = path.relative_to(self.root).as_posix()
            index[rel] = (path, None)
            text = path.read_text(encoding=self.encoding)
            for name in split_fragments(text, filename=str(path)):
                if name in index:
                    other = index[name][0]
                    raise FragmentDefinitionError(f"fragment {name!r} defined in both {other} and {path}")
                index[name] = (path, name)
        return index

    def index(self) -> dict[str, tuple[Path, Optional[str]]]:
        if self._index is None:
            self._index = self._build_index()
        return self._index

    def get_source(self, environment: Environment, template: str) -> SourceTuple:
        entry = self.index().get(template)
        if entry is None:
            raise TemplateNotFound(template)
        path, block = entry
        text = path.read_text(encoding=self.encoding)
        if block is not None:
            text = split_fragments(text, filename=str(path))[block]
        mtime = os.path.getmtime(path)

        def uptodate() -> bool:
            try:
                return os.path.getmtime(path) == mtime
            except OSError:
                return False

        return text, os.path.normpath(str(path)), uptodate

    def list_templates(self) -> list[str]:
        return sorted(self.index())
