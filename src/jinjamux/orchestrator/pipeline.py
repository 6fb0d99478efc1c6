from __future__ import annotations

import importlib
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Optional

from jinja2 import Environment

from jinjamux.codegen.routes_file import RoutesModule, generate_routes_module
from jinjamux.domain.models import RoutesConfig
from jinjamux.errors import GenerationError
from jinjamux.fragments.fragment_set import FragmentSet
from jinjamux.hosttypes.types import HostTypes

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerateResult:
    output_path: Path
    module: RoutesModule
    written: bool
    up_to_date: bool


def _import(module_name: str) -> ModuleType:
    try:
        return importlib.import_module(module_name)
    except ImportError as err:
        raise GenerationError(f"failed to import {module_name}: {err}") from err


def load_templates(config: RoutesConfig) -> tuple[ModuleType, FragmentSet, str]:
    """
    Import the templates module and wrap its environment.

    The variable may be a ``jinja2.Environment`` or anything exposing one as
    ``.env`` (Starlette's ``Jinja2Templates``). The returned string is that
    attribute name, or empty.
    """
    module = _import(config.templates_module)
    templates = getattr(module, config.templates_variable, None)
    if templates is None:
        raise GenerationError(f"{config.templates_module}.{config.templates_variable} not found")
    if isinstance(templates, Environment):
        return module, FragmentSet(templates), ""
    env = getattr(templates, "env", None)
    if isinstance(env, Environment):
        return module, FragmentSet(env), "env"
    raise GenerationError(
        f"{config.templates_module}.{config.templates_variable} is {type(templates).__name__}, "
        "expected a jinja2.Environment or an object with one as .env"
    )


def load_receiver(config: RoutesConfig) -> Optional[type]:
    if not config.receiver_type:
        return None
    module = _import(config.receiver_module or config.templates_module)
    receiver = getattr(module, config.receiver_type, None)
    if not isinstance(receiver, type):
        raise GenerationError(f"receiver type {config.receiver_type} not found in {module.__name__}")
    return receiver


def output_path_for(module: ModuleType, config: RoutesConfig) -> Path:
    if not getattr(module, "__file__", None):
        raise GenerationError(f"{module.__name__} has no source file to write next to")
    return Path(module.__file__).resolve().parent / config.output_file


def run_generate(config: RoutesConfig, write: bool = True, search_path: Optional[Path] = None) -> GenerateResult:
    """
    Generate the routes module for ``config``.

    With ``write`` off nothing touches the disk; the result still says whether
    the file on disk matches what would be written.
    """
    if search_path is not None and str(search_path) not in sys.path:
        sys.path.insert(0, str(search_path))

    module, fragments, templates_attribute = load_templates(config)
    host = HostTypes.from_module(module, receiver=load_receiver(config))
    log.debug("loaded %d templates from %s", len(fragments), config.templates_module)

    routes = generate_routes_module(config, fragments, host, templates_attribute)
    out = output_path_for(module, config)
    up_to_date = out.exists() and out.read_text(encoding="utf-8") == routes.file.content

    written = False
    if write and not up_to_date:
        out.write_text(routes.file.content, encoding="utf-8")
        written = True
        log.info("wrote %s", out)

    return GenerateResult(output_path=out, module=routes, written=written, up_to_date=up_to_date or written)


def run_check(config: RoutesConfig, search_path: Optional[Path] = None) -> GenerateResult:
    return run_generate(config, write=False, search_path=search_path)
