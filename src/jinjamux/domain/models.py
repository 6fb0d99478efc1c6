from __future__ import annotations

import keyword
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _check_identifier(value: str) -> str:
    if not value.isidentifier() or keyword.iskeyword(value):
        raise ValueError(f"{value!r} is not a Python identifier")
    return value


def _check_module(value: str) -> str:
    for part in value.split("."):
        _check_identifier(part)
    return value


class RoutesConfig(BaseModel):
    """Options for one generated routes module."""

    templates_module: str
    templates_variable: str = "templates"

    receiver_type: Optional[str] = None
    receiver_module: Optional[str] = None  # defaults to templates_module

    output_file: str = "template_routes.py"
    routes_function: str = "template_routes"
    receiver_interface: str = "RoutesReceiver"
    template_data_type: str = "TemplateData"
    route_paths_type: str = "TemplateRoutePaths"

    path_prefix: bool = False
    logger: bool = False
    render_errors: bool = False

    @field_validator("templates_module", "receiver_module")
    @classmethod
    def _module_name(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_module(v)

    @field_validator(
        "templates_variable",
        "receiver_type",
        "routes_function",
        "receiver_interface",
        "template_data_type",
        "route_paths_type",
    )
    @classmethod
    def _identifier(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_identifier(v)

    @field_validator("output_file")
    @classmethod
    def _python_file(cls, v: str) -> str:
        if not v.endswith(".py") or "/" in v or "\\" in v:
            raise ValueError("output_file must be a .py file name without directories")
        return v


class GeneratedFile(BaseModel):
    path: str
    content: str
    routes: list[str] = Field(default_factory=list)
