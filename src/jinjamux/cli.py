from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from jinjamux.domain.models import RoutesConfig
from jinjamux.errors import GenerationError
from jinjamux.orchestrator.pipeline import GenerateResult, run_check, run_generate

app = typer.Typer(no_args_is_help=True, add_completion=False)

routes_app = typer.Typer(no_args_is_help=True)
app.add_typer(routes_app, name="routes")

console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _config(
    templates_module: str,
    templates_variable: str,
    receiver_type: Optional[str],
    receiver_module: Optional[str],
    output_file: str,
    routes_function: str,
    receiver_interface: str,
    template_data_type: str,
    route_paths_type: str,
    path_prefix: bool,
    logger: bool,
    render_errors: bool,
) -> RoutesConfig:
    try:
        return RoutesConfig(
            templates_module=templates_module,
            templates_variable=templates_variable,
            receiver_type=receiver_type,
            receiver_module=receiver_module,
            output_file=output_file,
            routes_function=routes_function,
            receiver_interface=receiver_interface,
            template_data_type=template_data_type,
            route_paths_type=route_paths_type,
            path_prefix=path_prefix,
            logger=logger,
            render_errors=render_errors,
        )
    except ValidationError as err:
        raise typer.BadParameter(str(err)) from err


def _run(config: RoutesConfig, write: bool, cwd: Path) -> GenerateResult:
    try:
        if write:
            return run_generate(config, write=True, search_path=cwd)
        return run_check(config, search_path=cwd)
    except GenerationError as err:
        err_console.print(f"[bold red]error[/bold red]: {err}")
        raise typer.Exit(code=1) from err


TemplatesModule = typer.Option(..., "--templates-module", "-m", help="Module holding the Jinja environment")
TemplatesVariable = typer.Option("templates", help="Name of the environment variable in the templates module")
ReceiverType = typer.Option(None, help="Class whose methods handle routes")
ReceiverModule = typer.Option(None, help="Module of the receiver class (default: templates module)")
OutputFile = typer.Option("template_routes.py", help="File written next to the templates module")
RoutesFunction = typer.Option("template_routes", help="Name of the generated registration function")
ReceiverInterface = typer.Option("RoutesReceiver", help="Name of the generated receiver Protocol")
TemplateDataType = typer.Option("TemplateData", help="Name of the generated template data class")
RoutePathsType = typer.Option("TemplateRoutePaths", help="Name of the generated URL builder class")
PathPrefix = typer.Option(False, "--path-prefix", help="Accept a paths_prefix for URL builders")
Logger = typer.Option(False, "--logger", help="Accept an injected logging.Logger")
RenderErrors = typer.Option(False, "--render-errors", help="Render templates even when binding failed")
Verbose = typer.Option(False, "--verbose", "-v", help="Debug logging")
Cwd = typer.Option(Path("."), help="Directory added to the import path")


@app.command()
def generate(
    templates_module: str = TemplatesModule,
    templates_variable: str = TemplatesVariable,
    receiver_type: Optional[str] = ReceiverType,
    receiver_module: Optional[str] = ReceiverModule,
    output_file: str = OutputFile,
    routes_function: str = RoutesFunction,
    receiver_interface: str = ReceiverInterface,
    template_data_type: str = TemplateDataType,
    route_paths_type: str = RoutePathsType,
    path_prefix: bool = PathPrefix,
    logger: bool = Logger,
    render_errors: bool = RenderErrors,
    verbose: bool = Verbose,
    cwd: Path = Cwd,
) -> None:
    """Write the routes module next to the templates module."""
    _setup_logging(verbose)
    config = _config(
        templates_module, templates_variable, receiver_type, receiver_module, output_file, routes_function,
        receiver_interface, template_data_type, route_paths_type, path_prefix, logger, render_errors,
    )
    result = _run(config, write=True, cwd=cwd.expanduser().resolve())

    console.print(f"[bold green]jinjamux[/bold green] generate: {config.templates_module}")
    console.print(f"Routes: [bold]{len(result.module.definitions)}[/bold]")
    if result.written:
        console.print(f"[bold green]Wrote[/bold green] {result.output_path}")
    else:
        console.print(f"Unchanged: {result.output_path}")


@app.command()
def check(
    templates_module: str = TemplatesModule,
    templates_variable: str = TemplatesVariable,
    receiver_type: Optional[str] = ReceiverType,
    receiver_module: Optional[str] = ReceiverModule,
    output_file: str = OutputFile,
    routes_function: str = RoutesFunction,
    receiver_interface: str = ReceiverInterface,
    template_data_type: str = TemplateDataType,
    route_paths_type: str = RoutePathsType,
    path_prefix: bool = PathPrefix,
    logger: bool = Logger,
    render_errors: bool = RenderErrors,
    verbose: bool = Verbose,
    cwd: Path = Cwd,
) -> None:
    """Run every generation pass without writing; exit 1 on the first error."""
    _setup_logging(verbose)
    config = _config(
        templates_module, templates_variable, receiver_type, receiver_module, output_file, routes_function,
        receiver_interface, template_data_type, route_paths_type, path_prefix, logger, render_errors,
    )
    result = _run(config, write=False, cwd=cwd.expanduser().resolve())

    console.print(f"[bold green]ok[/bold green]: {len(result.module.definitions)} routes")
    if not result.up_to_date:
        console.print(f"[yellow]out of date:[/yellow] {result.output_path}")
        console.print("Run `jinjamux generate` to update it.")


@routes_app.command("list")
def routes_list(
    templates_module: str = TemplatesModule,
    templates_variable: str = TemplatesVariable,
    receiver_type: Optional[str] = ReceiverType,
    receiver_module: Optional[str] = ReceiverModule,
    verbose: bool = Verbose,
    cwd: Path = Cwd,
) -> None:
    """Print every route with its generated identifier and call."""
    _setup_logging(verbose)
    config = _config(
        templates_module, templates_variable, receiver_type, receiver_module, "template_routes.py",
        "template_routes", "RoutesReceiver", "TemplateData", "TemplateRoutePaths", False, False, False,
    )
    result = _run(config, write=False, cwd=cwd.expanduser().resolve())

    table = Table(show_header=True, header_style="bold")
    table.add_column("PATTERN")
    table.add_column("IDENTIFIER", no_wrap=True)
    table.add_column("CALL")
    table.add_column("STATUS", no_wrap=True)
    table.add_column("REDIRECT", no_wrap=True)
    table.add_column("FILE", no_wrap=True)

    for d in result.module.definitions:
        table.add_row(
            d.pattern,
            d.identifier,
            str(d.signature) if d.signature is not None else "",
            str(d.status_code),
            "yes" if d.can_redirect else "",
            d.group,
        )
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
