"""CLI interface for the solmgr project manager."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import structlog
import typer

from solmgr import __version__
from solmgr.config import OPTIONS_FILE_NAME, RunOptions, build_options
from solmgr.exceptions import ConfigError, SolmgrError
from solmgr.manager import ProjectManager

logger = structlog.get_logger()

# Exit code reported when a context referenced an undefined $variable$
EXIT_UNDEFINED_VARIABLES = 2

app = typer.Typer(
    name="solmgr",
    help="Resolve csolution projects into build-configuration files",
    no_args_is_help=True,
)

list_app = typer.Typer(
    name="list",
    help="List contexts, packs, toolchains and environment",
    no_args_is_help=True,
)


def configure_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure structlog for CLI output."""
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"solmgr version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """solmgr - csolution project manager."""
    pass


SolutionArg = Annotated[
    Path | None,
    typer.Argument(help="Input <name>.csolution.yml file", resolve_path=True),
]
ContextOpt = Annotated[
    list[str] | None,
    typer.Option("--context", "-c", help="Input context names [project][.build-type][+target-type]"),
]
ContextSetOpt = Annotated[
    bool | None,
    typer.Option("--context-set", "-S", help="Select the context names from the cbuild-set.yml file"),
]
LoadOpt = Annotated[
    str | None,
    typer.Option("--load", "-l", help="Set policy for packs loading [latest | all | required]"),
]
ToolchainOpt = Annotated[
    str | None,
    typer.Option("--toolchain", "-t", help="Selection of the toolchain used in the project"),
]
OutputOpt = Annotated[
    Path | None,
    typer.Option("--output", "-o", help="Output directory", resolve_path=True),
]
SchemaOpt = Annotated[
    bool | None,
    typer.Option("--check-schema/--no-check-schema", help="Validate input files strictly"),
]
VerboseOpt = Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose messages")]
DebugOpt = Annotated[bool, typer.Option("--debug", "-d", help="Enable debug messages")]
ConfigOpt = Annotated[
    Path | None,
    typer.Option(
        "--config",
        help=f"Path to {OPTIONS_FILE_NAME} options file",
        exists=True,
        file_okay=True,
        resolve_path=True,
    ),
]


def load_options(solution: Path | None, config: Path | None, **overrides: object) -> RunOptions:
    """Merge the options file (if any) with command line values.

    Raises:
        ConfigError: If the options are invalid.
    """
    config_path = config
    if config_path is None and solution is not None:
        default_config = solution.parent / OPTIONS_FILE_NAME
        if default_config.exists():
            config_path = default_config

    base = RunOptions.load(config_path) if config_path is not None else build_options({})
    return base.merged(solution=solution, **overrides)


def _fail(error: SolmgrError) -> typer.Exit:
    logger.error("Invalid options", error=str(error))
    typer.echo(f"error solmgr: {error}", err=True)
    return typer.Exit(1)


@app.command()
def convert(
    solution: SolutionArg = None,
    context: ContextOpt = None,
    context_set: ContextSetOpt = None,
    load: LoadOpt = None,
    toolchain: ToolchainOpt = None,
    output: OutputOpt = None,
    export: Annotated[
        str | None,
        typer.Option(
            "--export",
            "-e",
            help="Set suffix for exporting <context><suffix>.cprj retaining only specified versions",
        ),
    ] = None,
    update_rte: Annotated[
        bool | None,
        typer.Option("--update-rte/--no-update-rte", help="Update the RTE directory and files"),
    ] = None,
    frozen_packs: Annotated[
        bool | None,
        typer.Option("--frozen-packs", help="The list of packs in cbuild-pack.yml is frozen"),
    ] = None,
    dry_run: Annotated[
        bool | None,
        typer.Option("--dry-run", help="Resolve everything but write no file"),
    ] = None,
    schema: SchemaOpt = None,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
    config: ConfigOpt = None,
) -> None:
    """Convert *.csolution.yml input into build-configuration files."""
    configure_logging(verbose, debug)
    try:
        options = load_options(
            solution,
            config,
            contexts=context or None,
            context_set=context_set,
            load_policy=load,
            toolchain=toolchain,
            output_dir=output,
            export_suffix=export,
            update_rte=update_rte,
            frozen_packs=frozen_packs,
            dry_run=dry_run,
            check_schema=schema,
            verbose=verbose or None,
            debug=debug or None,
        )
    except ConfigError as e:
        raise _fail(e) from e

    manager = ProjectManager(options)
    success = manager.convert()
    if manager.had_undefined_variables:
        raise typer.Exit(EXIT_UNDEFINED_VARIABLES)
    if not success:
        raise typer.Exit(1)


@app.command("update-rte")
def update_rte_command(
    solution: SolutionArg = None,
    context: ContextOpt = None,
    context_set: ContextSetOpt = None,
    load: LoadOpt = None,
    toolchain: ToolchainOpt = None,
    dry_run: Annotated[
        bool | None,
        typer.Option("--dry-run", help="Resolve everything but write no file"),
    ] = None,
    schema: SchemaOpt = None,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
    config: ConfigOpt = None,
) -> None:
    """Create or update the configuration files of every selected context."""
    configure_logging(verbose, debug)
    try:
        options = load_options(
            solution,
            config,
            contexts=context or None,
            context_set=context_set,
            load_policy=load,
            toolchain=toolchain,
            dry_run=dry_run,
            check_schema=schema,
            verbose=verbose or None,
            debug=debug or None,
        )
    except ConfigError as e:
        raise _fail(e) from e

    if not ProjectManager(options).update_rte():
        raise typer.Exit(1)


app.add_typer(list_app, name="list")


def _print(lines: list[str]) -> None:
    for line in lines:
        typer.echo(line)


@list_app.command("contexts")
def list_contexts(
    solution: SolutionArg = None,
    context: ContextOpt = None,
    name_filter: Annotated[
        str,
        typer.Option("--filter", "-f", help="Filter words"),
    ] = "",
    yml_order: Annotated[
        bool,
        typer.Option("--yml-order", help="Preserve order as specified in input yml"),
    ] = False,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """List contexts of a solution."""
    configure_logging(verbose, debug)
    try:
        options = load_options(
            solution, None, contexts=context or None, yml_order=yml_order, verbose=verbose or None
        )
        _print(ProjectManager(options).list_contexts(name_filter))
    except SolmgrError as e:
        raise _fail(e) from e


@list_app.command("packs")
def list_packs(
    solution: SolutionArg = None,
    context: ContextOpt = None,
    load: LoadOpt = None,
    missing: Annotated[
        bool,
        typer.Option("--missing", "-m", help="List only required packs that are missing"),
    ] = False,
    name_filter: Annotated[
        str,
        typer.Option("--filter", "-f", help="Filter words"),
    ] = "",
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """List resolved packs, or every installed pack without a solution."""
    configure_logging(verbose, debug)
    try:
        options = load_options(solution, None, contexts=context or None, load_policy=load)
        _print(ProjectManager(options).list_packs(missing=missing, name_filter=name_filter))
    except SolmgrError as e:
        raise _fail(e) from e


@list_app.command("toolchains")
def list_toolchains(
    solution: SolutionArg = None,
    context: ContextOpt = None,
    verbose: VerboseOpt = False,
    debug: DebugOpt = False,
) -> None:
    """List registered and used toolchains."""
    configure_logging(verbose, debug)
    try:
        options = load_options(solution, None, contexts=context or None)
    except ConfigError as e:
        raise _fail(e) from e
    _print(ProjectManager(options).list_toolchains())


@list_app.command("environment")
def list_environment() -> None:
    """List environment settings."""
    configure_logging()
    _print(ProjectManager(build_options({})).list_environment())


if __name__ == "__main__":
    app()
