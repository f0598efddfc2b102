# === NAVMAP v1 ===
# {
#   "module": "BinDepot.BinaryFetch.cli",
#   "purpose": "Typer CLI for installing, inspecting, and validating prebuilt binaries",
#   "sections": [
#     {"id": "context", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "errors", "name": "Exit-code mapping", "anchor": "function-exit-code-for", "kind": "function"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "commands", "name": "Commands", "anchor": "commands", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Command line entry point for BinaryFetch.

Global options (``--config``, ``-v``/``-vv``, ``--offline``, ``--version``)
go before the subcommand::

    binfetch install jq ripgrep#rg-static
    binfetch -v info jq
    binfetch --offline validate
    binfetch sync-metadata --output ~/.cache/binfetch/catalogs

Failures map to stable exit codes: 2 configuration, 3 not found, 4 checksum
mismatch, 5 network, 6 filesystem, 130 cancelled, 1 anything else.
"""

from __future__ import annotations

import json
import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .cancellation import CancellationToken
from .catalog import Catalog, fetch_catalogs, list_binaries, load_catalog_files
from .descriptors import parse_identity
from .errors import (
    BinaryFetchError,
    ChecksumMismatchError,
    ConfigError,
    DownloadCancelled,
    FilesystemError,
    NetworkError,
    NotFoundError,
)
from .installer import InstallResult, get_info, install_many, reinstall
from .logging_config import setup_logging
from .metadata_sync import DEFAULT_ARCH_PAIRS, sync_metadata
from .ownership import OwnershipRegistry, registry_for
from .progress import LoggingProgress, RichProgressBoard
from .settings import BinaryFetchSettings, default_config_path, load_settings
from .validation import list_files_in_dir, list_installed, validate_programs

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_NOT_FOUND = 3
EXIT_CHECKSUM = 4
EXIT_NETWORK = 5
EXIT_FILESYSTEM = 6
EXIT_CANCELLED = 130

_console = Console()
_err_console = Console(stderr=True)


def exit_code_for(exc: BaseException) -> int:
    """Map an exception to the process exit code."""

    if isinstance(exc, ConfigError):
        return EXIT_CONFIG
    if isinstance(exc, NotFoundError):
        return EXIT_NOT_FOUND
    if isinstance(exc, ChecksumMismatchError):
        return EXIT_CHECKSUM
    if isinstance(exc, NetworkError):
        return EXIT_NETWORK
    if isinstance(exc, FilesystemError):
        return EXIT_FILESYSTEM
    if isinstance(exc, (DownloadCancelled, KeyboardInterrupt)):
        return EXIT_CANCELLED
    return EXIT_FAILURE


class CliContext:
    """Per-invocation state shared by the commands."""

    def __init__(self, config: Optional[Path] = None, verbosity: int = 0, offline: bool = False):
        self.config = config
        self.verbosity = verbosity
        self.offline = offline
        self.console = _console
        self._settings: Optional[BinaryFetchSettings] = None
        self._registry: Optional[OwnershipRegistry] = None

    @property
    def settings(self) -> BinaryFetchSettings:
        if self._settings is None:
            self._settings = load_settings(self.config or default_config_path())
        return self._settings

    @property
    def registry(self) -> OwnershipRegistry:
        if self._registry is None:
            self._registry = registry_for(self.settings.ownership_backend)
        return self._registry

    def catalogs(self) -> List[Catalog]:
        if self.offline:
            catalogs = load_catalog_files(self.settings.catalog_dir, self.settings.architecture)
            if not catalogs:
                raise NotFoundError(
                    f"no catalog files for {self.settings.architecture} in {self.settings.catalog_dir}"
                )
            return catalogs
        return fetch_catalogs(self.settings)


app = typer.Typer(
    name="binfetch",
    help="Install and manage prebuilt static binaries",
    no_args_is_help=True,
)

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    if _context is None:
        raise RuntimeError("CLI context not initialized")
    return _context


def _fail(exc: BaseException) -> "typer.Exit":
    _err_console.print(f"[red]error:[/red] {exc}")
    return typer.Exit(exit_code_for(exc))


@contextmanager
def _cancel_on_interrupt(token: CancellationToken) -> Iterator[None]:
    """Route Ctrl-C to ``token`` so in-flight downloads clean up and stop."""

    def _handler(signum, frame) -> None:
        token.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread; leave the default handler in place.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"binfetch {__version__}")
        raise typer.Exit(EXIT_OK)


@app.callback(invoke_without_command=False)
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", envvar="BINFETCH_CONFIG", help="Path to a YAML config file"
    ),
    verbosity: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity (-v for INFO, -vv for DEBUG)"
    ),
    offline: bool = typer.Option(
        False, "--offline", help="Use mirrored catalog files instead of fetching them"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Install prebuilt binaries with verified, atomic downloads."""

    global _context

    _context = CliContext(config=config, verbosity=verbosity, offline=offline)
    try:
        settings = _context.settings
        console_level = {0: "WARNING", 1: "INFO"}.get(verbosity, "DEBUG")
        setup_logging(settings.logging, console_level=console_level)
    except ConfigError as exc:
        raise _fail(exc) from exc
    except OSError as exc:
        raise _fail(FilesystemError(f"cannot initialise logging: {exc}")) from exc


# --- Commands -------------------------------------------------------------------


def _report_installs(ctx: CliContext, results: Sequence[InstallResult]) -> int:
    code = EXIT_OK
    for result in results:
        if result.ok:
            ctx.console.print(f"[green]installed[/green] {result.identity} -> {result.path}")
            continue
        _err_console.print(f"[red]failed[/red] {result.request}: {result.error}")
        if code == EXIT_OK and result.error is not None:
            code = exit_code_for(result.error)
    return code


def _run_installs(ctx: CliContext, runner, show_progress: bool) -> int:
    token = CancellationToken()
    with _cancel_on_interrupt(token):
        if show_progress:
            with RichProgressBoard() as board:
                results = runner(token, lambda request: board.observer(str(request)))
        else:
            step = ctx.settings.http.progress_log_percent_step
            results = runner(
                token,
                lambda request: LoggingProgress(LOGGER, label=str(request), percent_step=step),
            )
    if token.is_cancelled():
        _err_console.print("[yellow]cancelled[/yellow]")
        return EXIT_CANCELLED
    return _report_installs(ctx, results)


@app.command()
def install(
    names: List[str] = typer.Argument(..., help="Binaries as name[#pkg_id][@version]"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show download bars"),
) -> None:
    """Install one or more binaries into the install directory."""

    ctx = get_context()
    try:
        requests = [parse_identity(name) for name in names]
        catalogs = ctx.catalogs()
        code = _run_installs(
            ctx,
            lambda token, factory: install_many(
                requests,
                catalogs,
                ctx.settings,
                registry=ctx.registry,
                cancellation_token=token,
                progress_factory=factory,
            ),
            progress,
        )
    except BinaryFetchError as exc:
        raise _fail(exc) from exc
    raise typer.Exit(code)


@app.command("reinstall")
def reinstall_cmd(
    names: Optional[List[str]] = typer.Argument(None, help="Installed binaries (all when omitted)"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show download bars"),
) -> None:
    """Re-download installed binaries from their recorded identity."""

    ctx = get_context()
    try:
        catalogs = ctx.catalogs()
        code = _run_installs(
            ctx,
            lambda token, factory: reinstall(
                names or [],
                catalogs,
                ctx.settings,
                registry=ctx.registry,
                cancellation_token=token,
                progress_factory=factory,
            ),
            progress,
        )
    except BinaryFetchError as exc:
        raise _fail(exc) from exc
    raise typer.Exit(code)


@app.command()
def info(
    name: str = typer.Argument(..., help="Binary as name[#pkg_id]"),
    as_json: bool = typer.Option(False, "--json", help="Print the entry as JSON"),
) -> None:
    """Show catalog details for a binary, preferring the installed variant."""

    ctx = get_context()
    try:
        entry = get_info(ctx.settings, parse_identity(name), ctx.catalogs(), ctx.registry)
    except BinaryFetchError as exc:
        raise _fail(exc) from exc

    mapping = entry.to_mapping()
    if as_json:
        typer.echo(json.dumps(mapping, indent=2))
        return
    table = Table(show_header=False, box=None)
    table.add_column("field", style="bold cyan")
    table.add_column("value")
    for key, value in mapping.items():
        if value in ("", (), [], 0) and key != "rank":
            continue
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(item) for item in value)
        table.add_row(key, str(value))
    ctx.console.print(table)


@app.command()
def validate(
    names: Optional[List[str]] = typer.Argument(None, help="Binaries to check (all when omitted)"),
) -> None:
    """Print the identities of installed binaries still published remotely."""

    ctx = get_context()
    try:
        remote = list_binaries(ctx.catalogs())
        valid = validate_programs(
            ctx.settings, names or [], remote_names=remote, registry=ctx.registry
        )
    except BinaryFetchError as exc:
        raise _fail(exc) from exc
    for identity in valid:
        typer.echo(identity)


@app.command("list")
def list_cmd(
    remote: bool = typer.Option(False, "--remote", help="List installable names instead"),
) -> None:
    """List installed binaries with their recorded identity."""

    ctx = get_context()
    try:
        if remote:
            for name in list_binaries(ctx.catalogs()):
                typer.echo(name)
            return
        table = Table("file", "identity")
        for path in list_files_in_dir(ctx.settings.install_dir):
            identity = list_installed(path, ctx.registry)
            table.add_row(path.name, identity or "[dim]unmanaged[/dim]")
    except BinaryFetchError as exc:
        raise _fail(exc) from exc
    ctx.console.print(table)


def _parse_arch_pair(value: str) -> tuple[str, str]:
    upstream, sep, real = value.partition(":")
    if not sep or not upstream or not real:
        raise ConfigError(f"architecture '{value}' must look like upstream:machine, e.g. amd64_linux:x86_64_Linux")
    return upstream, real


@app.command("sync-metadata")
def sync_metadata_cmd(
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Directory for mirrored catalogs (default: catalog_dir)"
    ),
    arch: Optional[List[str]] = typer.Option(
        None, "--arch", help="upstream:machine architecture pair; repeatable"
    ),
) -> None:
    """Mirror upstream METADATA.json files into local catalog files."""

    ctx = get_context()
    try:
        pairs = [_parse_arch_pair(value) for value in arch] if arch else list(DEFAULT_ARCH_PAIRS)
        written = sync_metadata(output or ctx.settings.catalog_dir, pairs)
    except BinaryFetchError as exc:
        raise _fail(exc) from exc
    for path in written:
        ctx.console.print(f"saved {path}")
    if not written:
        raise typer.Exit(EXIT_NETWORK)


__all__ = ["CliContext", "app", "exit_code_for", "get_context", "main"]
