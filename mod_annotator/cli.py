"""Command-line interface for mod-annotator."""

import logging
import sys
import time
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .archive import ArchiveError
from .config import ConfigError, load_settings
from .graph import GRAPH_FILENAME
from .partition import BisectError
from .service import ListResult, ModManagerService, PreviewGroup, ToggleResult
from .state import RegistryError, UpdateFrequency

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _service(ctx: click.Context) -> ModManagerService:
    return ctx.obj["service"]


def _fail(message: str, hint: str | None = None) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    if hint:
        console.print(hint)
    sys.exit(1)


def _print_changes(result: ToggleResult) -> None:
    for requested in result.unknown:
        console.print(f"[yellow]Unknown mod id:[/yellow] {requested}")
    if result.change_count > 0:
        console.print(f"[green]Changed {result.change_count} mods.[/green]")
    else:
        console.print("No changes made.")


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config.json (defaults to ./config.json if present)",
)
@click.option(
    "--mods-dir",
    envvar="MOD_BASE_DIR",
    type=click.Path(file_okay=False, path_type=Path),
    help="Mods folder (or set MOD_BASE_DIR env var)",
)
@click.option(
    "--store",
    envvar="ANNOTATED_FILE",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Annotated mods JSON file (or set ANNOTATED_FILE env var)",
)
@click.option(
    "--github-token",
    envvar="GITHUB_API_KEY",
    help="GitHub API token for update checks (or set GITHUB_API_KEY env var)",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    mods_dir: Path | None,
    store: Path | None,
    github_token: str | None,
    verbose: bool,
) -> None:
    """Keep track of a mods folder and toggle mods with their dependencies."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)

    try:
        settings = load_settings(config_path)
    except ConfigError as e:
        _fail(str(e))

    if mods_dir is not None:
        settings.mod_base_dir = Path(str(mods_dir).rstrip("/") or "/")
    if store is not None:
        settings.annotated_file = store
    if github_token:
        settings.github_api_key = github_token

    ctx.obj["settings"] = settings
    ctx.obj["service"] = ModManagerService(settings)


@main.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """
    Scan the mods folder and update the annotated mods file.

    New mods get records, known mods get their path and state refreshed,
    and the wanted_by back-edges are rebuilt.
    """
    service = _service(ctx)
    console.print(f"[dim]Scanning {service.settings.mod_base_dir}...[/dim]")

    try:
        result = service.refresh()
    except (ArchiveError, RegistryError) as e:
        _fail(str(e))

    report = result.report
    console.print(f"[bold]Archives scanned:[/bold] {result.scanned}")
    console.print(f"[bold]Mods known:[/bold] {len(report.registry)}")
    if report.created:
        console.print(f"\n[bold]New mods:[/bold] {len(report.created)}")
        for mod_id in report.created:
            console.print(f"  + {escape(mod_id)}")
    if report.orphaned:
        console.print(f"\n[yellow]Mods missing their file:[/yellow] {len(report.orphaned)}")
        for mod_id in report.orphaned:
            console.print(f"  ? {escape(mod_id)}")
    if report.missing_dependencies:
        console.print(f"\n[yellow]Possibly missing dependencies:[/yellow] {len(report.missing_dependencies)}")
        for mod_id, dep_id in report.missing_dependencies:
            console.print(f"  - {escape(mod_id)} wants {escape(dep_id)}")

    console.print(f"\n[dim]Saved to {result.store_file}[/dim]")


def _print_listing(result: ListResult, title: str) -> None:
    table = Table(title=title)
    table.add_column("Mod", style="cyan")
    table.add_column("File")
    table.add_column("Status")

    for listing in result.enabled:
        table.add_row(escape(listing.mod_id), escape(listing.file_path), "[green]Enabled[/green]")
    for listing in result.disabled:
        table.add_row(escape(listing.mod_id), escape(listing.file_path), "[dim]Disabled[/dim]")

    console.print(table)
    console.print(
        f"[bold]{len(result.enabled)}[/bold] enabled, [bold]{len(result.disabled)}[/bold] disabled"
    )
    for mod_id in result.out_of_sync:
        console.print(f"[yellow]Warning:[/yellow] {mod_id} state doesn't match its file name, run 'refresh'.")


@main.command("list")
@click.option("--folder", is_flag=True, help="Read the mods folder instead of the annotated file")
@click.pass_context
def list_cmd(ctx: click.Context, folder: bool) -> None:
    """List mods split into enabled and disabled."""
    service = _service(ctx)
    try:
        if folder:
            _print_listing(service.list_folder(), "Mods in folder")
        else:
            _print_listing(service.list_mods(), "Annotated mods")
    except (ArchiveError, RegistryError) as e:
        _fail(str(e), "Run 'refresh' first to annotate the mods folder.")


def _run_toggle(ctx: click.Context, method: str, mod_ids: tuple[str, ...]) -> None:
    service = _service(ctx)
    try:
        result = getattr(service, method)(list(mod_ids))
    except RegistryError as e:
        _fail(str(e), "Run 'refresh' first to annotate the mods folder.")
    except ArchiveError as e:
        _fail(f"{e}\nThe annotated file was not saved, run 'refresh' to resync.")
    _print_changes(result)


@main.command()
@click.argument("mod_ids", nargs=-1, required=True)
@click.pass_context
def toggle(ctx: click.Context, mod_ids: tuple[str, ...]) -> None:
    """
    Flip mods on or off, carrying dependencies along.

    MOD_IDS: one or more mod ids (case-insensitive)
    """
    _run_toggle(ctx, "toggle", mod_ids)


@main.command()
@click.argument("mod_ids", nargs=-1, required=True)
@click.pass_context
def enable(ctx: click.Context, mod_ids: tuple[str, ...]) -> None:
    """
    Enable mods and everything they depend on.

    MOD_IDS: one or more mod ids (case-insensitive)
    """
    _run_toggle(ctx, "enable", mod_ids)


@main.command()
@click.argument("mod_ids", nargs=-1, required=True)
@click.pass_context
def disable(ctx: click.Context, mod_ids: tuple[str, ...]) -> None:
    """
    Disable mods and everything that depends on them.

    MOD_IDS: one or more mod ids (case-insensitive)
    """
    _run_toggle(ctx, "disable", mod_ids)


def _run_bulk(ctx: click.Context, method: str) -> None:
    service = _service(ctx)
    try:
        result = getattr(service, method)()
    except RegistryError as e:
        _fail(str(e), "Run 'refresh' first to annotate the mods folder.")
    except ArchiveError as e:
        _fail(f"{e}\nThe annotated file was not saved, run 'refresh' to resync.")
    _print_changes(result)


@main.command("enable-all")
@click.pass_context
def enable_all_cmd(ctx: click.Context) -> None:
    """Enable every annotated mod."""
    _run_bulk(ctx, "enable_all")


@main.command("disable-all")
@click.pass_context
def disable_all_cmd(ctx: click.Context) -> None:
    """Disable every annotated mod except those tagged REQUIRED_BASE."""
    _run_bulk(ctx, "disable_all")


@main.command()
@click.argument("fractions", nargs=-1, required=True)
@click.pass_context
def binary(ctx: click.Context, fractions: tuple[str, ...]) -> None:
    """
    Enable only the given fractions of the mod list.

    FRACTIONS: one or more targets like 1/4 (group 1 of 4); mods they
    depend on are enabled too.
    """
    service = _service(ctx)
    try:
        result = service.binary(list(fractions))
    except (BisectError, RegistryError) as e:
        _fail(str(e))
    except ArchiveError as e:
        _fail(f"{e}\nThe annotated file was not saved, run 'refresh' to resync.")

    for fraction in fractions:
        console.print(f"[dim]Enabled fraction {fraction}[/dim]")
    _print_changes(result)


def _print_groups(title: str, groups: list[PreviewGroup]) -> None:
    table = Table(title=title)
    for group in groups:
        table.add_column(group.label, style="cyan")

    columns = [
        [escape(m) for m in group.members] + ["[dim]-- deps --[/dim]"] + [escape(d) for d in group.dependencies]
        for group in groups
    ]
    height = max((len(column) for column in columns), default=0)
    for row in range(height):
        table.add_row(*(column[row] if row < len(column) else "" for column in columns))

    console.print(table)


@main.command("binary-dry")
@click.argument("fractions", nargs=-1, required=True)
@click.pass_context
def binary_dry(ctx: click.Context, fractions: tuple[str, ...]) -> None:
    """
    Preview the groups around a target fraction without changing anything.

    FRACTIONS: the target, like 1/4; only the first one is previewed.
    """
    service = _service(ctx)
    try:
        preview = service.binary_dry(list(fractions))
    except (BisectError, RegistryError) as e:
        _fail(str(e))

    for warning in preview.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    console.print("[dim]Groups include the mods they depend on, so they can overlap.[/dim]")
    _print_groups(f"Mod groups for target {preview.target}", preview.groups)
    _print_groups(f"Mod groups for sub-target {preview.sub_target}", preview.sub_groups)


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=GRAPH_FILENAME,
    show_default=True,
    help="HTML file to write",
)
@click.pass_context
def graph(ctx: click.Context, output: Path) -> None:
    """Write an interactive dependency graph page."""
    try:
        path = _service(ctx).graph(output)
    except RegistryError as e:
        _fail(str(e), "Run 'refresh' first to annotate the mods folder.")
    console.print(f"[green]Graph written to[/green] {path}")


@main.command()
@click.argument(
    "frequency",
    type=click.Choice([f.value for f in UpdateFrequency], case_sensitive=False),
    default=UpdateFrequency.COMMON.value,
)
@click.option("--retry", is_flag=True, help="Also check mods whose last check failed")
@click.option("--download", is_flag=True, help="Download and swap in newer versions")
@click.pass_context
def update(ctx: click.Context, frequency: str, retry: bool, download: bool) -> None:
    """
    Check mod sources for newer releases.

    FREQUENCY: check mods up to this update frequency (COMMON, RARE or EOL)
    """
    service = _service(ctx)
    console.print("[dim]Checking for updates...[/dim]")
    try:
        result = service.update(
            UpdateFrequency(frequency.upper()),
            retry_failed=retry,
            download=download,
        )
    except RegistryError as e:
        _fail(str(e), "Run 'refresh' first to annotate the mods folder.")

    report = result.report
    if report.checked:
        table = Table(title="Update Status")
        table.add_column("Mod", style="cyan")
        table.add_column("Installed", style="green")
        table.add_column("Latest", style="blue")
        table.add_column("Status")

        for candidate in report.checked:
            if candidate.is_upgrade:
                status = "[green]Update available[/green]"
            elif candidate.change < 0:
                status = "[yellow]Newer, no single asset[/yellow]"
            elif candidate.change > 0:
                status = "[yellow]Local is newer[/yellow]"
            else:
                status = "Up to date"
            table.add_row(
                candidate.mod_id[:40],
                candidate.current_version,
                candidate.remote_version,
                status,
            )
        console.print(table)

    upgradable = report.upgradable
    by_source: dict[str, int] = {}
    for candidate in upgradable:
        by_source[candidate.source_type] = by_source.get(candidate.source_type, 0) + 1
    sources = ", ".join(f"{count} from {name}" for name, count in sorted(by_source.items()))
    console.print(
        f"\n[bold]{len(upgradable)}[/bold] of [bold]{result.total_mods}[/bold] mods can be upgraded."
        + (f" ({sources})" if sources else "")
    )

    for mod_id, names in report.ambiguous.items():
        console.print(f"[yellow]Ambiguous assets for {mod_id}:[/yellow] {', '.join(names) or '-'}")
    for mod_id, error in report.invalid_patterns.items():
        console.print(f"[yellow]Invalid file_pattern for {mod_id}:[/yellow] {escape(error)}")
    if report.unsupported:
        console.print(f"[dim]Unsupported sources skipped: {', '.join(report.unsupported)}[/dim]")
    if report.failures:
        console.print(f"[yellow]Checks failed:[/yellow] {len(report.failures)} (use --retry to check again)")
    if report.rate_limited:
        if report.rate_limit_reset_in is not None:
            console.print(
                f"[yellow]Rate limited.[/yellow] Resets in ~{report.rate_limit_reset_in:.0f}s"
            )
        else:
            console.print("[yellow]Rate limited.[/yellow]")

    for applied in result.applied:
        console.print(f"  [green]~[/green] {applied.mod_id} -> {applied.version}")
    for error in result.errors:
        console.print(f"[red]Update error:[/red] {error}")

    if result.rate_limit:
        quota = result.rate_limit
        reset_in = (quota.get("reset", time.time()) - time.time()) / 60
        console.print(
            f"[dim]rate limits - used: {quota.get('used')}, remaining: {quota.get('remaining')}, "
            f"reset in: {reset_in:.1f} mins[/dim]"
        )


if __name__ == "__main__":
    main()
