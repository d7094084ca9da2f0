"""
Typer CLI for the lms-offline service.

Commands:
    lms-offline sync run            - Sync the offline cache with the backend
    lms-offline cache info          - Show cache size and last sync summary
    lms-offline cache clear         - Delete the active user's cached data
    lms-offline conflicts list      - Show the conflict audit history
    lms-offline grades report       - Weighted course grades and GPA from the cache
    lms-offline grades needed       - Percentage needed on remaining work for a target
    lms-offline grades weights      - Show or change a course's category weights
    lms-offline consent status      - Show cached COPPA consent and retry state
    lms-offline consent retry       - Re-send a pending consent write

Usage:
    lms-offline --help
    lms-offline --user 6f1c... sync run
    lms-offline grades needed --earned 170 --total 200 --remaining 100 --target 90
"""

from __future__ import annotations

import asyncio
import sys
from uuid import UUID

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from config import Settings, get_settings

app = typer.Typer(
    help="lms-offline CLI: offline cache, sync and grades for the LMS client",
    no_args_is_help=True,
)

console = Console()


def configure_logging(settings: Settings) -> None:
    """Route loguru output to stderr (and an optional rotating file)."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


# ========================================
# Context Builder (Dependency Injection)
# ========================================


class CLIContext:
    """
    Dependency injection container for CLI commands.

    Services are created lazily so commands that only read the cache never
    open an HTTP client.
    """

    def __init__(self, user_id: str | None = None):
        self.settings = get_settings()
        self.user_id = user_id or self.settings.user_id
        self._storage = None

    @property
    def storage(self):
        """Lazy load OfflineStorageService scoped to the active user."""
        if self._storage is None:
            from src.offline.service import OfflineStorageService

            self._storage = OfflineStorageService()
            if self.user_id:
                self._storage.set_current_user(self.user_id)
        return self._storage

    def require_user(self) -> str:
        if not self.user_id:
            rprint("[red]✗[/red] No active user. Pass --user or set LMS_USER_ID.")
            raise typer.Exit(code=1)
        return self.user_id

    def remote(self):
        from src.sync.remote_client import RemoteDataClient

        return RemoteDataClient.from_settings(self.settings)

    def calculator(self):
        from src.core.grading import GradeCalculator

        return GradeCalculator.from_settings(self.settings)

    def default_weights(self):
        from src.core.grading import GradeWeights

        return GradeWeights(**self.settings.get_default_weights())


@app.callback()
def main_callback(
    ctx: typer.Context,
    user: str | None = typer.Option(None, "--user", "-u", help="User id whose cache to use"),
) -> None:
    """Offline cache, sync and grade tools for the LMS client."""
    ctx.obj = CLIContext(user_id=user)


def _context(ctx: typer.Context) -> CLIContext:
    if ctx.obj is None:
        ctx.obj = CLIContext()
    return ctx.obj


# ========================================
# SYNC COMMANDS
# ========================================

sync_app = typer.Typer(help="Sync the offline cache with the backend", no_args_is_help=True)
app.add_typer(sync_app, name="sync")


async def _run_sync(cli: CLIContext):
    from src.sync.conflicts import ConflictPolicy
    from src.sync.consent import ConsentSyncService
    from src.sync.sync_service import SyncService

    def progress_callback(kind: str, current: int, total: int) -> None:
        console.print(f"  [{kind}] {current}/{total}", markup=False)

    async with cli.remote() as remote:
        service = SyncService(
            cli.storage,
            remote,
            policy=ConflictPolicy.from_settings(cli.settings),
            consent=ConsentSyncService(cli.storage.store, remote),
            progress_callback=progress_callback,
        )
        return await service.handle_connectivity_change(is_online=True)


@sync_app.command("run")
def sync_run(ctx: typer.Context) -> None:
    """
    Fetch every entity kind, resolve conflicts and refresh the cache.

    A failure in one kind is reported and the others still sync.
    """
    cli = _context(ctx)
    cli.require_user()

    rprint("\n[bold cyan]Backend -> Offline Cache Sync[/bold cyan]")
    rprint(f"  User: {cli.user_id}\n")

    result = asyncio.run(_run_sync(cli))

    table = Table(title="Sync Results", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Items synced", str(result.items_synced))
    table.add_row("Conflicts found", str(result.conflicts_found))
    table.add_row("Conflicts resolved", str(result.conflicts_resolved))
    table.add_row("Errors", str(len(result.errors)) if result.errors else "-")
    console.print(table)

    if result.is_success:
        rprint("\n[bold green]✓ Sync complete![/bold green]")
        return

    summary = result.to_dict()
    rprint(f"\n[yellow]⚠[/yellow] {len(result.errors)} errors occurred during sync")
    for error in summary["errors"]:
        rprint(f"  [red]•[/red] {escape(error)}")
    raise typer.Exit(code=1)


# ========================================
# CACHE COMMANDS
# ========================================

cache_app = typer.Typer(help="Inspect or clear the offline cache", no_args_is_help=True)
app.add_typer(cache_app, name="cache")


@cache_app.command("info")
def cache_info(ctx: typer.Context) -> None:
    """Show cache size per data set and the last sync summary."""
    from rich.filesize import decimal

    cli = _context(ctx)
    cli.require_user()
    storage = cli.storage

    table = Table(title=f"Offline Cache ({storage.formatted_cache_size})")
    table.add_column("Data", style="cyan")
    table.add_column("Size", justify="right")
    for label, size in storage.storage_breakdown:
        table.add_row(label, decimal(size))
    console.print(table)

    last_sync = storage.last_sync_date
    rprint(f"  Last sync: {last_sync.isoformat(timespec='seconds') if last_sync else 'never'}")

    result = storage.load_sync_result()
    if result is not None:
        status = "[green]ok[/green]" if result.is_success else f"[red]{len(result.errors)} errors[/red]"
        rprint(
            f"  Last result: {result.items_synced} items, "
            f"{result.conflicts_found} conflicts ({result.conflicts_resolved} resolved), {status}"
        )


@cache_app.command("clear")
def cache_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete every cached item of the active user (other users are untouched)."""
    cli = _context(ctx)
    user_id = cli.require_user()

    if not yes and not typer.confirm(f"Clear offline data for user {user_id}?"):
        raise typer.Abort()

    result = cli.storage.clear_all_data()
    if not result.success:
        rprint(f"[red]✗[/red] Clear failed: {escape(str(result.error))}")
        raise typer.Exit(code=1)
    rprint(f"[green]✓[/green] Offline data cleared ({cli.storage.formatted_cache_size} remaining)")


# ========================================
# CONFLICT COMMANDS
# ========================================

conflicts_app = typer.Typer(help="Conflict audit history", no_args_is_help=True)
app.add_typer(conflicts_app, name="conflicts")


@conflicts_app.command("list")
def conflicts_list(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", help="Most recent entries to show"),
) -> None:
    """Show resolved conflicts, newest first."""
    cli = _context(ctx)
    cli.require_user()
    history = cli.storage.load_conflict_history()

    if not history:
        rprint("[dim]No conflicts recorded[/dim]")
        return

    table = Table(title=f"Conflict History ({len(history)})")
    table.add_column("Resolved", style="dim")
    table.add_column("Kind", style="cyan")
    table.add_column("Entity")
    table.add_column("Resolution", style="yellow")
    table.add_column("Server Modified", style="dim")

    for conflict in sorted(history, key=lambda c: c.resolved_at, reverse=True)[:limit]:
        table.add_row(
            conflict.resolved_at.strftime("%Y-%m-%d %H:%M"),
            conflict.entity_type.value,
            conflict.entity_name,
            conflict.resolution.value,
            conflict.server_modified_at.strftime("%Y-%m-%d %H:%M") if conflict.server_modified_at else "deleted",
        )
    console.print(table)


# ========================================
# GRADE COMMANDS
# ========================================

grades_app = typer.Typer(help="Grade calculations over cached grades", no_args_is_help=True)
app.add_typer(grades_app, name="grades")

_COLOR_STYLES = {
    "green": "green",
    "blue": "blue",
    "yellow": "yellow",
    "orange": "dark_orange",
    "red": "red",
}


@grades_app.command("report")
def grades_report(ctx: typer.Context) -> None:
    """Weighted grade, letter and trend per course, plus GPA."""
    from src.core.grading import grade_color

    cli = _context(ctx)
    cli.require_user()
    storage = cli.storage
    grades = storage.load_grades()

    if not grades:
        rprint("[dim]No cached grades. Run 'lms-offline sync run' first.[/dim]")
        return

    default = cli.default_weights()
    weights = {g.course_id: storage.load_grade_weights(g.course_id, default) for g in grades}
    results, gpa = cli.calculator().report_card(grades, weights, default)

    table = Table(title="Report Card")
    table.add_column("Course", style="cyan")
    table.add_column("Overall", justify="right")
    table.add_column("Letter", justify="center")
    table.add_column("Points", justify="right")
    table.add_column("Trend", justify="center")

    for result in results:
        style = _COLOR_STYLES.get(grade_color(result.overall_percentage).value, "white")
        table.add_row(
            result.course_name,
            f"{result.overall_percentage:.1f}%",
            f"[{style}]{result.letter_grade}[/{style}]",
            f"{result.grade_points:.1f}",
            f"{result.trend.arrow} {result.trend.display_name}",
        )
    table.add_section()
    table.add_row("GPA", "", "", f"{gpa:.2f}", "", style="bold")
    console.print(table)


@grades_app.command("needed")
def grades_needed(
    earned: float = typer.Option(..., "--earned", help="Points earned so far"),
    total: float = typer.Option(..., "--total", help="Points possible so far"),
    remaining: float = typer.Option(..., "--remaining", help="Points still to be graded"),
    target: float = typer.Option(90.0, "--target", help="Target overall percentage"),
) -> None:
    """Percentage needed on the remaining work to reach a target."""
    from src.core.grading import percentage_needed

    needed = percentage_needed(earned, total, remaining, target)
    if needed is None:
        rprint(f"[red]✗[/red] {target:.1f}% is out of reach with {remaining:g} points remaining")
        raise typer.Exit(code=1)
    if needed == 0.0:
        rprint(f"[green]✓[/green] {target:.1f}% is already secured")
        return
    rprint(f"Need [bold]{needed:.1f}%[/bold] on the remaining {remaining:g} points to reach {target:.1f}%")


@grades_app.command("weights")
def grades_weights(
    ctx: typer.Context,
    course_id: UUID = typer.Argument(..., help="Course id"),
    assignments: float | None = typer.Option(None, "--assignments", help="Assignment weight (0-1)"),
    quizzes: float | None = typer.Option(None, "--quizzes", help="Quiz weight (0-1)"),
    participation: float | None = typer.Option(None, "--participation", help="Participation weight (0-1)"),
    attendance: float | None = typer.Option(None, "--attendance", help="Attendance weight (0-1)"),
) -> None:
    """Show a course's category weights, or change them when options are given."""
    from src.core.grading import GradeCategory

    cli = _context(ctx)
    cli.require_user()
    storage = cli.storage
    weights = storage.load_grade_weights(course_id, cli.default_weights())

    changes = {
        GradeCategory.ASSIGNMENT: assignments,
        GradeCategory.QUIZ: quizzes,
        GradeCategory.PARTICIPATION: participation,
        GradeCategory.ATTENDANCE: attendance,
    }
    changed = False
    for category, value in changes.items():
        if value is not None:
            weights = weights.setting(category, value)
            changed = True

    if changed:
        if not weights.is_valid:
            rprint(f"[red]✗[/red] Weights must sum to 1.0 (got {weights.total:.3f})")
            raise typer.Exit(code=1)
        storage.save_grade_weights(course_id, weights).result()
        rprint("[green]✓[/green] Weights saved")

    table = Table(title=f"Grade Weights ({course_id})")
    table.add_column("Category", style="cyan")
    table.add_column("Weight", justify="right")
    for category in GradeCategory:
        table.add_row(category.display_name, f"{weights.weight_for(category):.0%}")
    console.print(table)


# ========================================
# CONSENT COMMANDS
# ========================================

consent_app = typer.Typer(help="COPPA consent sync", no_args_is_help=True)
app.add_typer(consent_app, name="consent")


@consent_app.command("status")
def consent_status(ctx: typer.Context) -> None:
    """Show the cached consent status and whether a server write is pending."""
    from src.sync.consent import ConsentSyncService

    cli = _context(ctx)
    user_id = cli.require_user()
    consent = ConsentSyncService(cli.storage.store, cli.remote())

    granted = consent.cached_consent_status(user_id)
    pending = consent.is_consent_sync_pending(user_id)
    rprint(f"  Cached consent: {'[green]granted[/green]' if granted else '[yellow]not granted[/yellow]'}")
    rprint(f"  Server sync: {'[red]pending retry[/red]' if pending else '[green]up to date[/green]'}")


async def _retry_consent(cli: CLIContext, user_id: str) -> bool | None:
    from src.sync.consent import ConsentSyncService

    async with cli.remote() as remote:
        return await ConsentSyncService(cli.storage.store, remote).retry_pending(user_id)


@consent_app.command("retry")
def consent_retry(ctx: typer.Context) -> None:
    """Re-send a consent write that previously failed."""
    cli = _context(ctx)
    user_id = cli.require_user()

    retried = asyncio.run(_retry_consent(cli, user_id))
    if retried is None:
        rprint("[dim]No consent sync pending[/dim]")
    elif retried:
        rprint("[green]✓[/green] Consent synced to server")
    else:
        rprint("[red]✗[/red] Consent sync failed, will retry on next launch")
        raise typer.Exit(code=1)


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint("[bold]lms-offline[/bold] v1.0.0")
    rprint("  Offline cache, sync and grade engine")


def main() -> None:
    """Entry point for the CLI."""
    configure_logging(get_settings())
    app()


if __name__ == "__main__":
    main()
