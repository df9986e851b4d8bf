"""Rich-based terminal display for suite runs.

All functions share the module-level ``_console`` so output formatting is
consistent across a run; each function is standalone and stateless.
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.suite_shared.models import PackageStatus

# ---------------------------------------------------------------------------
# Module-level Console singleton
# ---------------------------------------------------------------------------

_console = Console()

_STATUS_STYLES: dict[str, str] = {
    PackageStatus.PUBLISHED.value: "green",
    PackageStatus.BLOCKED_BY_QUALITY.value: "yellow",
    PackageStatus.AWAITING_PLAN.value: "cyan",
    PackageStatus.SKIPPED.value: "dim",
}


def _status_markup(status: Any) -> str:
    value = getattr(status, "value", status)
    style = _STATUS_STYLES.get(value, "red")
    return f"[{style}]{value.upper()}[/{style}]"


def print_suite_header(suite_id: str, roots: list[str], build_order: list[str]) -> None:
    """Print a panel identifying the run and its resolved build order."""
    header = Text()
    header.append("Suite Builder\n", style="bold white")
    header.append("Suite: ", style="bold")
    header.append(f"{suite_id}\n", style="cyan")
    header.append("Roots: ", style="bold")
    header.append(f"{', '.join(roots)}\n", style="green")
    header.append("Build order: ", style="bold")
    header.append(" -> ".join(build_order) if build_order else "(nothing resolved)")

    _console.print(
        Panel(
            header,
            title="[bold]Suite Overview[/bold]",
            border_style="blue",
            expand=False,
        )
    )


def print_package_outcome(outcome: Any) -> None:
    """One status line as each package finishes."""
    score = _get_attr(outcome, "score")
    score_str = f" score={score:.1f}" if score is not None else ""
    version = _get_attr(outcome, "version", "")
    version_str = f"@{version}" if version else ""
    _console.print(
        f"{_status_markup(_get_attr(outcome, 'status', 'unknown'))} "
        f"{_get_attr(outcome, 'package_name', '?')}{version_str}{score_str}"
    )


def print_compliance_breakdown(result: Any) -> None:
    """Per-category points for one package's compliance score."""
    score = _get_attr(result, "score")
    if score is None:
        return
    table = Table(
        title=f"Compliance: {_get_attr(result, 'package_name', '?')}",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Category", style="cyan", min_width=15)
    table.add_column("Points", justify="right", min_width=8)
    for category, points in _get_attr(score, "breakdown", {}).items():
        table.add_row(category, f"{points:.2f}")
    level = _get_attr(score, "level", "")
    table.add_row("[bold]total[/bold]", f"[bold]{score.score:.2f}[/bold] ({getattr(level, 'value', level)})")
    _console.print(table)


def print_suite_report(report: Any) -> None:
    """Table of every package's terminal status, then a summary panel."""
    table = Table(title="Suite Report", show_header=True, header_style="bold magenta")
    table.add_column("Package", style="cyan", min_width=25)
    table.add_column("Status", justify="center", min_width=14)
    table.add_column("Version", justify="center", min_width=10)
    table.add_column("Score", justify="right", min_width=7)
    table.add_column("Duration", justify="right", min_width=9)
    table.add_column("Detail", overflow="fold")

    outcomes = _get_attr(report, "outcomes", [])
    for outcome in outcomes:
        score = _get_attr(outcome, "score")
        duration = _get_attr(outcome, "duration_s", 0.0)
        table.add_row(
            _get_attr(outcome, "package_name", "?"),
            _status_markup(_get_attr(outcome, "status", "unknown")),
            _get_attr(outcome, "version", "") or "-",
            f"{score:.1f}" if score is not None else "-",
            f"{duration:.1f}s" if duration else "-",
            (_get_attr(outcome, "error", "") or "")[:200],
        )
    _console.print(table)

    published = sum(1 for o in outcomes if getattr(_get_attr(o, "status"), "value", _get_attr(o, "status")) == "published")
    success = published == len(outcomes) and bool(outcomes)
    _console.print(
        Panel(
            f"{published}/{len(outcomes)} package(s) published",
            title="[bold]Result[/bold]",
            border_style="green" if success else "red",
            expand=False,
        )
    )


def print_error_panel(error: str | Exception) -> None:
    _console.print(Panel(str(error), title="[bold red]Error[/bold red]", border_style="red", expand=False))


def print_shutdown_notice() -> None:
    _console.print("[bold yellow]Stopping after the current package; run again to resume.[/bold yellow]")


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    """Read *name* from an object or a dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
