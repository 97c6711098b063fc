"""Rich console output and markdown file save for orchestrated answers."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from config.config_loader import OrchestrationConfig
from rlm.aggregator import format_for_display
from rlm.models import AggregationResult, ConflictAnalysis, ExecutionResult

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str | None, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = (text or "").split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _result_title(result: ExecutionResult) -> str:
    title = f"[bold]{result.query_id}[/bold] ({result.type})"
    if result.agent_name:
        title += f" {result.agent_name}"
    if result.perspective:
        title += f" [cyan]{result.perspective.role.label}[/cyan]"
    return title


def print_results(results: list[ExecutionResult]) -> None:
    """Print a brief panel per sub-query result."""
    console.print(Rule("[bold cyan]Perspective Results[/bold cyan]"))
    for result in results:
        if result.success:
            body, style, subtitle = _preview(result.response), "dim", f"attempts: {result.attempts}"
        elif result.skipped:
            body, style, subtitle = f"Skipped: {result.error}", "yellow", "skipped"
        else:
            body, style, subtitle = f"Failed: {result.error}", "red", f"attempts: {result.attempts}"
        console.print(Panel(body, title=_result_title(result), subtitle=subtitle, border_style=style))


def print_conflicts(analysis: ConflictAnalysis | None) -> None:
    """Print the tension table; nothing when no conflict was detected."""
    if analysis is None or not analysis.has_conflicts:
        return
    table = Table(title="Detected Tensions", show_lines=True)
    table.add_column("#", justify="right")
    table.add_column("View A")
    table.add_column("View B")
    table.add_column("Confidence", justify="right")
    for index, conflict in enumerate(analysis.conflicts, start=1):
        a, b = conflict.source_a, conflict.source_b
        table.add_row(
            str(index),
            f"[bold]{a.perspective}[/bold] ({a.agent_name})\n{a.excerpt}",
            f"[bold]{b.perspective}[/bold] ({b.agent_name})\n{b.excerpt}",
            f"{conflict.confidence:.2f}",
        )
    console.print(table)
    if analysis.conflict_themes:
        console.print(Text(f"Themes: {', '.join(analysis.conflict_themes)}", style="dim"))


def print_answer(result: AggregationResult, config: OrchestrationConfig) -> None:
    """Print the final answer using Rich markdown."""
    console.print(Rule("[bold green]Answer[/bold green]"))
    meta = result.metadata
    console.print(
        Text(
            f"Strategy: {meta.get('strategy', '?')} | "
            f"Aggregation: {result.aggregation_type} | "
            f"Sub-queries: {meta.get('successful_queries', 0)}/{meta.get('total_sub_queries', 0)} ok | "
            f"Duration: {meta.get('total_time_sec', 0.0):.1f}s",
            style="dim",
        )
    )
    console.print(Markdown(format_for_display(result, config)))


def save_to_file(
    query: str,
    result: AggregationResult,
    output_dir: Path,
    config: OrchestrationConfig,
    slug_override: str | None = None,
) -> Path:
    """Save the answer, per-perspective results and tension report as markdown.

    Args:
        query: The question that was answered.
        result: The AggregationResult from the pipeline.
        output_dir: Directory to save the file in.
        config: Display toggles for perspectives and tensions.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the question text.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(query)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    meta = result.metadata
    lines: list[str] = [
        f"# RLM Answer: {query[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Classification:** {meta.get('intent', '?')} / {meta.get('complexity', '?')}",
        f"**Strategy:** {meta.get('strategy', '?')}",
        f"**Aggregation:** {result.aggregation_type}",
        f"**Sub-queries:** {meta.get('successful_queries', 0)} succeeded, "
        f"{meta.get('failed_queries', 0)} failed",
        f"**Duration:** {meta.get('total_time_sec', 0.0):.1f}s",
        "",
        "---",
        "",
        "## Answer",
        "",
        format_for_display(result, config),
        "",
    ]

    analysis = result.conflict_analysis
    if analysis is not None and analysis.has_conflicts:
        lines += ["## Tensions", ""]
        for index, conflict in enumerate(analysis.conflicts, start=1):
            a, b = conflict.source_a, conflict.source_b
            lines.append(f"{index}. **{a.perspective}** ({a.agent_name}) vs **{b.perspective}** ({b.agent_name})")
            lines.append(f"   - View A: {a.excerpt}")
            lines.append(f"   - View B: {b.excerpt}")
        if analysis.conflict_themes:
            lines += ["", f"*Themes: {', '.join(analysis.conflict_themes)}*"]
        lines.append("")

    if result.report is not None:
        lines += ["## Sub-query Results", ""]
        for sub in result.report.results:
            heading = f"### {sub.query_id} ({sub.type})"
            if sub.agent_name:
                heading += f": {sub.agent_name}"
            if sub.perspective:
                heading += f" [{sub.perspective.role.label}]"
            lines += [heading, ""]
            if sub.success:
                lines.append(sub.response or "")
            else:
                lines.append(f"*{'Skipped' if sub.skipped else 'Failed'}: {sub.error}*")
            lines += ["", f"*Attempts: {sub.attempts}*", ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Answer saved to: %s", filepath)
    return filepath
