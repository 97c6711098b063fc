"""Click CLI: loads config and agents, picks a provider, answers one question."""

import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import (
    ROLE_ASSIGNMENT_STRATEGIES,
    AppConfig,
    OrchestrationConfig,
    load_config,
    validate_orchestration,
)
from rlm.decomposer import classify_query
from rlm.llm import make_llm_call
from rlm.models import AggregationResult, Classification, Complexity, ExecutionEvent, Intent, StrategyType
from rlm.output import print_answer, print_conflicts, print_results, save_to_file
from rlm.pipeline import answer_question
from rlm.providers.anthropic import AnthropicProvider
from rlm.providers.base import AIProvider
from rlm.providers.gemini import GeminiProvider
from rlm.providers.openai_provider import OpenAIProvider
from rlm.store import ContextStore, load_store

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# keyed by ModelConfig.sdk
PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "google-genai": GeminiProvider,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_provider(config: AppConfig, preferred: str | None) -> AIProvider | None:
    """Instantiate the preferred provider, else the first available one that builds."""
    candidates = sorted(config.available_providers)
    if preferred:
        if preferred not in config.available_providers:
            logger.warning("Provider '%s' not available (missing key or unknown)", preferred)
        else:
            candidates = [preferred] + [c for c in candidates if c != preferred]

    for name in candidates:
        model_cfg = config.models[name]
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("Provider '%s' uses unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue
        try:
            return provider_cls(model_cfg)
        except Exception as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return None


def _resolve_classification(question: str, intent: str | None, complexity: str | None) -> Classification:
    """Explicit flags win; anything missing comes from the keyword classifier."""
    guessed = classify_query(question)
    return Classification(
        intent=Intent(intent) if intent else guessed.intent,
        complexity=Complexity(complexity) if complexity else guessed.complexity,
    )


def _apply_overrides(
    orchestration: OrchestrationConfig,
    role_strategy: str | None,
    no_sot: bool,
    no_conflicts: bool,
) -> OrchestrationConfig:
    """Return a validated copy of the orchestration settings with CLI flags applied."""
    changes: dict = {}
    if role_strategy:
        changes["role_assignment_strategy"] = role_strategy
    if no_sot:
        changes["enable_societies_of_thought"] = False
    if no_conflicts:
        changes["enable_conflict_detection"] = False
        changes["surface_conflicts_in_response"] = False
    return validate_orchestration(dataclasses.replace(orchestration, **changes))


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    """First Ctrl+C stops new work and keeps partial results; a second one aborts."""
    loop = asyncio.get_running_loop()

    def on_sigint() -> None:
        if cancel_event.is_set():
            raise KeyboardInterrupt
        console.print("[yellow]Cancelling: finishing with the results gathered so far...[/yellow]")
        cancel_event.set()

    try:
        loop.add_signal_handler(signal.SIGINT, on_sigint)
    except (NotImplementedError, RuntimeError):
        # not supported on Windows event loops; Ctrl+C aborts instead
        pass


async def _run(
    question: str,
    classification: Classification,
    store: ContextStore,
    provider: AIProvider,
    config: AppConfig,
    orchestration: OrchestrationConfig,
    strategy: StrategyType | None,
) -> AggregationResult:
    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)
    llm_call = make_llm_call(provider, config.prompts)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Decomposing question...", total=None)

        def on_event(event: ExecutionEvent) -> None:
            if event.phase == "stage" and event.message.startswith("started"):
                progress.update(task, description=f"Running {event.query_id}: {event.message}")
            elif event.phase == "stage":
                progress.print(f"[green]OK[/green] {event.query_id} {event.message}")
            elif event.phase == "retry":
                progress.print(f"[yellow]RETRY[/yellow] {event.query_id}: {event.message}")
            elif event.message.startswith(("failed", "skipped")):
                progress.print(f"[red]FAIL[/red] {event.query_id}: {event.message}")

        result = await answer_question(
            question,
            classification,
            store,
            llm_call,
            orchestration,
            strategy=strategy,
            cancel_event=cancel_event,
            on_event=on_event,
        )
    return result


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from a text/markdown file")
@click.option("--agents-dir", default=None, type=click.Path(file_okay=False),
              help="Directory of agent .md files plus optional groups.yaml (default: from config)")
@click.option("--intent", type=click.Choice([i.value for i in Intent]), default=None,
              help="Question intent (default: keyword classification)")
@click.option("--complexity", type=click.Choice([c.value for c in Complexity]), default=None,
              help="Question complexity (default: keyword classification)")
@click.option("--strategy",
              type=click.Choice([StrategyType.DIRECT.value, StrategyType.PARALLEL.value, StrategyType.MAP_REDUCE.value]),
              default=None, help="Force an agent-level strategy")
@click.option("--role-strategy", type=click.Choice(list(ROLE_ASSIGNMENT_STRATEGIES)), default=None,
              help="Perspective role assignment strategy (default: from config)")
@click.option("--provider", default=None, help="Which configured model answers (default: from config)")
@click.option("--no-sot", is_flag=True, help="Disable perspective roles (Societies of Thought)")
@click.option("--no-conflicts", is_flag=True, help="Disable conflict detection and surfacing")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--no-save", is_flag=True, help="Do not write the markdown report")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    question: str | None,
    question_file: str | None,
    agents_dir: str | None,
    intent: str | None,
    complexity: str | None,
    strategy: str | None,
    role_strategy: str | None,
    provider: str | None,
    no_sot: bool,
    no_conflicts: bool,
    output_path: str | None,
    no_save: bool,
    verbose: bool,
) -> None:
    """RLM -- multi-perspective question answering over prior-analyzed sources.

    \b
    Examples:
      rlm "What risks were raised about the launch?" --agents-dir ./agents
      rlm "Compare the Q1 and Q2 planning meetings" --complexity aggregate
      rlm --file question.md --provider gemini --no-save
    """
    # Model responses may carry characters the Windows console codepage can't encode.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
        orchestration = _apply_overrides(config.orchestration, role_strategy, no_sot, no_conflicts)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if question_file:
        question_text = Path(question_file).read_text(encoding="utf-8").strip()
    elif question:
        question_text = question
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
        sys.exit(1)

    directory = Path(agents_dir) if agents_dir else config.defaults.agents_dir
    if directory is None:
        console.print("[bold red]Error:[/bold red] No agents directory. Use --agents-dir or set defaults.agents_dir.")
        sys.exit(1)
    try:
        store = load_store(directory)
    except FileNotFoundError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    model = _build_provider(config, provider or config.defaults.synthesizer)
    if model is None:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    classification = _resolve_classification(question_text, intent, complexity)

    console.print(f"\n[bold cyan]RLM[/bold cyan] {model.name()} ({model.model_string()})")
    console.print(f"Sources: {len(store.list_agents())} agents, {len(store.list_groups())} groups")
    console.print(f"Classification: {classification.intent} / {classification.complexity}")
    console.print(f"Question: [italic]{question_text[:80]}{'...' if len(question_text) > 80 else ''}[/italic]\n")

    result = asyncio.run(
        _run(
            question_text,
            classification,
            store,
            model,
            config,
            orchestration,
            StrategyType(strategy) if strategy else None,
        )
    )

    if result.report is not None:
        print_results(result.report.results)
    print_conflicts(result.conflict_analysis)
    print_answer(result, orchestration)

    if not no_save:
        output_dir = Path(output_path) if output_path else config.defaults.output_dir
        saved_path = save_to_file(question_text, result, output_dir, orchestration)
        console.print(f"\n[dim]Saved to: {saved_path}[/dim]")

    if not result.success:
        sys.exit(2)


if __name__ == "__main__":
    main()
