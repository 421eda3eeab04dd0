"""
CLI Main - Typer command-line interface.
========================================

Commands:
- score: Score one query's retrieved ids against ground truth
- eval: Evaluate a recorded retrieval run against a dataset
- info: Show version and effective configuration
"""

import time
from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from kbeval.shared.logging import get_console, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="kbeval",
    help="""📏 kbeval - Retrieval Quality Evaluation for Knowledge Bases

Scores ranked retrieval output against annotated ground truth with
Precision, Recall, F1, MRR and NDCG@k.

━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

COMMANDS OVERVIEW:

  score    Score a single query
           -g, --gt           Ground-truth group (repeatable), comma-separated ids
           -r, --retrieved    Retrieved ids in rank order, comma-separated
           -k, --ndcg-k       NDCG cutoff (default: from config)

  eval     Evaluate a recorded retrieval run
           DATASET            Dataset file (JSON/JSONL/YAML)
           RUN                Run file mapping QA ids to retrieved ids
           -a, --aggregation  macro or micro (default: from config)
           -o, --output       Save the task payload to JSON

  info     Show version and configuration

━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

QUICK START:

  kbeval score -g 1,2,3 -r 1,4,2
  kbeval eval data/dataset.json data/run.json -o results.json

Use 'kbeval <command> --help' for detailed command options.
""",
    add_completion=False,
    rich_markup_mode="rich",
)

# Same Console as the log handler
console = get_console()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level", "-l",
        help="Override the configured log level (DEBUG, INFO, WARNING, ...).",
    ),
):
    """Configure logging before any command runs."""
    from kbeval.shared.config import get_settings
    from kbeval.shared.logging import setup_logging_from_settings

    settings = get_settings()
    if log_level:
        settings = settings.model_copy(update={"log_level": log_level})
    setup_logging_from_settings(settings, force=True)


def _parse_ids(raw: str) -> list[str]:
    """Split a comma-separated id list, dropping blanks."""
    return [part.strip() for part in raw.split(",") if part.strip()]


def _scores_table(title: str, scores: dict[str, float]) -> Table:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Score", justify="right")
    for name, value in scores.items():
        table.add_row(name, f"{value:.4f}")
    return table


# ─────────────────────────────────────────────────────────────────────────────
# Score Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def score(
    gt: list[str] = typer.Option(
        ...,
        "--gt", "-g",
        help="Ground-truth group as comma-separated ids. Repeat for several groups.",
    ),
    retrieved: str = typer.Option(
        "",
        "--retrieved", "-r",
        help="Retrieved ids in rank order, comma-separated.",
    ),
    ndcg_k: Optional[int] = typer.Option(
        None,
        "--ndcg-k", "-k",
        help="NDCG cutoff; 0 or less uses the full ranking.",
    ),
):
    """
    🎯 Score one query with all five metrics.

    Ids are compared as plain strings.

    Examples:
        kbeval score -g 1,2,3 -r 1,4,2
        kbeval score -g 1,2 -g 3,4 -r 1,4,6 -k 5
    """
    from kbeval.evaluation.metrics import MetricInput, compute_all, default_metrics
    from kbeval.shared.config import get_settings

    if ndcg_k is None:
        ndcg_k = get_settings().evaluation.ndcg_k

    metric_input = MetricInput(
        ground_truth=tuple(tuple(_parse_ids(group)) for group in gt),
        retrieved_ids=tuple(_parse_ids(retrieved)),
    )
    scores = compute_all(metric_input, default_metrics(ndcg_k))

    console.print(_scores_table(f"Query Scores (NDCG@{ndcg_k})", scores))


# ─────────────────────────────────────────────────────────────────────────────
# Eval Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def eval(
    dataset_file: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="Dataset file with QA pairs (JSON, JSONL or YAML).",
    ),
    run_file: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="Recorded retrieval run: QA-pair id or question → retrieved ids.",
    ),
    knowledge_base_id: str = typer.Option(
        "default",
        "--kb",
        help="Knowledge base id recorded on the task.",
    ),
    aggregation: Optional[str] = typer.Option(
        None,
        "--aggregation", "-a",
        help="Aggregation policy: macro (per-query mean) or micro (pooled).",
    ),
    output_file: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Save the final task payload to a JSON file.",
    ),
    sync: bool = typer.Option(
        False,
        "--sync/--background",
        help="Run the pipeline in this thread instead of a worker thread.",
    ),
):
    """
    📊 Evaluate a recorded retrieval run against a dataset.

    Creates an evaluation task, runs it, shows progress and prints the
    aggregated report.

    Examples:
        kbeval eval data/dataset.json data/run.json
        kbeval eval data/dataset.jsonl data/run.json -a micro -o results.json
    """
    from kbeval.collaborators import (
        InMemoryDatasetRepository,
        InMemoryKnowledgeBaseRepository,
        InMemoryTaskStore,
        ReplayRetriever,
    )
    from kbeval.evaluation import EvaluationOrchestrator, InlineExecutor, load_dataset
    from kbeval.shared.config import AggregationPolicy, get_settings
    from kbeval.shared.errors import EvaluationError
    from kbeval.shared.schemas import EvaluationTaskStatus, KnowledgeBase
    from kbeval.shared.utils import save_json

    settings = get_settings()
    if aggregation:
        try:
            policy = AggregationPolicy(aggregation.lower())
        except ValueError:
            console.print(f"[red]Unknown aggregation policy: {aggregation}[/red]")
            raise typer.Exit(2)
        settings = settings.model_copy(
            update={"evaluation": settings.evaluation.model_copy(update={"aggregation": policy})}
        )

    try:
        dataset = load_dataset(dataset_file)
        retriever = ReplayRetriever.from_file(run_file, dataset)
    except (EvaluationError, ValueError) as e:
        console.print(f"[red]Failed to load input: {e}[/red]")
        raise typer.Exit(1)

    console.print(Panel(
        f"[bold]Evaluation Configuration[/bold]\n"
        f"Dataset: {dataset.id} ({dataset.record_count} questions)\n"
        f"Run: {run_file} ({len(retriever)} recorded retrievals)\n"
        f"Knowledge Base: {knowledge_base_id}\n"
        f"Aggregation: {settings.evaluation.aggregation.value}\n"
        f"NDCG@{settings.evaluation.ndcg_k}\n"
        f"Mode: {'Sync' if sync else 'Background'}",
        title="📊 Evaluate",
    ))

    orchestrator = EvaluationOrchestrator(
        task_store=InMemoryTaskStore(),
        dataset_lookup=InMemoryDatasetRepository([dataset]),
        knowledge_base_lookup=InMemoryKnowledgeBaseRepository(
            [KnowledgeBase(id=knowledge_base_id, name=knowledge_base_id)]
        ),
        retriever=retriever,
        executor=InlineExecutor() if sync else None,
        settings=settings,
    )

    with orchestrator:
        task = orchestrator.create_evaluation(dataset.id, knowledge_base_id)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            bar = progress.add_task("Evaluating...", total=100)
            future = orchestrator.run_evaluation(task.id)

            while not future.done():
                current = orchestrator.get_evaluation(task.id)
                progress.update(
                    bar,
                    completed=current.progress,
                    description=f"Evaluating {current.completed_count}/{current.total_questions}...",
                )
                time.sleep(0.1)

            final = orchestrator.wait(task.id)
            progress.update(bar, completed=final.progress)

    if final.status != EvaluationTaskStatus.COMPLETED or final.result is None:
        console.print(f"\n[red]✗ Evaluation {final.status.value}: {final.error_msg}[/red]")
        raise typer.Exit(1)

    result = final.result
    console.print()
    console.print(_scores_table(
        f"Evaluation {final.id}",
        {
            "precision": result.precision,
            "recall": result.recall,
            "f1": result.f1_score,
            "mrr": result.mrr,
            "ndcg": result.ndcg,
        },
    ))
    console.print(
        f"Correct / Wrong: [green]{result.total_correct}[/green] / [red]{result.total_wrong}[/red]   "
        f"Avg response time: {result.avg_response_time_ms:.1f} ms"
    )

    if output_file:
        save_json(output_file, final.to_payload())
        console.print(f"\n[green]✓ Results saved to {output_file}[/green]")


# ─────────────────────────────────────────────────────────────────────────────
# Info Command
# ─────────────────────────────────────────────────────────────────────────────


@app.command()
def info():
    """
    ℹ️ Show version and effective configuration.

    Environment overrides (e.g. EVALUATION__NDCG_K=5) are already applied.
    """
    from kbeval import __version__
    from kbeval.shared.config import DEFAULT_CONFIG_FILE, get_settings

    settings = get_settings()
    exists = "✓" if DEFAULT_CONFIG_FILE.exists() else "✗"

    console.print(Panel(
        f"[bold]kbeval[/bold]\n"
        f"Version: {__version__}\n"
        f"Config: {DEFAULT_CONFIG_FILE} [{exists}]",
        title="ℹ️ Info",
    ))

    table = Table(title="Effective Configuration")
    table.add_column("Section")
    table.add_column("Key")
    table.add_column("Value")

    for section in ("evaluation", "retrieval", "tasks", "logging"):
        values = getattr(settings, section).model_dump(mode="json")
        for key, value in values.items():
            table.add_row(section, key, str(value))

    console.print(table)
    console.print(f"\nLog level: {settings.get_effective_log_level()}")
    console.print(f"Output dir: {settings.output_dir}")


# ─────────────────────────────────────────────────────────────────────────────
# Entry Point
# ─────────────────────────────────────────────────────────────────────────────


def cli():
    """CLI entry point."""
    app()


if __name__ == "__main__":
    cli()
