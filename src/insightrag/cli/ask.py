"""insightrag ask — load, embed, index, then answer analysis queries.

Usage:
  insightrag ask --data customers.csv --query "Which customers are churn risks?"

Flags:
  --data PATH        CSV record source (default: data.path from config)
  --query TEXT       Analysis query (repeatable; default: built-in examples)
  --top-k N          Profiles retrieved per query
  --chunk-size N     Records per embedding batch
  --policy NAME      Batch failure policy: fail-fast | skip
  --workers N        Parallel embedding batches
  --dry-run          Show retrieved profiles + prompt without calling the LLM
  --verbose          Debug logging

The index lives for the duration of the command only.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from insightrag.cli.errors import (
    err_empty_index,
    err_no_api_key,
    err_stage,
    warn_skipped_batches,
)
from insightrag.config import InsightConfig, load_config, validate_config
from insightrag.errors import ConfigError, InsightRagError
from insightrag.ingest.batch_embedder import BatchEmbedder
from insightrag.logging_utils import setup_logging
from insightrag.rag.llm_client import (
    LiteLLMEmbeddingProvider,
    LiteLLMTextGenerator,
    validate_api_key,
)
from insightrag.rag.pipeline import QueryPipeline, build_index
from insightrag.store.records import RecordStore
from insightrag.store.vectors import VectorIndex

console = Console()

EXAMPLE_QUERIES = [
    "What patterns do you see in high-income customers with low satisfaction scores?",
    "Analyze the relationship between purchase frequency and loyalty levels.",
    "What characteristics define our most satisfied customers?",
    "Identify potential churn risks based on customer patterns.",
]


def ask_cmd(
    query: Annotated[
        list[str] | None,
        typer.Option("--query", "-q", help="Analysis query (repeatable)."),
    ] = None,
    data: Annotated[
        Path | None,
        typer.Option("--data", "-d", help="CSV file with customer feedback records."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Profiles retrieved per query."),
    ] = None,
    chunk_size: Annotated[
        int | None,
        typer.Option("--chunk-size", help="Records per embedding batch."),
    ] = None,
    policy: Annotated[
        str | None,
        typer.Option("--policy", help="Batch failure policy: fail-fast | skip."),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", help="Parallel embedding batches."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show retrieval + prompt without LLM generation."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging."),
    ] = False,
) -> None:
    """Answer analysis queries using similar customer profiles as context."""
    setup_logging(verbose=verbose)

    # ---- Config (flags override file + env) ----
    try:
        cfg = _apply_flags(load_config(), data, top_k, chunk_size, policy, workers)
    except ConfigError as exc:
        console.print(err_stage(exc))
        raise typer.Exit(1)

    # ---- API keys ----
    models = [cfg.embedding.model] + ([] if dry_run else [cfg.generation.model])
    for model in models:
        try:
            validate_api_key(model)
        except ConfigError:
            console.print(err_no_api_key(model))
            raise typer.Exit(1)

    # ---- Step 1/3: Load ----
    try:
        store = RecordStore.load(Path(cfg.data.path))
    except InsightRagError as exc:
        console.print(err_stage(exc))
        raise typer.Exit(1)
    console.print(f"  [dim]✓ Loading — {len(store)} customer records[/]")

    # ---- Step 2/3: Embed + index ----
    provider = LiteLLMEmbeddingProvider(
        model=cfg.embedding.model,
        num_retries=cfg.embedding.num_retries,
        timeout=cfg.embedding.batch_timeout,
    )
    embedder = BatchEmbedder(
        provider,
        chunk_size=cfg.embedding.chunk_size,
        policy=cfg.embedding.on_batch_failure,
        max_workers=cfg.embedding.max_workers,
        batch_timeout=cfg.embedding.batch_timeout,
        batch_delay=cfg.embedding.batch_delay,
    )
    index = VectorIndex(metric=cfg.index.metric, dedupe=cfg.index.dedupe)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task("[2/3] Embedding…", total=None)
            report = build_index(store.records, embedder, index)
    except InsightRagError as exc:
        console.print(err_stage(exc))
        raise typer.Exit(1)

    console.print(
        f"  [dim]✓ Embedding — {len(report.embeddings)} of {len(store)} records "
        f"in {report.batch_count} batch(es)[/]"
    )
    if report.failures:
        console.print(
            warn_skipped_batches(
                [f.batch_index for f in report.failures], report.skipped_records
            )
        )
    if len(index) == 0:
        console.print(err_empty_index())
        raise typer.Exit(1)

    # ---- Step 3/3: Query ----
    generator = LiteLLMTextGenerator(
        model=cfg.generation.model,
        max_tokens=cfg.generation.max_tokens,
        temperature=cfg.generation.temperature,
        num_retries=cfg.generation.num_retries,
        timeout=cfg.generation.timeout,
    )
    pipeline = QueryPipeline(provider, index, generator, top_k=cfg.retrieval.top_k)

    failed = 0
    for q in query or EXAMPLE_QUERIES:
        console.print(f"\n[bold]=== Query: {escape(q)} ===[/]\n")
        try:
            if dry_run:
                prepared = pipeline.prepare(q)
                console.print(Panel(escape(prepared.prompt), title="[bold]Prompt[/]", expand=False))
                continue
            answer = pipeline.run(q)
        except InsightRagError as exc:
            console.print(err_stage(exc))
            failed += 1
            continue
        console.print(f"[bold]Analysis:[/]\n{escape(answer)}\n")

    if failed:
        raise typer.Exit(1)


def _apply_flags(
    cfg: InsightConfig,
    data: Path | None,
    top_k: int | None,
    chunk_size: int | None,
    policy: str | None,
    workers: int | None,
) -> InsightConfig:
    """Layer CLI flags on top of the loaded config and re-validate."""
    if data is not None:
        cfg.data.path = str(data)
    if top_k is not None:
        cfg.retrieval.top_k = top_k
    if chunk_size is not None:
        cfg.embedding.chunk_size = chunk_size
    if policy is not None:
        cfg.embedding.on_batch_failure = policy
    if workers is not None:
        cfg.embedding.max_workers = workers
    return validate_config(cfg)
