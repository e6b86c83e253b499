"""InsightRAG rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. The pipeline stage and what went wrong
  2. The action the user should take to fix it

Usage:
    from insightrag.cli.errors import err_stage
    console.print(err_stage(exc))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from insightrag.errors import ConfigError, EmbeddingError, IngestionError, InsightRagError
from insightrag.rag.llm_client import api_key_env, provider_of


def err_no_api_key(model: str) -> str:
    """No API key for the provider of *model*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    provider = provider_of(model)
    env_var = api_key_env(model)
    return (
        f"[red]Error:[/] No API key for '{provider}' (model '{model}').\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_ingestion(exc: IngestionError) -> str:
    return (
        f"[red]Error (ingestion):[/] {escape(str(exc))}\n"
        "  Check the CSV header and values. Required columns:\n"
        "    CustomerID, Age, Gender, Country, Income, ProductQuality, ServiceQuality,\n"
        "    PurchaseFrequency, FeedbackScore, LoyaltyLevel, SatisfactionScore"
    )


def err_config(exc: ConfigError) -> str:
    return (
        f"[red]Error (configuration):[/] {escape(str(exc))}\n"
        "  Fix the CLI flag, INSIGHTRAG_* variable or insightrag.yaml value."
    )


def err_batch_failed(exc: EmbeddingError) -> str:
    """Fail-fast abort: name the batch and the records needed to re-process it."""
    ids = ", ".join(exc.record_ids[:10])
    more = f" (+{len(exc.record_ids) - 10} more)" if len(exc.record_ids) > 10 else ""
    return (
        f"[red]Error (embedding):[/] batch {exc.batch_index} failed — run aborted.\n"
        f"  Cause:   {escape(str(exc.__cause__ or exc))}\n"
        f"  Records: {escape(ids)}{more}\n"
        "  Retry later, or use  --policy skip  to continue past failed batches."
    )


def err_stage(exc: InsightRagError) -> str:
    """Generic message for any pipeline error, naming its stage."""
    if isinstance(exc, IngestionError):
        return err_ingestion(exc)
    if isinstance(exc, ConfigError):
        return err_config(exc)
    if isinstance(exc, EmbeddingError) and exc.batch_index is not None:
        return err_batch_failed(exc)
    return f"[red]Error ({exc.stage}):[/] {escape(str(exc))}"


def warn_skipped_batches(skipped_batches: list[int], skipped_records: int) -> str:
    """Partial success after skip-and-continue."""
    batches = ", ".join(str(i) for i in skipped_batches)
    return (
        f"[yellow]⚠[/] {len(skipped_batches)} batch(es) skipped ({skipped_records} records): "
        f"{batches}\n"
        "  Answers are based on the remaining profiles. Run with --verbose for details."
    )


def err_empty_index() -> str:
    return (
        "[red]Error:[/] No profiles were indexed — nothing to retrieve from.\n"
        "  Check the data file and the embedding provider, then retry."
    )
