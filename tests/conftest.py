"""Shared pytest fixtures."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from insightrag.store.models import CustomerFeedback
from stubs import CSV_HEADER, CSV_ROWS, make_record


@pytest.fixture
def records() -> list[CustomerFeedback]:
    """Five records with distinct ids "0".."4" and distinct summaries."""
    return [make_record(str(i), age=20 + i) for i in range(5)]


@pytest.fixture
def csv_path(tmp_path: Path) -> Path:
    path = tmp_path / "customers.csv"
    path.write_text("\n".join([CSV_HEADER, *CSV_ROWS]) + "\n", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path: Path, monkeypatch):
    """Keep tests away from the user's global config and INSIGHTRAG_* env."""
    monkeypatch.setattr(
        "insightrag.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global" / "config.yaml"
    )
    for var in (
        "INSIGHTRAG_EMBEDDING_MODEL",
        "INSIGHTRAG_GENERATION_MODEL",
        "INSIGHTRAG_CHUNK_SIZE",
        "INSIGHTRAG_BATCH_POLICY",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo setup_logging() so caplog sees records in later tests."""
    logger = logging.getLogger("insightrag")
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
