"""Record store — CSV ingestion of customer feedback rows.

Expected header (exact names):
  CustomerID, Age, Gender, Country, Income, ProductQuality, ServiceQuality,
  PurchaseFrequency, FeedbackScore, LoyaltyLevel, SatisfactionScore

Every loaded record already carries its derived ``summary``.
"""

from __future__ import annotations

import csv
import dataclasses
from collections.abc import Iterator
from pathlib import Path
from typing import IO, Any, Callable

from insightrag.errors import IngestionError
from insightrag.store.models import CustomerFeedback

# CSV column → (field name, converter)
_COLUMNS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "CustomerID": ("customer_id", str),
    "Age": ("age", int),
    "Gender": ("gender", str),
    "Country": ("country", str),
    "Income": ("income", float),
    "ProductQuality": ("product_quality", int),
    "ServiceQuality": ("service_quality", int),
    "PurchaseFrequency": ("purchase_frequency", int),
    "FeedbackScore": ("feedback_score", str),
    "LoyaltyLevel": ("loyalty_level", str),
    "SatisfactionScore": ("satisfaction_score", float),
}

_SUMMARY_TEMPLATE = (
    "Customer Profile: {r.age} year old {r.gender} from {r.country} "
    "with income ${r.income:.2f}. "
    "Product Quality Rating: {r.product_quality}/10, "
    "Service Quality: {r.service_quality}/10. "
    "Purchases {r.purchase_frequency} times per year. "
    "Feedback Score: {r.feedback_score}. "
    "Loyalty Level: {r.loyalty_level}. "
    "Satisfaction Score: {r.satisfaction_score:.1f}%"
)


def derive_summary(record: CustomerFeedback) -> CustomerFeedback:
    """Return a copy of *record* with ``summary`` computed from its attributes."""
    return dataclasses.replace(record, summary=_SUMMARY_TEMPLATE.format(r=record))


class RecordStore:
    """Ordered, read-only collection of customer feedback records."""

    def __init__(self, records: list[CustomerFeedback]) -> None:
        self._records = list(records)
        self._by_id = {r.customer_id: r for r in self._records}

    @classmethod
    def load(cls, source: str | Path | IO[str]) -> RecordStore:
        """Parse *source* (path or open text stream) into a store.

        Raises:
            IngestionError: Missing file, missing columns, empty or duplicate
                ``CustomerID``, or a value that cannot be converted.
        """
        if hasattr(source, "read"):
            return cls(_parse(source, name=getattr(source, "name", "<stream>")))

        path = Path(source)
        if not path.is_file():
            raise IngestionError(f"Record source not found: '{path}'")
        with path.open(newline="", encoding="utf-8-sig") as fh:
            return cls(_parse(fh, name=str(path)))

    def get(self, customer_id: str) -> CustomerFeedback | None:
        return self._by_id.get(customer_id)

    @property
    def records(self) -> list[CustomerFeedback]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[CustomerFeedback]:
        return iter(self._records)


def load(source: str | Path | IO[str]) -> list[CustomerFeedback]:
    """Shorthand for ``RecordStore.load(source).records``."""
    return RecordStore.load(source).records


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


def _parse(stream: IO[str], name: str) -> list[CustomerFeedback]:
    # Text streams decode lazily, so a bad byte can surface at any read.
    try:
        return _parse_rows(stream, name)
    except UnicodeDecodeError as exc:
        raise IngestionError(f"{name}: not valid UTF-8: {exc}") from exc


def _parse_rows(stream: IO[str], name: str) -> list[CustomerFeedback]:
    reader = csv.DictReader(stream)
    try:
        fieldnames = reader.fieldnames
    except csv.Error as exc:
        raise IngestionError(f"{name}:1: malformed CSV header: {exc}") from exc
    header = [h.strip() for h in (fieldnames or [])]
    missing = [col for col in _COLUMNS if col not in header]
    if missing:
        raise IngestionError(
            f"{name}: missing required column(s): {', '.join(missing)}"
        )
    reader.fieldnames = header

    records: list[CustomerFeedback] = []
    seen: set[str] = set()
    try:
        for row in reader:
            line = reader.line_num
            record = derive_summary(_row_to_record(row, name, line))
            if record.customer_id in seen:
                raise IngestionError(
                    f"{name}:{line}: duplicate CustomerID '{record.customer_id}'"
                )
            seen.add(record.customer_id)
            records.append(record)
    except csv.Error as exc:
        raise IngestionError(f"{name}:{reader.line_num}: malformed CSV: {exc}") from exc
    return records


def _row_to_record(row: dict[str, str | None], name: str, line: int) -> CustomerFeedback:
    values: dict[str, Any] = {}
    for column, (field_name, convert) in _COLUMNS.items():
        raw = (row.get(column) or "").strip()
        if not raw:
            raise IngestionError(f"{name}:{line}: empty value for column '{column}'")
        try:
            values[field_name] = convert(raw)
        except ValueError as exc:
            raise IngestionError(
                f"{name}:{line}: cannot convert {column}={raw!r} "
                f"to {convert.__name__}"
            ) from exc
    return CustomerFeedback(**values)
