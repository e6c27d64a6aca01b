"""End-to-end upload workflow: spreadsheets in, customers persisted.

``full`` mode rebuilds the store from the uploaded files (clear, then save
everything). ``incremental`` mode asks the store for its most recent order
date and only keeps orders strictly after it, then upserts them into the
existing customer documents.

Parsing errors (unsupported files, missing required columns) propagate to
the caller. Persistence errors never discard the processed orders: they are
reported on the :class:`UploadOutcome` so the caller can still present the
data that was parsed.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Literal, Mapping

from customer_order_rfm.foundation.billing import BillingAggregator
from customer_order_rfm.foundation.joiner import DatasetJoiner, JoinResult
from customer_order_rfm.foundation.normalizer import (
    NormalizationReport,
    OrderNormalizer,
)
from customer_order_rfm.foundation.orders import Order, SalesAgent
from customer_order_rfm.ingestion.spreadsheet import read_rows
from customer_order_rfm.storage.repository import (
    CustomerRepository,
    PersistenceError,
    SaveResult,
)

logger = logging.getLogger(__name__)

UploadMode = Literal["full", "incremental"]
PersistenceStatus = Literal["succeeded", "failed", "cancelled", "skipped"]

UPLOAD_MODES: tuple[str, ...] = ("full", "incremental")


def load_agents(path: str | Path) -> dict[str, SalesAgent]:
    """Read the POS user -> sales agent mapping from a JSON file.

    The file maps each POS user email to ``{"name": ..., "zone": ...}``.
    """

    path = Path(path)
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Agent mapping in {path} must be a JSON object")

    agents: dict[str, SalesAgent] = {}
    for email, entry in raw.items():
        if not isinstance(entry, Mapping) or "name" not in entry:
            raise ValueError(f"Agent entry for '{email}' needs at least a 'name'")
        agents[str(email).strip().lower()] = SalesAgent(
            name=str(entry["name"]), zone=str(entry.get("zone", ""))
        )
    logger.info(f"Loaded {len(agents)} sales agents from {path}")
    return agents


@dataclass
class ProcessingResult:
    """Orders produced from one pair of uploaded files plus diagnostics."""

    orders: list[Order]
    normalization: NormalizationReport
    join: JoinResult
    billing_orders: int = 0
    cutoff: datetime | None = None

    @property
    def invalid_dates(self) -> list[str]:
        return self.normalization.invalid_dates

    def summary(self) -> dict[str, Any]:
        return {
            "orders": len(self.orders),
            "rows_read": self.normalization.rows_read,
            "filtered_by_status": self.normalization.filtered_by_status,
            "duplicates_dropped": self.normalization.duplicates_dropped,
            "invalid_dates": len(self.normalization.invalid_dates),
            "billing_orders": self.billing_orders,
            "orphan_billing": len(self.join.orphan_billing_ids),
            "unmatched_orders": len(self.join.unmatched_order_ids),
            "excluded_by_cutoff": self.join.excluded_by_cutoff,
            "cutoff": self.cutoff.isoformat() if self.cutoff else None,
        }


@dataclass
class UploadOutcome:
    """Result of :meth:`UploadWorkflow.upload`.

    ``failure`` holds the exception behind a ``"failed"`` status so callers
    can react to specific store errors.
    """

    mode: str
    processing: ProcessingResult
    persistence_status: PersistenceStatus
    save_result: SaveResult | None = None
    cleared: int = 0
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    failure: Exception | None = field(default=None, repr=False)

    @property
    def orders(self) -> list[Order]:
        return self.processing.orders


class UploadWorkflow:
    """Glue between the ingestion pipeline and the customer repository.

    Parameters
    ----------
    repository:
        Where customers are persisted.
    normalizer, aggregator, joiner:
        Pipeline stages; defaults are used when omitted.
    """

    def __init__(
        self,
        repository: CustomerRepository,
        normalizer: OrderNormalizer | None = None,
        aggregator: BillingAggregator | None = None,
        joiner: DatasetJoiner | None = None,
    ) -> None:
        self.repository = repository
        self.normalizer = normalizer or OrderNormalizer()
        self.aggregator = aggregator or BillingAggregator()
        self.joiner = joiner or DatasetJoiner()

    def process(
        self,
        order_rows: Iterable[Mapping[str, Any]],
        billing_rows: Iterable[Mapping[str, Any]],
        cutoff: datetime | None = None,
    ) -> ProcessingResult:
        """Normalise, aggregate and join already-read spreadsheet rows."""

        report = self.normalizer.normalize(order_rows)
        billing = self.aggregator.aggregate(billing_rows)
        joined = self.joiner.join(report.precursors, billing, cutoff=cutoff)
        return ProcessingResult(
            orders=joined.orders,
            normalization=report,
            join=joined,
            billing_orders=len(billing),
            cutoff=cutoff,
        )

    def upload(
        self,
        order_path: str | Path,
        billing_path: str | Path,
        mode: UploadMode = "full",
        cancel_event: threading.Event | None = None,
        persist: bool = True,
    ) -> UploadOutcome:
        """Read both files, process them and persist the result.

        Parameters
        ----------
        order_path:
            Order report spreadsheet.
        billing_path:
            Billing detail spreadsheet.
        mode:
            ``"full"`` replaces the stored data; ``"incremental"`` only adds
            orders newer than the latest stored order.
        cancel_event:
            Checked between write batches; setting it stops the save early.
        persist:
            When False, files are processed but nothing is written.
        """

        if mode not in UPLOAD_MODES:
            raise ValueError(f"Unknown upload mode '{mode}'; expected one of {UPLOAD_MODES}")

        order_rows = read_rows(order_path)
        billing_rows = read_rows(billing_path)

        warnings: list[str] = []
        cutoff: datetime | None = None
        cutoff_error: str | None = None
        cutoff_failure: Exception | None = None
        if mode == "incremental" and persist:
            try:
                cutoff = self.repository.latest_order_date()
            except Exception as exc:
                logger.error(f"Could not read the latest stored order date: {exc}")
                cutoff_error = f"Could not read the latest stored order date: {exc}"
                cutoff_failure = exc
            if cutoff is None and cutoff_error is None:
                warnings.append("Store is empty; every dated order will be uploaded")

        processing = self.process(order_rows, billing_rows, cutoff=cutoff)
        if processing.normalization.invalid_dates:
            warnings.append(
                f"{len(processing.normalization.invalid_dates)} orders have invalid dates"
            )

        if not persist:
            return UploadOutcome(mode, processing, "skipped", warnings=warnings)
        if cutoff_error is not None:
            # Without a cutoff an incremental save could duplicate stored orders
            return UploadOutcome(
                mode,
                processing,
                "failed",
                error=cutoff_error,
                warnings=warnings,
                failure=cutoff_failure,
            )

        outcome = UploadOutcome(mode, processing, "succeeded", warnings=warnings)
        try:
            if mode == "full":
                outcome.cleared = self.repository.clear(cancel_event)
                if cancel_event is not None and cancel_event.is_set():
                    outcome.persistence_status = "cancelled"
                    return outcome
                outcome.save_result = self.repository.save_all(
                    processing.orders, cancel_event
                )
            else:
                outcome.save_result = self.repository.save_incremental(
                    processing.orders, cancel_event
                )
        except PersistenceError as exc:
            logger.error(f"Upload persistence failed: {exc}")
            outcome.persistence_status = "failed"
            outcome.error = (
                f"{exc} ({exc.committed}/{exc.total} committed before the failure)"
            )
            outcome.failure = exc
            return outcome
        except Exception as exc:
            # Store errors raised outside the repository, e.g. by a guard around it
            logger.error(f"Upload persistence failed: {exc}")
            outcome.persistence_status = "failed"
            outcome.error = f"Document store unavailable: {exc}"
            outcome.failure = exc
            return outcome

        if outcome.save_result.cancelled:
            outcome.persistence_status = "cancelled"
        logger.info(
            f"Upload ({mode}) finished: {len(processing.orders)} orders, "
            f"status={outcome.persistence_status}"
        )
        return outcome
