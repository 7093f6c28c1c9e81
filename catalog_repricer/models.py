# catalog_repricer/models.py
"""
Run-scoped data model.

Everything here is a frozen dataclass: each pipeline stage builds new values
from the previous stage's output instead of mutating it.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import InvalidTransitionError


@dataclass(frozen=True)
class CatalogItem:
    id: str
    title: str
    handle: str
    part_number: str
    alt_part_number: str = ""
    competitor_url: str = ""
    competitor_floor_price: Optional[float] = None
    sku: str = ""


@dataclass(frozen=True)
class SupplierOffer:
    part_number: str
    name: str
    warranty: str
    in_stock: int
    wholesale_price: float
    retail_price: Optional[float] = None
    source_name: str = ""
    normalization_factor: float = 1.0

    @property
    def normalized_price(self) -> float:
        return self.wholesale_price * self.normalization_factor

    @classmethod
    def from_raw(
        cls,
        raw: Dict[str, Any],
        source_name: str,
        normalization_factor: float = 1.0,
    ) -> "SupplierOffer":
        """
        Build an offer from an adapter row.

        Raises ValueError when the row cannot be a usable offer: blank part
        number, non-positive or non-finite prices, negative stock.
        """
        part_number = str(raw.get("part_number") or "").strip()
        if not part_number:
            raise ValueError("missing part_number")

        wholesale = float(raw.get("wholesale_price") or 0)
        if not math.isfinite(wholesale) or wholesale <= 0:
            raise ValueError(f"unusable wholesale_price {wholesale} for {part_number}")

        in_stock = int(raw.get("in_stock") or 0)
        if in_stock < 0:
            raise ValueError(f"negative in_stock for {part_number}")

        retail = raw.get("retail_price")
        retail_price = float(retail) if retail not in (None, "") else None
        if retail_price is not None and not math.isfinite(retail_price):
            raise ValueError(f"non-finite retail_price for {part_number}")

        return cls(
            part_number=part_number,
            name=str(raw.get("name") or part_number),
            warranty=str(raw.get("warranty") or ""),
            in_stock=in_stock,
            wholesale_price=wholesale,
            retail_price=retail_price,
            source_name=source_name,
            normalization_factor=float(normalization_factor),
        )


@dataclass(frozen=True)
class MergedItem:
    item: CatalogItem
    offers: Tuple[SupplierOffer, ...] = ()
    best_offer: Optional[SupplierOffer] = None

    def __post_init__(self) -> None:
        if self.best_offer is not None and self.best_offer not in self.offers:
            raise ValueError("best_offer must be one of offers")

    @property
    def best_supplier_name(self) -> Optional[str]:
        return self.best_offer.source_name if self.best_offer else None


@dataclass(frozen=True)
class PricePoints:
    min: Optional[float] = None
    mid: Optional[float] = None
    max: Optional[float] = None

    @property
    def defined(self) -> bool:
        return self.min is not None and self.mid is not None and self.max is not None


@dataclass(frozen=True)
class CompetitorObservation:
    price: Optional[float] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ResolvedItem:
    merged: MergedItem
    points: PricePoints = field(default_factory=PricePoints)
    observation: CompetitorObservation = field(default_factory=CompetitorObservation)
    final_price: Optional[float] = None

    @property
    def item(self) -> CatalogItem:
        return self.merged.item

    @property
    def best_offer(self) -> Optional[SupplierOffer]:
        return self.merged.best_offer


# -------------------------
# Bulk job lifecycle
# -------------------------


class JobStatus(str, Enum):
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMED_OUT)


_STATUS_RANK = {
    JobStatus.CREATED: 0,
    JobStatus.RUNNING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
    JobStatus.TIMED_OUT: 2,
}


@dataclass(frozen=True)
class BulkJob:
    id: str
    status: JobStatus = JobStatus.CREATED
    error_code: Optional[str] = None
    object_count: Optional[int] = None
    file_size: Optional[int] = None
    result_url: Optional[str] = None

    def transition(self, status: JobStatus, **changes: Any) -> "BulkJob":
        """Return a copy in ``status``; statuses only move forward."""
        if self.status.terminal:
            raise InvalidTransitionError(
                f"bulk job {self.id} is already {self.status.value}"
            )
        if _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            raise InvalidTransitionError(
                f"bulk job {self.id}: {self.status.value} -> {status.value}"
            )
        return replace(self, status=status, **changes)
