# catalog_repricer/errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorCode(str, Enum):
    CONFIG = "CONFIG"
    SUPPLIER_FEED = "SUPPLIER_FEED"
    CATALOG_FETCH = "CATALOG_FETCH"
    STAGED_UPLOAD = "STAGED_UPLOAD"
    UPLOAD = "UPLOAD"
    BULK_SUBMIT = "BULK_SUBMIT"
    BULK_FAILED = "BULK_FAILED"
    BULK_TIMEOUT = "BULK_TIMEOUT"
    OUTPUT = "OUTPUT"


# -------------------------
# Exceptions
# -------------------------


class PipelineError(Exception):
    """
    Base for every fatal, run-aborting error.

    Carries a machine-readable ``code`` plus a ``detail`` dict with whatever
    diagnostic payload the raising site had at hand (HTTP status, user errors,
    source name, ...).
    """

    code: ErrorCode = ErrorCode.CONFIG

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.detail: Dict[str, Any] = detail or {}


class ConfigError(PipelineError):
    code = ErrorCode.CONFIG


class SupplierFeedError(PipelineError):
    code = ErrorCode.SUPPLIER_FEED


class ShopifyApiError(PipelineError):
    code = ErrorCode.CATALOG_FETCH


class BulkSyncError(PipelineError):
    code = ErrorCode.BULK_SUBMIT


class OutputError(PipelineError):
    code = ErrorCode.OUTPUT


class InvalidTransitionError(ValueError):
    pass


# -------------------------
# Typed stage results
# -------------------------


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    code: ErrorCode
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, exc: PipelineError) -> "Failure":
        return cls(code=exc.code, message=str(exc), detail=dict(exc.detail))


StageResult = Union[Ok[T], Failure]
