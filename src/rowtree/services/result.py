"""ServiceResult and ServiceError — the surfaced call contract.

INVARIANT: All RecordService methods return ServiceResult. Engine errors
end the current call as ``ok=False``; they never escape to the caller.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from rowtree.domain.errors import RowtreeError

STORE_ERROR = "STORE_ERROR"


class ServiceError(BaseModel):
    """Structured error payload within a ServiceResult."""

    model_config = {"frozen": True}

    code: str
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: Exception) -> ServiceError:
        """Shape *exc* into an error payload.

        rowtree errors keep their code and detail. Anything else came from
        the database layer and is reported as ``STORE_ERROR`` with the
        driver's own message when one is wrapped.
        """
        if isinstance(exc, RowtreeError):
            return cls(code=exc.code, message=exc.message, detail=dict(exc.detail))
        orig = getattr(exc, "orig", None)
        return cls(
            code=STORE_ERROR,
            message=str(orig) if orig is not None else str(exc),
            detail={"exception": type(exc).__name__},
        )


class ServiceResult(BaseModel):
    """Universal return type for service operations.

    Attributes:
        ok: Whether the operation succeeded.
        op: Name of the operation (e.g. ``"save"``).
        data: Operation-specific payload on success.
        warnings: Non-fatal issues encountered during the operation.
        error: Structured error if ``ok`` is False.
        meta: Counts and the entity type the call was about.
    """

    model_config = {"frozen": True}

    ok: bool
    op: str
    data: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: ServiceError | None = None
    meta: dict[str, Any] | None = None

    @classmethod
    def failure(cls, op: str, exc: Exception, warnings: list[str] | None = None) -> ServiceResult:
        return cls(ok=False, op=op, warnings=warnings or [], error=ServiceError.from_exception(exc))
