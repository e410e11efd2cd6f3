"""Administrative trigger: run a scan and wrap the result in a typed response.

Callers (an authenticated admin surface, or the CLI) never see an exception
from here: every outcome is an ``AdminResponse`` carrying either data or an
error code. Authorization is the caller's concern.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from crawler.core.config import Settings
from crawler.core.errors import ConfigurationError, StorageError, UnknownSourceError
from crawler.pipeline.context import PipelineContext
from crawler.pipeline.orchestrator import ScanOrchestrator

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    CONFIG_ERROR = "CONFIG_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AdminError(BaseModel):
    code: ErrorCode
    message: str


class AdminResponse(BaseModel):
    success: bool
    data: dict[str, Any] | None = None
    error: AdminError | None = None

    @classmethod
    def ok(cls, data: dict[str, Any]) -> "AdminResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, message: str) -> "AdminResponse":
        return cls(success=False, error=AdminError(code=code, message=message))


def _load_settings(settings: Settings | str | Path) -> Settings:
    if isinstance(settings, Settings):
        return settings
    return Settings.from_yaml(settings)


async def _full_scan(ctx: PipelineContext) -> AdminResponse:
    report = await ScanOrchestrator(ctx).scan_all()
    try:
        run_id = await ctx.store.record_scan_run(report)
        logger.info("Recorded scan run %d", run_id)
    except StorageError as e:
        logger.warning("Could not record scan run: %s", e)
    return AdminResponse.ok({"report": report.model_dump(mode="json")})


async def _source_scan(ctx: PipelineContext, source_id: str) -> AdminResponse:
    outcome = await ScanOrchestrator(ctx).scan_one(source_id)
    return AdminResponse.ok({"outcome": outcome.model_dump(mode="json")})


async def trigger_full_scan(
    settings: Settings | str | Path, *, ctx: PipelineContext | None = None,
) -> AdminResponse:
    """Scan every enabled source and persist the report for audit.

    A report is returned even when sources failed; only a pipeline that
    cannot start at all (storage unavailable, bad configuration) fails.
    ``settings`` may be a loaded Settings or a YAML path. Pass an entered
    ``ctx`` to share it with other scans; otherwise a context is opened and
    closed around this scan.
    """
    try:
        if ctx is not None:
            return await _full_scan(ctx)
        async with PipelineContext(_load_settings(settings)) as context:
            return await _full_scan(context)
    except ConfigurationError as e:
        return AdminResponse.fail(ErrorCode.CONFIG_ERROR, str(e))
    except Exception as e:
        logger.exception("Full scan could not run")
        return AdminResponse.fail(ErrorCode.INTERNAL_ERROR, f"{type(e).__name__}: {e}")


async def trigger_source_scan(
    settings: Settings | str | Path, source_id: str, *, ctx: PipelineContext | None = None,
) -> AdminResponse:
    """Scan one source by id."""
    try:
        if ctx is not None:
            return await _source_scan(ctx, source_id)
        async with PipelineContext(_load_settings(settings)) as context:
            return await _source_scan(context, source_id)
    except UnknownSourceError as e:
        return AdminResponse.fail(ErrorCode.NOT_FOUND, str(e))
    except ConfigurationError as e:
        return AdminResponse.fail(ErrorCode.CONFIG_ERROR, str(e))
    except Exception as e:
        logger.exception("Scan of '%s' could not run", source_id)
        return AdminResponse.fail(ErrorCode.INTERNAL_ERROR, f"{type(e).__name__}: {e}")
