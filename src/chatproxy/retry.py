from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from .errors import (
    CredentialsExhaustedError,
    GatewayError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from .metrics import GatewayMetrics
from .pool import Credential, CredentialPool
from .transcripts import TranscriptLogger
from .types import AttemptOutcome, AttemptRecord, TranscriptEntry
from .upstream import UpstreamExecutor

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
NO_CREDENTIALS_CODE = "no_credentials"


@dataclass
class RequestContext:
    req_id: str
    user_id: str
    model: str
    messages: list[dict[str, Any]]
    started_at: float = field(default_factory=time.perf_counter)
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def latency_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)

    def transcript(
        self,
        *,
        response: str | None = None,
        error: str | None = None,
        credential_id: str | None = None,
        usage_prompt: int = 0,
        usage_completion: int = 0,
    ) -> TranscriptEntry:
        return TranscriptEntry(
            req_id=self.req_id,
            ts=time.time(),
            user_id=self.user_id,
            model=self.model,
            messages=self.messages,
            response=response,
            error=error,
            attempts=len(self.attempts),
            credential_id=credential_id,
            latency_ms=self.latency_ms,
            usage_prompt=usage_prompt,
            usage_completion=usage_completion,
        )


@dataclass
class AttemptSuccess:
    response: httpx.Response
    credential: Credential
    attempts: list[AttemptRecord]


def _log_request_event(
    level: int,
    *,
    event: str,
    req_id: str,
    attempts: int,
    detail: str | None = None,
) -> None:
    message = f"{event} req_id={req_id} attempts={attempts}"
    if detail:
        message = f"{message} detail={detail}"
    logger.log(level, message)


class RetryOrchestrator:
    """Drives sequential upstream attempts across the credential pool."""

    def __init__(
        self,
        pool: CredentialPool,
        executor: UpstreamExecutor,
        transcripts: TranscriptLogger,
        *,
        max_attempts: int = MAX_RETRIES,
        metrics: GatewayMetrics | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.pool = pool
        self.executor = executor
        self.transcripts = transcripts
        self.max_attempts = max_attempts
        self.metrics = metrics

    def _record(self, ctx: RequestContext, record: AttemptRecord) -> None:
        ctx.attempts.append(record)
        if self.metrics is not None:
            self.metrics.record_attempt(record.outcome.value)

    async def _log_failure(self, ctx: RequestContext, exc: GatewayError, error_code: str) -> None:
        await self.transcripts.write(ctx.transcript(error=error_code))
        _log_request_event(
            logging.ERROR,
            event="chat.attempt failure",
            req_id=ctx.req_id,
            attempts=len(ctx.attempts),
            detail=exc.message,
        )

    async def attempt(self, payload: dict[str, Any], ctx: RequestContext) -> AttemptSuccess:
        tried: set[str] = set()
        last_status: int | None = None

        for _ in range(self.max_attempts):
            credential = self.pool.select(exclude=tried)
            if credential is None:
                break
            tried.add(credential.id)

            try:
                result = await self.executor.execute(credential, payload)
            except UpstreamUnavailableError as exc:
                self._record(ctx, AttemptRecord(credential.id, AttemptOutcome.OTHER))
                await self._log_failure(ctx, exc, exc.code.value)
                raise

            self._record(ctx, AttemptRecord(credential.id, result.outcome, result.status))

            if result.response is not None:
                level = logging.WARNING if len(ctx.attempts) > 1 else logging.INFO
                _log_request_event(
                    level,
                    event="chat.attempt success",
                    req_id=ctx.req_id,
                    attempts=len(ctx.attempts),
                    detail=f"credential={credential.id}",
                )
                return AttemptSuccess(
                    response=result.response,
                    credential=credential,
                    attempts=list(ctx.attempts),
                )

            last_status = result.status
            if result.outcome is AttemptOutcome.FATAL:
                if self.pool.evict(credential.id) and self.metrics is not None:
                    self.metrics.record_eviction()
                continue
            if result.outcome is AttemptOutcome.RETRYABLE:
                continue
            status_error = UpstreamStatusError(result.status, result.body)
            await self._log_failure(ctx, status_error, str(result.status))
            raise status_error

        if last_status is None:
            exc = CredentialsExhaustedError("No API keys available")
            error_code = NO_CREDENTIALS_CODE
        else:
            exc = CredentialsExhaustedError("All API keys exhausted", last_status=last_status)
            error_code = str(last_status)
        await self._log_failure(ctx, exc, error_code)
        raise exc
