import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Literal

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from typing_extensions import TypedDict

from .config import GatewaySettings, credentials_mtime, load_credentials, load_settings
from .errors import AuthenticationError, GatewayError, InvalidRequestError, make_error_body
from .identity import IdentityVerifier, RemoteIdentityVerifier, StaticTokenVerifier, bearer_token
from .metrics import PROM_CONTENT_TYPE, GatewayMetrics
from .pool import CredentialPool
from .relay import TranscriptRelay
from .retry import RequestContext, RetryOrchestrator
from .transcripts import TranscriptLogger
from .types import ChatRequest
from .upstream import UpstreamExecutor, build_upstream_payload

logger = logging.getLogger(__name__)

CHAT_PATH = "/v1/chat/completions"
CORS_METHODS = ["POST", "OPTIONS"]
CORS_HEADERS = ["Authorization", "Content-Type"]


class _HealthResponse(TypedDict):
    status: Literal["ok"]
    credentials: int
    upstream: str


@dataclass
class Gateway:
    settings: GatewaySettings
    pool: CredentialPool
    executor: UpstreamExecutor
    retry: RetryOrchestrator
    relay: TranscriptRelay
    transcripts: TranscriptLogger
    identity: IdentityVerifier
    metrics: GatewayMetrics

    def refresh_credentials(self) -> bool:
        config_dir = self.settings.config_dir
        if config_dir is None:
            return False
        current = credentials_mtime(config_dir)
        if current is None or current == self.settings.credentials_mtime:
            return False
        try:
            credentials = load_credentials(config_dir)
        except ValueError as exc:
            logger.error("credential.reload failed detail=%s", exc)
            return False
        self.pool.replace(credentials)
        self.settings.credentials = credentials
        self.settings.credentials_mtime = current
        return True

    async def aclose(self) -> None:
        await self.executor.aclose()
        closer = getattr(self.identity, "aclose", None)
        if callable(closer):
            await closer()


def _build_identity(settings: GatewaySettings) -> IdentityVerifier:
    identity = settings.identity
    if identity.type == "remote":
        if identity.url is None:
            raise ValueError("remote identity requires 'url'")
        return RemoteIdentityVerifier(identity.url, api_key=identity.api_key)
    if not identity.tokens:
        logger.warning("identity.static has no tokens configured; every request will be rejected")
    return StaticTokenVerifier(identity.tokens)


def build_gateway(
    settings: GatewaySettings,
    *,
    upstream_client: httpx.AsyncClient | None = None,
    identity: IdentityVerifier | None = None,
) -> Gateway:
    identity = identity or _build_identity(settings)
    pool = CredentialPool(settings.credentials)
    executor = UpstreamExecutor(
        settings.upstream_url,
        timeout=settings.upstream_timeout_s,
        client=upstream_client,
    )
    transcripts = TranscriptLogger(settings.transcripts_dir)
    metrics = GatewayMetrics()
    retry = RetryOrchestrator(
        pool,
        executor,
        transcripts,
        max_attempts=settings.max_attempts,
        metrics=metrics,
    )
    return Gateway(
        settings=settings,
        pool=pool,
        executor=executor,
        retry=retry,
        relay=TranscriptRelay(transcripts),
        transcripts=transcripts,
        identity=identity,
        metrics=metrics,
    )


def _make_response_headers(*, req_id: str, attempts: int) -> dict[str, str]:
    return {
        "x-chatproxy-request-id": req_id,
        "x-chatproxy-attempts": str(attempts),
    }


def _error_response(exc: GatewayError, *, req_id: str, attempts: int) -> JSONResponse:
    return JSONResponse(
        make_error_body(message=exc.message, code=exc.code),
        status_code=exc.status_code,
        headers=_make_response_headers(req_id=req_id, attempts=attempts),
    )


async def _credential_refresh_loop(gateway: Gateway) -> None:
    interval = gateway.settings.refresh_interval_s
    while True:
        await asyncio.sleep(interval)
        gateway.refresh_credentials()


def create_app(gateway: Gateway | None = None) -> FastAPI:
    """Build the gateway application.

    Run with ``uvicorn --factory src.chatproxy.server:create_app``; without
    an explicit ``gateway`` the settings come from ``CHATPROXY_CONFIG_DIR``.
    """
    if gateway is None:
        gateway = build_gateway(load_settings())

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        refresh_task: asyncio.Task[None] | None = None
        if gateway.settings.config_dir and gateway.settings.refresh_interval_s > 0:
            refresh_task = asyncio.create_task(_credential_refresh_loop(gateway))
        try:
            yield
        finally:
            if refresh_task is not None:
                refresh_task.cancel()
                try:
                    await refresh_task
                except asyncio.CancelledError:
                    pass
            await gateway.aclose()

    app = FastAPI(title="chatproxy", lifespan=lifespan)
    app.state.gateway = gateway
    app.add_middleware(
        CORSMiddleware,
        allow_origins=gateway.settings.cors_allow_origins,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )

    @app.options(CHAT_PATH)
    async def chat_preflight() -> Response:
        allow_origin = "*" if "*" in gateway.settings.cors_allow_origins else ", ".join(
            gateway.settings.cors_allow_origins
        )
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Origin": allow_origin,
                "Access-Control-Allow-Methods": ", ".join(CORS_METHODS),
                "Access-Control-Allow-Headers": ", ".join(CORS_HEADERS),
            },
        )

    @app.post(CHAT_PATH)
    async def chat(req: Request) -> Response:
        req_id = str(uuid.uuid4())
        token = bearer_token(req.headers.get("authorization"))
        if token is None:
            return _error_response(AuthenticationError("Unauthorized"), req_id=req_id, attempts=0)
        user_id = await gateway.identity.verify(token)
        if user_id is None:
            return _error_response(AuthenticationError("Invalid token"), req_id=req_id, attempts=0)

        try:
            raw_body: Any = await req.json()
        except ValueError:
            return _error_response(InvalidRequestError("Invalid JSON"), req_id=req_id, attempts=0)
        try:
            body = ChatRequest.model_validate(raw_body)
        except ValidationError:
            return _error_response(
                InvalidRequestError("Missing model or messages"), req_id=req_id, attempts=0
            )

        ctx = RequestContext(
            req_id=req_id,
            user_id=user_id,
            model=body.model,
            messages=[message.model_dump(mode="json", exclude_none=True) for message in body.messages],
        )
        payload = build_upstream_payload(body, reasoning_models=gateway.settings.reasoning_models)
        try:
            success = await gateway.retry.attempt(payload, ctx)
        except GatewayError as exc:
            gateway.metrics.record_request(
                status=exc.status_code, ok=False, latency_ms=ctx.latency_ms
            )
            return _error_response(exc, req_id=req_id, attempts=len(ctx.attempts))

        gateway.metrics.record_request(status=200, ok=True, latency_ms=ctx.latency_ms)
        headers = _make_response_headers(req_id=req_id, attempts=len(success.attempts))
        headers.update({"Cache-Control": "no-cache", "Connection": "keep-alive"})
        return StreamingResponse(
            gateway.relay.stream(success, ctx),
            media_type="text/event-stream",
            headers=headers,
        )

    @app.get("/healthz")
    async def healthz() -> _HealthResponse:
        return {
            "status": "ok",
            "credentials": len(gateway.pool),
            "upstream": gateway.settings.upstream_url,
        }

    @app.get("/metrics")
    async def metrics_endpoint() -> Response:
        return Response(gateway.metrics.render(), media_type=PROM_CONTENT_TYPE)

    return app
