from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Awaitable, Callable, Optional

from fastapi.responses import JSONResponse, Response

from .blob_store import BlobStore, decode_base64_text
from .errors import (
    ClientBanned,
    ClientThrottled,
    GatewayError,
    Misconfigured,
    NotFound,
    Unauthenticated,
    UpstreamUnavailable,
)
from .metrics import CONTENT_TYPE_LATEST, LIMITER_RECORDS, REQUESTS_TOTAL, generate_latest
from .rate_limit import RateLimiter
from .security import AuthGate
from .traffic import TrafficFetcher, build_traffic_header

logger = logging.getLogger("subgate.pipeline")


@dataclass(frozen=True)
class GatewayRequest:
    client_key: str
    method: str
    path: str
    token: Optional[str]
    user_agent: str = "unknown"


@dataclass(frozen=True)
class PipelineConfig:
    subscribe_path: str = "/subscribe"
    blob_key: str = "proxy_yaml"
    download_filename: str = "JMS"
    profile_update_interval: int = 24
    rate_limit_retry_after: int = 60
    ban_retry_after: int = 30 * 60
    health_path: str = "/health"
    metrics_path: str = "/metrics"
    metrics_enabled: bool = True


class RequestPipeline:
    """Admission checks in a fixed order, then fulfillment.

    TrafficThrottle -> BanCheck -> ConfigAvailability -> TokenVerification
    -> Routing -> Fulfillment. The first failing stage raises a
    ``GatewayError`` that becomes the terminal response. Health and metrics
    paths are routed like the subscribe path, after authentication.
    """

    def __init__(
        self,
        *,
        traffic_limiter: RateLimiter,
        auth_gate: AuthGate,
        blob_store: Optional[BlobStore],
        traffic_fetcher: TrafficFetcher,
        config: PipelineConfig = PipelineConfig(),
    ) -> None:
        self.traffic_limiter = traffic_limiter
        self.auth_gate = auth_gate
        self.blob_store = blob_store
        self.traffic_fetcher = traffic_fetcher
        self.config = config

    @property
    def auth_limiter(self) -> RateLimiter:
        return self.auth_gate.limiter

    # ---------- admission stages ----------
    def _throttle(self, request: GatewayRequest) -> None:
        if not self.traffic_limiter.check_and_increment(request.client_key):
            logger.warning(
                "Client exceeded rate limit",
                extra={"event": "rate_limited", "ip": request.client_key},
            )
            raise ClientThrottled(retry_after=self.config.rate_limit_retry_after)

    def _check_ban(self, request: GatewayRequest) -> None:
        if self.auth_limiter.is_banned(request.client_key):
            logger.warning(
                "Client is banned due to too many auth failures",
                extra={"event": "auth_banned_request", "ip": request.client_key},
            )
            raise ClientBanned(retry_after=self.config.ban_retry_after)

    def _check_configured(self) -> None:
        if not self.auth_gate.expected_token or self.blob_store is None:
            logger.error("Access token or blob store is not configured", extra={"event": "misconfigured"})
            raise Misconfigured()

    def _authenticate(self, request: GatewayRequest) -> None:
        if self.auth_gate.verify(request.token):
            self.auth_gate.record_success(request.client_key)
            return

        logger.warning("Authentication failed", extra={"event": "auth_failed", "ip": request.client_key})
        if self.auth_gate.record_failure(request.client_key):
            raise ClientBanned(retry_after=self.config.ban_retry_after)
        raise Unauthenticated()

    def _route(self, request: GatewayRequest) -> Callable[[GatewayRequest], Awaitable[Response]]:
        if request.path == self.config.subscribe_path:
            return self._fulfill
        if request.path == self.config.health_path:
            return self._health
        if request.path == self.config.metrics_path and self.config.metrics_enabled:
            return self._metrics
        raise NotFound()

    # ---------- operational endpoints ----------
    async def _health(self, request: GatewayRequest) -> Response:
        _ = request
        return JSONResponse({"status": "ok", "ts": datetime.now(timezone.utc).isoformat()})

    async def _metrics(self, request: GatewayRequest) -> Response:
        _ = request
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # ---------- fulfillment ----------
    async def _fulfill(self, request: GatewayRequest) -> Response:
        store = self.blob_store
        if store is None:
            raise Misconfigured()
        encoded = await asyncio.to_thread(store.get, self.config.blob_key)
        if not encoded:
            logger.error(
                "Configuration blob not found",
                extra={"event": "blob_missing", "reason": self.config.blob_key},
            )
            raise UpstreamUnavailable("Configuration blob not found")

        content = decode_base64_text(encoded)
        traffic_header = build_traffic_header(await self.traffic_fetcher.fetch())

        headers = {
            "Content-Disposition": f"attachment; filename={self.config.download_filename}.yaml",
            "profile-update-interval": str(self.config.profile_update_interval),
            "Cache-Control": "no-store, no-cache, must-revalidate",
        }
        if traffic_header:
            headers["Subscription-Userinfo"] = traffic_header

        logger.info(
            "Subscription served",
            extra={"event": "success", "ip": request.client_key, "traffic": traffic_header or "N/A"},
        )
        return Response(
            content=content,
            media_type="application/octet-stream; charset=utf-8",
            headers=headers,
        )

    # ---------- entry point ----------
    async def _run(self, request: GatewayRequest) -> Response:
        self._throttle(request)
        self._check_ban(request)
        self._check_configured()
        self._authenticate(request)
        endpoint = self._route(request)
        return await endpoint(request)

    async def handle(self, request: GatewayRequest) -> Response:
        logger.info(
            "Access",
            extra={
                "event": "access",
                "ip": request.client_key,
                "method": request.method,
                "path": request.path,
                "user_agent": request.user_agent,
            },
        )

        outcome = "success"
        try:
            response = await self._run(request)
        except GatewayError as exc:
            outcome = exc.outcome
            response = exc.to_response()
        except Exception as exc:
            logger.exception(
                "Request failed",
                extra={"event": "internal_error", "ip": request.client_key, "path": request.path},
            )
            outcome = "internal_error"
            response = UpstreamUnavailable(str(exc) or exc.__class__.__name__).to_response()

        REQUESTS_TOTAL.labels(outcome=outcome, status=str(response.status_code)).inc()
        LIMITER_RECORDS.labels(limiter=self.traffic_limiter.name).set(len(self.traffic_limiter))
        LIMITER_RECORDS.labels(limiter=self.auth_limiter.name).set(len(self.auth_limiter))
        return response
