from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import Response

from .blob_store import BlobStore, FileBlobStore
from .config import Settings, settings as default_settings
from .logging_utils import configure_logging
from .pipeline import GatewayRequest, PipelineConfig, RequestPipeline
from .rate_limit import Clock, RateLimiter
from .security import AuthGate
from .traffic import TrafficFetcher

configure_logging(default_settings.log_level)
logger = logging.getLogger("subgate.app")

PIPELINE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def client_key_from_request(request: Request, header_name: str) -> str:
    if header_name:
        value = (request.headers.get(header_name) or "").strip()
        if value:
            return value
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def build_pipeline(
    cfg: Settings,
    *,
    blob_store: Optional[BlobStore] = None,
    traffic_fetcher: Optional[TrafficFetcher] = None,
    clock: Optional[Clock] = None,
) -> RequestPipeline:
    limiter_kwargs = {"cleanup_interval": cfg.limiter_cleanup_interval_seconds}
    if clock is not None:
        limiter_kwargs["clock"] = clock

    traffic_limiter = RateLimiter(
        cfg.rate_limit_window_seconds,
        cfg.rate_limit_max_requests,
        name="traffic",
        **limiter_kwargs,
    )
    auth_limiter = RateLimiter(
        cfg.auth_fail_window_seconds,
        cfg.auth_fail_max_attempts,
        name="auth_fail",
        **limiter_kwargs,
    )

    if blob_store is None and cfg.blob_store_dir:
        blob_store = FileBlobStore(cfg.blob_store_dir)
    if traffic_fetcher is None:
        traffic_fetcher = TrafficFetcher(
            cfg.traffic_url,
            timeout_seconds=cfg.traffic_timeout,
            cache_ttl_seconds=cfg.traffic_cache_ttl_seconds,
            user_agent=cfg.traffic_user_agent,
        )

    return RequestPipeline(
        traffic_limiter=traffic_limiter,
        auth_gate=AuthGate(cfg.access_token, auth_limiter, cfg.auth_fail_ban_seconds),
        blob_store=blob_store,
        traffic_fetcher=traffic_fetcher,
        config=PipelineConfig(
            subscribe_path=cfg.subscribe_path,
            blob_key=cfg.blob_key,
            download_filename=cfg.download_filename,
            profile_update_interval=cfg.profile_update_interval,
            rate_limit_retry_after=cfg.rate_limit_window_seconds,
            ban_retry_after=cfg.auth_fail_ban_seconds,
            metrics_enabled=cfg.enable_prometheus_metrics,
        ),
    )


def create_app(
    cfg: Optional[Settings] = None,
    *,
    blob_store: Optional[BlobStore] = None,
    traffic_fetcher: Optional[TrafficFetcher] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    cfg = cfg or default_settings
    pipeline = build_pipeline(cfg, blob_store=blob_store, traffic_fetcher=traffic_fetcher, clock=clock)

    app = FastAPI(title="subgate", version="1.0.0")
    app.state.settings = cfg
    app.state.pipeline = pipeline

    @app.on_event("startup")
    async def startup_event() -> None:
        logger.info(
            "Gateway startup complete",
            extra={
                "event": "startup",
                "path": cfg.subscribe_path,
                "reason": "configured" if cfg.access_token and pipeline.blob_store is not None else "not_configured",
            },
        )

    @app.api_route("/{full_path:path}", methods=PIPELINE_METHODS, include_in_schema=False)
    async def gateway(request: Request, full_path: str) -> Response:
        _ = full_path
        gateway_request = GatewayRequest(
            client_key=client_key_from_request(request, cfg.client_ip_header),
            method=request.method,
            path=request.url.path,
            token=request.query_params.get("token"),
            user_agent=request.headers.get("user-agent") or "unknown",
        )
        return await pipeline.handle(gateway_request)

    return app


app = create_app()
