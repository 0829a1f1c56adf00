from __future__ import annotations

import asyncio
import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import math
import time
from typing import Any, Optional

import aiohttp
from pydantic import ValidationError

from .metrics import TRAFFIC_FETCH_FAILURES_TOTAL
from .schemas import GenericTrafficPayload, JmsTrafficPayload

logger = logging.getLogger("subgate.traffic")

# Clients divide by 1024**3 to show GB; pre-scale decimal byte counts so the
# displayed figure matches the provider's 1000-based one.
DISPLAY_FACTOR = (1024 / 1000) ** 3


@dataclass(frozen=True)
class TrafficInfo:
    upload: int
    download: int
    total: int
    expire: int


def next_reset_timestamp(reset_day: int, now: datetime) -> int:
    """Unix time of the next monthly reset at midnight in ``now``'s timezone."""
    reset_day = max(1, min(31, reset_day))
    year, month = now.year, now.month
    if now.day >= reset_day:
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    day = min(reset_day, calendar.monthrange(year, month)[1])
    reset_at = datetime(year, month, day, tzinfo=now.tzinfo or timezone.utc)
    return int(reset_at.timestamp())


def _parse_expire(value: Any) -> int:
    if value is None or value == "" or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else 0

    text = str(value).strip()
    try:
        return int(float(text))
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def parse_traffic_payload(data: Any, now: Optional[datetime] = None) -> Optional[TrafficInfo]:
    """Normalize a usage report; return None when the shape is not recognized."""
    if not isinstance(data, dict):
        return None
    now = now or datetime.now(timezone.utc)

    try:
        jms = JmsTrafficPayload.model_validate(data)
    except ValidationError:
        pass
    else:
        # No upload/download split in this shape; usage is reported as download.
        return TrafficInfo(
            upload=0,
            download=jms.bw_counter_b,
            total=jms.monthly_bw_limit_b,
            expire=next_reset_timestamp(jms.bw_reset_day_of_month, now),
        )

    try:
        generic = GenericTrafficPayload.model_validate(data)
    except ValidationError:
        return None
    return TrafficInfo(
        upload=generic.upload,
        download=generic.download,
        total=generic.total,
        expire=_parse_expire(generic.expire),
    )


def convert_to_1024_display(value: int) -> int:
    return math.floor(value * DISPLAY_FACTOR + 0.5)


def build_traffic_header(info: Optional[TrafficInfo]) -> Optional[str]:
    if info is None:
        return None

    parts = [
        f"upload={convert_to_1024_display(info.upload)}",
        f"download={convert_to_1024_display(info.download)}",
        f"total={convert_to_1024_display(info.total)}",
        # Unix seconds, not bytes.
        f"expire={info.expire}",
    ]
    return "; ".join(parts)


class TrafficFetcher:
    """Fetches usage statistics with a short in-memory cache."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        cache_ttl_seconds: float = 30,
        user_agent: str = "Clash-Verge/1.0",
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self.user_agent = user_agent
        self._cached: Optional[tuple[float, TrafficInfo]] = None

    def _failed(self, reason: str, message: str, *, exc_info: bool = False) -> None:
        TRAFFIC_FETCH_FAILURES_TOTAL.labels(reason=reason).inc()
        logger.warning(
            message,
            extra={"event": "traffic_fetch_failed", "reason": reason},
            exc_info=exc_info,
        )

    async def _fetch_json(self) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.url, headers=headers) as response:
                if response.status >= 400:
                    raise aiohttp.ClientResponseError(
                        response.request_info,
                        response.history,
                        status=response.status,
                        message=f"HTTP {response.status}",
                    )
                return await response.json(content_type=None)

    async def fetch(self) -> Optional[TrafficInfo]:
        if not self.url:
            return None

        now = time.monotonic()
        if self._cached and self._cached[0] > now:
            return self._cached[1]

        try:
            data = await self._fetch_json()
        except asyncio.TimeoutError:
            self._failed("timeout", "Usage fetch timed out")
            return None
        except aiohttp.ClientResponseError as exc:
            self._failed("http_status", f"Usage fetch returned HTTP {exc.status}")
            return None
        except aiohttp.ClientError:
            self._failed("network", "Usage fetch failed", exc_info=True)
            return None
        except ValueError:
            self._failed("invalid_json", "Usage response is not valid JSON")
            return None
        except Exception:
            self._failed("unexpected", "Usage fetch failed unexpectedly", exc_info=True)
            return None

        info = parse_traffic_payload(data)
        if info is None:
            self._failed("unrecognized", "Usage response has an unrecognized format")
            return None

        if self.cache_ttl_seconds > 0:
            self._cached = (now + self.cache_ttl_seconds, info)
        return info
