import asyncio
from datetime import datetime, timezone

from aiohttp import web
from aiohttp.test_utils import TestServer
from prometheus_client import REGISTRY
import pytest

from subgate.traffic import (
    TrafficFetcher,
    TrafficInfo,
    build_traffic_header,
    convert_to_1024_display,
    next_reset_timestamp,
    parse_traffic_payload,
)

NOW = datetime(2024, 5, 10, 12, 30, tzinfo=timezone.utc)


def _ts(*args: int) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp())


def test_parse_generic_payload():
    info = parse_traffic_payload(
        {"upload": "10", "download": 20, "total": 30, "expire": 1700000000},
        now=NOW,
    )
    assert info == TrafficInfo(upload=10, download=20, total=30, expire=1700000000)


def test_parse_generic_payload_with_iso_expire_and_defaults():
    info = parse_traffic_payload({"upload": 1, "download": 2, "expire": "2030-01-01T00:00:00Z"}, now=NOW)
    assert info.total == 0
    assert info.expire == _ts(2030, 1, 1)

    info = parse_traffic_payload({"upload": 1, "download": 2}, now=NOW)
    assert info.expire == 0


def test_parse_generic_payload_coerces_garbage_to_zero():
    info = parse_traffic_payload({"upload": "n/a", "download": None, "total": "12.7GB"}, now=NOW)
    assert info == TrafficInfo(upload=0, download=0, total=0, expire=0)


def test_parse_jms_payload_reports_usage_as_download():
    info = parse_traffic_payload(
        {"monthly_bw_limit_b": "500000000000", "bw_counter_b": 1234, "bw_reset_day_of_month": 15},
        now=NOW,
    )
    assert info == TrafficInfo(upload=0, download=1234, total=500000000000, expire=_ts(2024, 5, 15))


def test_parse_jms_payload_defaults_reset_day_to_first():
    info = parse_traffic_payload({"monthly_bw_limit_b": 100, "bw_counter_b": 5}, now=NOW)
    assert info.expire == _ts(2024, 6, 1)


def test_jms_shape_takes_precedence_over_generic():
    info = parse_traffic_payload(
        {"monthly_bw_limit_b": 100, "bw_counter_b": 5, "upload": 1, "download": 2},
        now=NOW,
    )
    assert info.upload == 0
    assert info.download == 5


@pytest.mark.parametrize(
    ("reset_day", "now", "expected"),
    [
        (15, datetime(2024, 5, 10, tzinfo=timezone.utc), _ts(2024, 5, 15)),
        (15, datetime(2024, 5, 15, 8, tzinfo=timezone.utc), _ts(2024, 6, 15)),
        (1, datetime(2024, 12, 5, tzinfo=timezone.utc), _ts(2025, 1, 1)),
        (31, datetime(2024, 1, 31, tzinfo=timezone.utc), _ts(2024, 2, 29)),
    ],
)
def test_next_reset_timestamp(reset_day, now, expected):
    assert next_reset_timestamp(reset_day, now) == expected


@pytest.mark.parametrize("payload", [{}, {"upload": 1}, {"bw_counter_b": 1}, ["upload", "download"], None, "x"])
def test_unrecognized_payloads_return_none(payload):
    assert parse_traffic_payload(payload, now=NOW) is None


def test_decimal_gigabytes_survive_binary_display():
    total = 500_000_000_000
    assert convert_to_1024_display(total) / 1024**3 == pytest.approx(total / 1000**3)
    assert convert_to_1024_display(1000) == 1074
    assert convert_to_1024_display(0) == 0


def test_build_traffic_header():
    header = build_traffic_header(TrafficInfo(upload=0, download=1000, total=500_000_000_000, expire=1700000000))
    assert header == "upload=0; download=1074; total=536870912000; expire=1700000000"
    assert build_traffic_header(None) is None


def test_fetcher_without_url_returns_none():
    fetcher = TrafficFetcher("")
    assert asyncio.run(fetcher.fetch()) is None


def test_fetcher_parses_and_caches(monkeypatch):
    fetcher = TrafficFetcher("http://usage.local/api", cache_ttl_seconds=30)
    calls = {"count": 0}

    async def fake_fetch_json():
        calls["count"] += 1
        return {"upload": 1, "download": 2, "total": 3, "expire": 4}

    monkeypatch.setattr(fetcher, "_fetch_json", fake_fetch_json)

    first = asyncio.run(fetcher.fetch())
    second = asyncio.run(fetcher.fetch())
    assert first == TrafficInfo(upload=1, download=2, total=3, expire=4)
    assert second == first
    assert calls["count"] == 1


def test_fetcher_timeout_degrades_to_none(monkeypatch):
    fetcher = TrafficFetcher("http://usage.local/api")

    async def fake_timeout():
        raise asyncio.TimeoutError()

    monkeypatch.setattr(fetcher, "_fetch_json", fake_timeout)
    assert asyncio.run(fetcher.fetch()) is None


def test_fetcher_invalid_json_degrades_to_none(monkeypatch):
    fetcher = TrafficFetcher("http://usage.local/api")

    async def fake_invalid():
        raise ValueError("Expecting value")

    monkeypatch.setattr(fetcher, "_fetch_json", fake_invalid)
    assert asyncio.run(fetcher.fetch()) is None


def test_fetcher_unrecognized_payload_is_not_cached(monkeypatch):
    fetcher = TrafficFetcher("http://usage.local/api")
    payloads = [{"status": "ok"}, {"upload": 5, "download": 6}]

    async def fake_fetch_json():
        return payloads.pop(0)

    monkeypatch.setattr(fetcher, "_fetch_json", fake_fetch_json)
    assert asyncio.run(fetcher.fetch()) is None
    assert asyncio.run(fetcher.fetch()) == TrafficInfo(upload=5, download=6, total=0, expire=0)


def _usage_app() -> web.Application:
    async def usage(request: web.Request) -> web.Response:
        assert request.headers["User-Agent"] == "Clash-Verge/1.0"
        return web.json_response({"monthly_bw_limit_b": 100, "bw_counter_b": "5", "bw_reset_day_of_month": 1})

    async def broken(request: web.Request) -> web.Response:
        return web.Response(status=503, text="maintenance")

    async def html(request: web.Request) -> web.Response:
        return web.Response(text="<html>login</html>", content_type="text/html")

    app = web.Application()
    app.router.add_get("/usage", usage)
    app.router.add_get("/broken", broken)
    app.router.add_get("/html", html)
    return app


def _failures(reason: str) -> float:
    return REGISTRY.get_sample_value("subgate_traffic_fetch_failures_total", {"reason": reason}) or 0.0


def _fetch_from_local_server(path: str):
    async def run():
        async with TestServer(_usage_app()) as server:
            fetcher = TrafficFetcher(str(server.make_url(path)), timeout_seconds=2.0)
            return await fetcher.fetch()

    return asyncio.run(run())


def test_fetcher_reads_usage_over_http():
    info = _fetch_from_local_server("/usage")
    assert info is not None
    assert info.download == 5
    assert info.total == 100


def test_fetcher_http_error_status_degrades_to_none():
    before = _failures("http_status")
    assert _fetch_from_local_server("/broken") is None
    assert _failures("http_status") == before + 1


def test_fetcher_non_json_body_degrades_to_none():
    before = _failures("invalid_json")
    assert _fetch_from_local_server("/html") is None
    assert _failures("invalid_json") == before + 1
