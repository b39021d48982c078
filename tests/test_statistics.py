"""Tests for statistics aggregation, the live feed and per-user summaries."""

import asyncio
import json
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.api.routes.stats import format_event, stats_event_stream
from app.services.statistics import (
    StatisticsAggregator,
    build_snapshot,
    compute_billing_summary,
    compute_consumption_summary,
)


def _sources(**overrides):
    sources = {
        "user_count": lambda: 3,
        "energy_total": lambda: Decimal("1234.5"),
        "billing_count": lambda: 7,
        "payments_total": lambda: Decimal("2040"),
    }
    sources.update(overrides)
    return sources


def _fail():
    raise RuntimeError("database is gone")


class TestStatisticsAggregator:
    """Unit tests for snapshot computation."""

    def test_snapshot_values(self) -> None:
        snapshot = asyncio.run(StatisticsAggregator(_sources()).snapshot())
        assert snapshot.user_count == 3
        assert snapshot.billing_count == 7
        assert snapshot.energy_used.total == 1234.5
        assert snapshot.energy_used.energy_unit == "MWh"
        assert snapshot.energy_used.formatted == "1.23 MWh"
        assert snapshot.payments_amount.total == 2040.0
        assert snapshot.payments_amount.formatted == "₱2,040.00"

    def test_idempotent_without_changes(self) -> None:
        aggregator = StatisticsAggregator(_sources())

        async def twice():
            return await aggregator.snapshot(), await aggregator.snapshot()

        first, second = asyncio.run(twice())
        assert first == second

    def test_failed_source_falls_back_to_zero(self) -> None:
        snapshot = asyncio.run(StatisticsAggregator(_sources(user_count=_fail)).snapshot())
        assert snapshot.user_count == 0
        assert snapshot.billing_count == 7

    def test_failed_source_keeps_last_known_value(self) -> None:
        counts = iter([5, None])

        def flaky_count():
            value = next(counts)
            if value is None:
                raise RuntimeError("timeout")
            return value

        aggregator = StatisticsAggregator(_sources(billing_count=flaky_count))

        async def twice():
            return await aggregator.snapshot(), await aggregator.snapshot()

        first, second = asyncio.run(twice())
        assert first.billing_count == 5
        assert second.billing_count == 5
        assert second.user_count == 3

    def test_all_sources_failing_still_produces_snapshot(self) -> None:
        aggregator = StatisticsAggregator(
            _sources(user_count=_fail, energy_total=_fail, billing_count=_fail, payments_total=_fail)
        )
        snapshot = asyncio.run(aggregator.snapshot())
        assert snapshot == build_snapshot(0, Decimal("0"), 0, Decimal("0"))

    def test_missing_source_rejected(self) -> None:
        sources = _sources()
        del sources["payments_total"]
        with pytest.raises(ValueError):
            StatisticsAggregator(sources)


class TestStatsFeed:
    """Tests for the server-sent events stream."""

    def test_wire_format(self) -> None:
        event = format_event(build_snapshot(2, Decimal("500"), 4, Decimal("99.5")))
        assert event.startswith("event: stats\ndata: ")
        assert event.endswith("\n\n")
        payload = json.loads(event.split("data: ", 1)[1])
        assert payload == {
            "userCount": 2,
            "energyUsed": {"total": 500.0, "formatted": "500 kWh", "energyUnit": "kWh"},
            "billingCount": 4,
            "paymentsAmount": {"total": 99.5, "formatted": "₱99.50"},
        }

    def test_stream_stops_when_client_disconnects(self) -> None:
        checks = 0

        async def is_disconnected() -> bool:
            nonlocal checks
            checks += 1
            return checks > 3

        async def consume() -> list[str]:
            aggregator = StatisticsAggregator(_sources())
            return [e async for e in stats_event_stream(aggregator, is_disconnected, 0)]

        events = asyncio.run(consume())
        assert len(events) == 3
        assert all(e.startswith("event: stats") for e in events)

    def test_stream_closes_cleanly_on_cancel(self) -> None:
        async def never_disconnected() -> bool:
            return False

        async def first_event() -> str:
            stream = stats_event_stream(
                StatisticsAggregator(_sources()), never_disconnected, 0
            )
            event = await anext(stream)
            await stream.aclose()
            return event

        assert "userCount" in asyncio.run(first_event())


def _period(day: int, total: str, balance: str, labels=(), payments=()):
    return SimpleNamespace(
        id=day,
        date=date(2024, 1, day),
        total_kwh=Decimal(total),
        balance=Decimal(balance),
        sub_meters=[SimpleNamespace(label=label) for label in labels],
        payments=[
            SimpleNamespace(slot=slot, status=status, amount=Decimal(amount))
            for slot, status, amount in payments
        ],
    )


class TestUserSummaries:
    """Per-user consumption and billing summaries."""

    def test_empty_history(self) -> None:
        assert compute_consumption_summary([]).total_kwh == Decimal("0")
        assert compute_billing_summary([]).invested == Decimal("0")

    def test_consumption_summary(self) -> None:
        periods = [
            _period(31, "150", "1500", labels=["Apartment"]),
            _period(1, "100", "1020", labels=["apartment", "Shop"]),
        ]
        summary = compute_consumption_summary(periods)
        assert summary.total_kwh == Decimal("250")
        assert summary.average_daily_kwh == Decimal("250") / 30
        assert summary.total_sub_meters == 2
        assert summary.latest_reading == Decimal("150")

    def test_billing_summary_counts_successful_payments(self) -> None:
        periods = [
            _period(
                1,
                "100",
                "1020",
                payments=[("main", "success", "1020"), ("sub", "success", "180")],
            ),
            _period(
                31,
                "100",
                "900",
                payments=[("main", "pending", "900"), ("sub", "failed", "300")],
            ),
        ]
        summary = compute_billing_summary(periods)
        assert summary.current == Decimal("900")
        assert summary.invested == Decimal("1200")
        assert summary.total_returns == Decimal("180")
        assert summary.net_returns == Decimal("15")
        assert summary.average_daily_return == Decimal("6")
        assert summary.average_monthly_return == Decimal("180")
        assert summary.one_day_returns == Decimal("0")

    def test_one_day_returns_from_latest_period(self) -> None:
        periods = [
            _period(1, "100", "1020", payments=[("sub", "success", "180")]),
            _period(
                15,
                "100",
                "960",
                payments=[("main", "success", "960"), ("sub", "success", "240")],
            ),
        ]
        assert compute_billing_summary(periods).one_day_returns == Decimal("240")


class TestStatsEndpoints:
    """Tests for the statistics API."""

    def test_global_stats(self, client, auth_headers, login) -> None:
        period = client.post(
            "/api/billing/",
            json={"date": "2024-02-29", "total_kwh": "1500", "pay_per_kwh": "10"},
            headers=auth_headers,
        ).json()
        client.post(
            f"/api/billing/{period['id']}/payments",
            json={"slot": "main", "status": "success"},
            headers=auth_headers,
        )
        login("bob")

        response = client.get("/api/stats")
        assert response.status_code == 200
        data = response.json()
        assert data["userCount"] == 2
        assert data["billingCount"] == 1
        assert data["energyUsed"]["total"] == 1500.0
        assert data["energyUsed"]["formatted"] == "1.5 MWh"
        assert data["paymentsAmount"]["total"] == 15000.0

    def test_pending_payments_not_counted(self, client, auth_headers) -> None:
        period = client.post(
            "/api/billing/",
            json={"date": "2024-02-29", "total_kwh": "10", "pay_per_kwh": "10"},
            headers=auth_headers,
        ).json()
        client.post(
            f"/api/billing/{period['id']}/payments",
            json={"slot": "main"},
            headers=auth_headers,
        )
        assert client.get("/api/stats").json()["paymentsAmount"]["total"] == 0.0

    def test_my_stats(self, client, auth_headers) -> None:
        client.post(
            "/api/billing/",
            json={
                "date": "2024-02-29",
                "total_kwh": "100",
                "pay_per_kwh": "12",
                "sub_meters": [{"label": "Apartment", "reading": "25", "previous_reading": "10"}],
            },
            headers=auth_headers,
        )
        response = client.get("/api/stats/me", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["consumption"]["total_kwh"]) == Decimal("100")
        assert data["consumption"]["total_sub_meters"] == 1
        assert Decimal(data["billing"]["current"]) == Decimal("1020")
