"""Tests for the billing record builder and billing period management."""

from datetime import date
from decimal import Decimal

import pytest

from app.core.exceptions import InvalidPeriod, InvalidRate
from app.models.billing_period import BillingPeriod
from app.models.payment import Payment
from app.models.sub_meter import SubMeter
from app.schemas.billing import BillingPeriodCreate, SubMeterInput
from app.services.billing import (
    MeterRegressionWarning,
    build_billing_record,
    calculate_pay_per_kwh,
    create_billing_period,
    get_previous_period,
    resolve_rate,
)
from app.services.readings import NormalizedReadings, SubMeterReading


def _readings(total: str, *subs: tuple[str, str, str | None]) -> NormalizedReadings:
    return NormalizedReadings(
        total_kwh=Decimal(total),
        sub_meters=[
            SubMeterReading(
                label=label,
                reading=Decimal(reading),
                previous_reading=Decimal(previous) if previous is not None else None,
            )
            for label, reading, previous in subs
        ],
    )


class TestBuildBillingRecord:
    """Unit tests for the balance computation."""

    def test_example_scenario(self) -> None:
        """totalKwh=100, rate 12, sub 10 -> 25 gives subKwh 15 and balance 1020."""
        record = build_billing_record(
            _readings("100", ("Apartment", "25", "10")), {}, Decimal("12")
        )
        assert record.sub_kwh == Decimal("15")
        assert record.balance == Decimal("1020")
        assert record.sub_payment_amount == Decimal("180")
        assert record.sub_reading_old == Decimal("10")
        assert record.sub_reading_latest == Decimal("25")
        assert record.warnings == []

    def test_previous_period_reading_used(self) -> None:
        record = build_billing_record(
            _readings("100", ("Apartment", "25", None)),
            {"Apartment": Decimal("10")},
            Decimal("12"),
        )
        assert record.sub_kwh == Decimal("15")

    def test_explicit_previous_reading_wins(self) -> None:
        record = build_billing_record(
            _readings("100", ("Apartment", "25", "20")),
            {"Apartment": Decimal("10")},
            Decimal("12"),
        )
        assert record.sub_kwh == Decimal("5")

    def test_new_sub_meter_starts_at_zero_usage(self) -> None:
        record = build_billing_record(_readings("100", ("Garage", "350", None)), {}, Decimal("12"))
        assert record.sub_kwh == Decimal("0")
        assert record.sub_meters[0].previous_reading == Decimal("350")
        assert record.balance == Decimal("1200")

    def test_no_sub_meters(self) -> None:
        record = build_billing_record(_readings("50"), {}, Decimal("10.5"))
        assert record.sub_kwh == Decimal("0")
        assert record.balance == Decimal("525.0")
        assert record.sub_reading_old is None
        assert record.sub_reading_latest is None

    def test_multiple_sub_meters_sum(self) -> None:
        record = build_billing_record(
            _readings("200", ("A", "30", "10"), ("B", "55", "50")), {}, Decimal("10")
        )
        assert record.sub_kwh == Decimal("25")
        assert record.balance == Decimal("1750")

    def test_regression_is_clamped_with_warning(self) -> None:
        record = build_billing_record(
            _readings("100", ("Apartment", "5", None), ("Shop", "40", "30")),
            {"Apartment": Decimal("900")},
            Decimal("12"),
        )
        assert record.sub_kwh == Decimal("10")
        assert record.sub_meters[0].sub_kwh == Decimal("0")
        assert record.warnings == [
            MeterRegressionWarning(label="Apartment", old=Decimal("900"), latest=Decimal("5"))
        ]
        assert "Apartment" in str(record.warnings[0])

    def test_regression_keeps_summed_readings_consistent(self) -> None:
        record = build_billing_record(
            _readings("100", ("Apartment", "5", "900"), ("Shop", "40", "30")),
            {},
            Decimal("12"),
        )
        assert record.sub_reading_old == Decimal("35")
        assert record.sub_reading_latest == Decimal("45")
        assert record.sub_reading_latest - record.sub_reading_old == record.sub_kwh
        assert record.sub_meters[0].previous_reading == Decimal("900")

    def test_rate_rounded_to_stored_precision(self) -> None:
        record = build_billing_record(_readings("3"), {}, Decimal("1000") / Decimal("3"))
        assert record.pay_per_kwh == Decimal("333.3333")
        assert record.balance == Decimal("999.9999")

    @pytest.mark.parametrize("rate", ["0", "-1"])
    def test_non_positive_rate_rejected(self, rate: str) -> None:
        with pytest.raises(InvalidRate):
            build_billing_record(_readings("100"), {}, Decimal(rate))

    def test_sub_consumption_above_total_rejected(self) -> None:
        with pytest.raises(InvalidPeriod):
            build_billing_record(_readings("10", ("A", "30", "10")), {}, Decimal("12"))

    def test_deterministic(self) -> None:
        readings = _readings("123.4", ("A", "77.7", "12.3"))
        first = build_billing_record(readings, {}, Decimal("11.25"))
        second = build_billing_record(readings, {}, Decimal("11.25"))
        assert first == second
        assert first.balance == first.total_kwh * first.pay_per_kwh - first.sub_kwh * first.pay_per_kwh


class TestRateResolution:
    def test_rate_from_bill_amount(self) -> None:
        assert calculate_pay_per_kwh(Decimal("3720"), Decimal("310")) == Decimal("12")

    def test_explicit_rate_preferred(self) -> None:
        assert resolve_rate(Decimal("10"), pay_per_kwh=Decimal("9")) == Decimal("9")

    def test_default_rate(self) -> None:
        assert resolve_rate(Decimal("10")) == Decimal("12")


class TestBillingService:
    """Service-level tests against the database."""

    def test_create_uses_previous_period_readings(self, test_db, ctx) -> None:
        create_billing_period(
            test_db,
            ctx,
            BillingPeriodCreate(
                date=date(2024, 1, 31),
                total_kwh=Decimal("80"),
                pay_per_kwh=Decimal("12"),
                sub_meters=[SubMeterInput(label="Apartment", reading=Decimal("10"))],
            ),
        )
        period, warnings = create_billing_period(
            test_db,
            ctx,
            BillingPeriodCreate(
                date=date(2024, 2, 29),
                total_kwh=Decimal("100"),
                pay_per_kwh=Decimal("12"),
                sub_meters=[SubMeterInput(label="Apartment", reading=Decimal("25"))],
            ),
        )
        assert warnings == []
        assert period.sub_kwh == Decimal("15")
        assert period.balance == Decimal("1020")
        assert period.status == "pending"

    def test_previous_period_lookup_ignores_later_periods(self, test_db, ctx) -> None:
        for day in (10, 20):
            create_billing_period(
                test_db,
                ctx,
                BillingPeriodCreate(date=date(2024, 3, day), total_kwh=Decimal("5")),
            )
        previous = get_previous_period(test_db, ctx.user.id, date(2024, 3, 15))
        assert previous.date == date(2024, 3, 10)


# =============================================================================
# API Tests
# =============================================================================


def _create(client, headers, **overrides):
    payload = {
        "date": "2024-02-29",
        "total_kwh": "100",
        "pay_per_kwh": "12",
        "sub_meters": [{"label": "Apartment", "reading": "25", "previous_reading": "10"}],
    }
    payload.update(overrides)
    return client.post("/api/billing/", json=payload, headers=headers)


class TestBillingEndpoints:
    """Tests for the billing API."""

    def test_create_billing_period(self, client, auth_headers) -> None:
        response = _create(client, auth_headers)
        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["sub_kwh"]) == Decimal("15")
        assert Decimal(data["balance"]) == Decimal("1020")
        assert data["status"] == "pending"
        assert data["sub_meters"][0]["label"] == "Apartment"
        assert data["payments"] == []
        assert data["warnings"] == []

    def test_create_with_bill_amount(self, client, auth_headers) -> None:
        response = _create(client, auth_headers, pay_per_kwh=None, bill_amount="1500", sub_meters=[])
        assert response.status_code == 201
        assert Decimal(response.json()["pay_per_kwh"]) == Decimal("15")

    def test_create_rejects_rate_and_bill_amount(self, client, auth_headers) -> None:
        response = _create(client, auth_headers, bill_amount="1500")
        assert response.status_code == 422

    def test_create_returns_regression_warning(self, client, auth_headers) -> None:
        response = _create(
            client,
            auth_headers,
            sub_meters=[{"label": "Apartment", "reading": "5", "previous_reading": "10"}],
        )
        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["sub_kwh"]) == Decimal("0")
        assert len(data["warnings"]) == 1

    def test_create_validation_errors(self, client, auth_headers) -> None:
        response = _create(
            client,
            auth_headers,
            total_kwh="0",
            sub_meters=[
                {"label": "A", "reading": "1"},
                {"label": "a", "reading": "-3"},
            ],
        )
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "validation_error"
        codes = {(e["field"], e["code"]) for e in body["errors"]}
        assert ("total_kwh", "min_value") in codes
        assert ("sub_meters.1.reading", "min_value") in codes
        assert ("sub_meters.0.label", "duplicate_sub_meter_label") in codes
        assert ("sub_meters.1.label", "duplicate_sub_meter_label") in codes

    def test_create_invalid_rate(self, client, auth_headers) -> None:
        response = _create(client, auth_headers, pay_per_kwh="0")
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_rate"

    def test_create_invalid_period(self, client, auth_headers) -> None:
        response = _create(client, auth_headers, total_kwh="10")
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_period"

    def test_list_newest_first(self, client, auth_headers) -> None:
        _create(client, auth_headers, date="2024-01-31", sub_meters=[])
        _create(client, auth_headers, date="2024-03-31", sub_meters=[])
        response = client.get("/api/billing/", headers=auth_headers)
        assert response.status_code == 200
        assert [p["date"] for p in response.json()] == ["2024-03-31", "2024-01-31"]

    def test_periods_are_private(self, client, auth_headers, login) -> None:
        period_id = _create(client, auth_headers).json()["id"]
        other = login("mallory")
        assert client.get(f"/api/billing/{period_id}", headers=other).status_code == 404
        assert client.delete(f"/api/billing/{period_id}", headers=other).status_code == 404
        assert client.get("/api/billing/", headers=other).json() == []

    def test_update_recomputes(self, client, auth_headers) -> None:
        period_id = _create(client, auth_headers).json()["id"]
        response = client.patch(
            f"/api/billing/{period_id}",
            json={"total_kwh": "200"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["total_kwh"]) == Decimal("200")
        assert Decimal(data["sub_kwh"]) == Decimal("15")
        assert Decimal(data["balance"]) == Decimal("2220")

    def test_stored_figures_satisfy_balance_formula(self, client, auth_headers) -> None:
        response = _create(
            client, auth_headers, total_kwh="3", pay_per_kwh=None, bill_amount="1000", sub_meters=[]
        )
        assert response.status_code == 201
        data = response.json()
        rate = Decimal(data["pay_per_kwh"])
        assert rate == Decimal("333.3333")
        expected = Decimal(data["total_kwh"]) * rate - Decimal(data["sub_kwh"]) * rate
        assert Decimal(data["balance"]) == expected

        stored = client.get(f"/api/billing/{data['id']}", headers=auth_headers).json()
        assert Decimal(stored["balance"]) == expected

    def test_empty_update_keeps_balance(self, client, auth_headers) -> None:
        created = _create(
            client, auth_headers, total_kwh="3", pay_per_kwh=None, bill_amount="1000", sub_meters=[]
        ).json()
        response = client.patch(f"/api/billing/{created['id']}", json={}, headers=auth_headers)
        assert response.status_code == 200
        assert Decimal(response.json()["balance"]) == Decimal(created["balance"])
        assert Decimal(response.json()["pay_per_kwh"]) == Decimal(created["pay_per_kwh"])

    def test_update_replaces_sub_meters(self, client, auth_headers) -> None:
        period_id = _create(client, auth_headers).json()["id"]
        response = client.patch(
            f"/api/billing/{period_id}",
            json={"sub_meters": [{"label": "Apartment", "reading": "40", "previous_reading": "10"}]},
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert len(data["sub_meters"]) == 1
        assert Decimal(data["sub_kwh"]) == Decimal("30")
        assert Decimal(data["balance"]) == Decimal("840")

    def test_update_invalid_keeps_record(self, client, auth_headers) -> None:
        period_id = _create(client, auth_headers).json()["id"]
        response = client.patch(
            f"/api/billing/{period_id}", json={"total_kwh": "5"}, headers=auth_headers
        )
        assert response.status_code == 400
        stored = client.get(f"/api/billing/{period_id}", headers=auth_headers).json()
        assert Decimal(stored["total_kwh"]) == Decimal("100")

    def test_delete_cascades_to_payments(self, client, auth_headers, session_factory) -> None:
        period_id = _create(client, auth_headers).json()["id"]
        for slot in ("main", "sub"):
            response = client.post(
                f"/api/billing/{period_id}/payments",
                json={"slot": slot, "status": "success"},
                headers=auth_headers,
            )
            assert response.status_code == 201

        assert client.delete(f"/api/billing/{period_id}", headers=auth_headers).status_code == 204
        assert client.get(f"/api/billing/{period_id}", headers=auth_headers).status_code == 404

        with session_factory() as db:
            assert db.query(Payment).filter(Payment.billing_period_id == period_id).count() == 0
            assert db.query(SubMeter).filter(SubMeter.billing_period_id == period_id).count() == 0
            assert db.get(BillingPeriod, period_id) is None
