"""Seed script to populate the database with a demo user and billing history."""

from datetime import date
from decimal import Decimal

from app.core.database import Base, SessionLocal, engine
from app.models.enums import PaymentSlot, PaymentStatus
from app.models.user import User
from app.schemas.billing import BillingPeriodCreate, SubMeterInput
from app.schemas.payment import PaymentCreate
from app.schemas.user import UserCreate
from app.services.auth import RequestContext, create_session, create_user
from app.services.billing import create_billing_period
from app.services.reconciliation import attach_payment

# (date, total kWh, bill amount, apartment sub-meter reading)
HISTORY = [
    (date(2024, 1, 31), Decimal("310"), Decimal("3720"), Decimal("1200")),
    (date(2024, 2, 29), Decimal("285"), Decimal("3477"), Decimal("1262")),
    (date(2024, 3, 31), Decimal("342"), Decimal("4275"), Decimal("1331")),
    (date(2024, 4, 30), Decimal("398"), Decimal("5094.40"), Decimal("1420")),
]


def seed_database() -> None:
    """Seed the database with sample data."""
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        if db.query(User).first():
            print("Database already has data. Skipping seed.")
            return

        print("Seeding database...")
        user = create_user(
            db, UserCreate(username="demo", email="demo@example.com", password="demo-password")
        )
        ctx = RequestContext(user=user, session=create_session(db, user))
        print(f"Created user: {user.username} (ID: {user.id})")

        for index, (period_date, total_kwh, bill_amount, sub_reading) in enumerate(HISTORY):
            period, _ = create_billing_period(
                db,
                ctx,
                BillingPeriodCreate(
                    date=period_date,
                    total_kwh=total_kwh,
                    bill_amount=bill_amount,
                    sub_meters=[SubMeterInput(label="Apartment", reading=sub_reading)],
                ),
            )
            # Leave the latest bill open
            if index < len(HISTORY) - 1:
                attach_payment(
                    db, ctx, period.id, PaymentCreate(slot=PaymentSlot.MAIN, status=PaymentStatus.SUCCESS)
                )
                if period.sub_kwh > 0:
                    attach_payment(
                        db,
                        ctx,
                        period.id,
                        PaymentCreate(slot=PaymentSlot.SUB, status=PaymentStatus.SUCCESS),
                    )
            print(
                f"  {period.date}: {period.total_kwh} kWh, sub {period.sub_kwh} kWh, "
                f"balance {period.balance:.2f} ({period.status})"
            )

        print("Seeding complete!")


if __name__ == "__main__":
    seed_database()
