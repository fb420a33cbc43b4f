from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime, timezone

from rentflow.domain.models import Franchise, InstallationRequest, User
from rentflow.domain.state import InstallationRequestStatus, OrderType, UserRole
from rentflow.persistence.db import SessionLocal


DEMO_FRANCHISE_ID = "fr_demo"
DEMO_REQUEST_ID = "req_demo"


@dataclass(frozen=True)
class DemoUser:
    id: str
    name: str
    phone: str
    role: UserRole


def build_demo_users() -> tuple[DemoUser, ...]:
    # One user per role so every /v1/subscriptions route can be exercised locally.
    return (
        DemoUser("usr_demo_admin", "Demo Admin", "+919800000000", UserRole.ADMIN),
        DemoUser("usr_demo_owner", "Demo Owner", "+919800000001", UserRole.FRANCHISE_OWNER),
        DemoUser("usr_demo_agent", "Demo Agent", "+919800000002", UserRole.SERVICE_AGENT),
        DemoUser("usr_demo_customer", "Demo Customer", "+919800000003", UserRole.CUSTOMER),
    )


async def seed_demo() -> int:
    # Use the shared async session factory so env config matches the API process.
    async with SessionLocal() as session:
        if await session.get(Franchise, DEMO_FRANCHISE_ID) is not None:
            print("Demo franchise already seeded; skipping.")
            return 0

        for user in build_demo_users():
            if await session.get(User, user.id) is None:
                session.add(User(id=user.id, name=user.name, phone=user.phone, role=user.role.value))
        await session.flush()
        session.add(Franchise(id=DEMO_FRANCHISE_ID, name="Demo Franchise", city="Bengaluru", owner_id="usr_demo_owner"))
        await session.flush()
        # A completed rental installation is the only input POST /v1/subscriptions accepts.
        session.add(
            InstallationRequest(
                id=DEMO_REQUEST_ID,
                customer_id="usr_demo_customer",
                product_id="prod_demo_purifier",
                franchise_id=DEMO_FRANCHISE_ID,
                order_type=OrderType.RENTAL.value,
                status=InstallationRequestStatus.INSTALLATION_COMPLETED.value,
                completed_date=datetime.now(timezone.utc),
            )
        )
        await session.commit()
        print(f"Seeded demo franchise {DEMO_FRANCHISE_ID} with rental request {DEMO_REQUEST_ID}.")
        return 0


def main() -> int:
    # Surface clear failures and exit non-zero so dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
