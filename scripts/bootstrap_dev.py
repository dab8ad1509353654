"""
Dev bootstrap script — create a plan, a subscribed user and an API key
for local development.

Usage:
    python -m scripts.bootstrap_dev [email]

This will:
  1. Create a "Dev Pro" plan with €20 of included AI credits
  2. Create a user subscribed to its monthly price
  3. Generate an API key for that user
  4. Print the raw key ONCE (it is never stored)

The raw key is shown exactly once — copy it immediately.
"""

import asyncio
import sys
from decimal import Decimal

from ai_metering.auth.hashing import generate_api_key
from ai_metering.core.database import async_session_factory, engine
from ai_metering.models.api_key import APIKey
from ai_metering.models.plan import SubscriptionPlan
from ai_metering.models.user import User

DEV_PRICE_ID = "price_dev_pro_monthly"


async def main(email: str) -> None:
    async with async_session_factory() as session:
        # ── Create plan ─────────────────────────────────────
        plan = SubscriptionPlan(
            name="Dev Pro",
            included_ai_credits_eur=Decimal("20.00"),
            stripe_price_monthly=DEV_PRICE_ID,
        )
        session.add(plan)

        # ── Create user ─────────────────────────────────────
        user = User(
            email=email,
            stripe_price_id=DEV_PRICE_ID,
            subscription_status="active",
        )
        session.add(user)
        await session.flush()  # get user.id

        # ── Generate API key ────────────────────────────────
        raw_key, key_hash, prefix = generate_api_key()

        session.add(APIKey(user_id=user.id, key_hash=key_hash, prefix=prefix))
        await session.commit()

    # ── Print results ───────────────────────────────────────
    print()
    print("=" * 60)
    print("  Dev Bootstrap Complete")
    print("=" * 60)
    print()
    print(f"  User:       {user.email}")
    print(f"  User ID:    {user.id}")
    print(f"  Plan:       {plan.name} (€{plan.included_ai_credits_eur} included)")
    print()
    print(f"  API Key:    {raw_key}")
    print()
    print("  ⚠  Copy this key now — it will NEVER be shown again.")
    print("=" * 60)
    print()

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "dev@example.com"))
