import logging

import quantara.database as _db
from quantara.config import settings
from quantara.models.user import Role, SubscriptionStatus
from quantara.services.auth_service import hash_password
from quantara.utils import utcnow

logger = logging.getLogger("quantara.seed")


async def seed_initial_admin() -> None:
    """Create (or promote) the admin account configured via env."""
    if not settings.SEED_ADMIN_EMAIL or not settings.SEED_ADMIN_PASSWORD:
        logger.debug("SEED_ADMIN_EMAIL not set, skipping seed")
        return

    existing = await _db.db.users.find_one({"email": settings.SEED_ADMIN_EMAIL})
    if existing:
        if existing.get("role") != Role.admin.value:
            await _db.db.users.update_one(
                {"_id": existing["_id"]},
                {"$set": {"role": Role.admin.value, "updated_at": utcnow()}},
            )
            logger.info("Seed user promoted to admin")
        else:
            logger.info("Seed admin already exists, skipping")
        return

    now = utcnow()
    result = await _db.db.users.insert_one({
        "username": settings.SEED_ADMIN_USERNAME,
        "email": settings.SEED_ADMIN_EMAIL,
        "hashed_password": hash_password(settings.SEED_ADMIN_PASSWORD),
        "role": Role.admin.value,
        "subscription": {
            "status": SubscriptionStatus.incomplete.value,
            "plan_id": None,
            "current_period_end": None,
            "customer_id": None,
            "subscription_id": None,
        },
        "reset_password_token": None,
        "reset_password_expires_at": None,
        "created_at": now,
        "updated_at": now,
    })
    logger.info("Seed admin created: %s", result.inserted_id)
