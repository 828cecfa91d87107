"""
backend/quantara/database.py

Purpose:
    Process-wide motor client and database handle, plus the index set for
    users, bankrolls, bets, the materialized leaderboard and audit logs.

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - quantara.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError, OperationFailure

from quantara.config import settings

logger = logging.getLogger("quantara.database")

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

_INDEXES: dict[str, list[IndexModel]] = {
    "users": [
        IndexModel("email", unique=True),
        IndexModel("username", unique=True),
        IndexModel("subscription.customer_id", sparse=True),
        IndexModel("reset_password_token", sparse=True),
    ],
    "bankrolls": [
        IndexModel([("user_id", ASCENDING), ("visibility", ASCENDING)]),
        # at most one Public bankroll per owner
        IndexModel(
            "user_id",
            name="one_public_per_user",
            unique=True,
            partialFilterExpression={"visibility": "Public"},
        ),
        # links are only written once minted; unshared bankrolls carry none
        IndexModel(
            "shareable_link",
            name="shareable_link_unique",
            unique=True,
            partialFilterExpression={"shareable_link": {"$type": "string"}},
        ),
    ],
    "bets": [
        IndexModel([("user_id", ASCENDING), ("bankroll_id", ASCENDING)]),
        IndexModel([("bankroll_id", ASCENDING), ("date", ASCENDING)]),
        IndexModel([("verification_status", ASCENDING), ("created_at", DESCENDING)]),
    ],
    "leaderboard": [
        IndexModel([("quarter_start", ASCENDING), ("rank", ASCENDING)]),
    ],
    "audit_logs": [
        IndexModel([("target_id", ASCENDING), ("timestamp", DESCENDING)]),
        IndexModel("action"),
    ],
}


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        tz_aware=True,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()
    logger.info("Connected to MongoDB database %s", settings.MONGO_DB)


async def close_db() -> None:
    if client:
        client.close()


async def get_db() -> AsyncIOMotorDatabase:
    return db


async def _ensure_indexes() -> None:
    """Create missing indexes. Existing ones are left alone."""
    for collection, models in _INDEXES.items():
        try:
            await db[collection].create_indexes(models)
        except (DuplicateKeyError, OperationFailure) as exc:
            # e.g. duplicate values already stored under a unique key
            logger.warning("Index creation on %s incomplete: %s", collection, exc)
