import logging

import quantara.database as _db
from quantara.services.bankroll_service import compute_leaderboard

logger = logging.getLogger("quantara.leaderboard")


async def materialize_leaderboard() -> None:
    """Recompute the quarterly leaderboard into the ``leaderboard`` collection.

    The collection is replaced wholesale; readers filter on ``quarter_start``
    so a board from the previous quarter is never served.
    """
    entries = await compute_leaderboard()

    await _db.db.leaderboard.delete_many({})
    if entries:
        await _db.db.leaderboard.insert_many(entries)
    logger.info("Leaderboard materialized: %d entries", len(entries))
