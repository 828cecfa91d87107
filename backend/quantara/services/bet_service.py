"""
backend/quantara/services/bet_service.py

Purpose:
    Bet recording for bankroll owners, admin moderation (approve/reject) and
    proof image uploads.

Dependencies:
    - quantara.database
    - quantara.services.audit_service
    - fastapi.UploadFile (python-multipart)
"""

import logging
import math
import re
import uuid
from pathlib import Path
from typing import Any, Optional

from bson import ObjectId
from fastapi import HTTPException, Request, UploadFile, status
from starlette.concurrency import run_in_threadpool

import quantara.database as _db
from quantara.config import settings
from quantara.models.bet import BetCreate, BetUpdate, ProofKind, VerificationStatus
from quantara.services.audit_service import log_audit
from quantara.utils import serialize_doc, utcnow

logger = logging.getLogger("quantara.bets")

_IMAGE_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}
_PROOF_FIELDS = {
    ProofKind.verification: "proof_image",
    ProofKind.cashout: "cashout_proof_image",
}


async def _get_owned_bet(user_id: str, bet_id: str) -> dict:
    bet = await _db.db.bets.find_one({"_id": ObjectId(bet_id), "user_id": user_id})
    if not bet:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Bet not found.")
    return bet


# ---------- Owner operations ----------

async def list_bets(user_id: str, bankroll_id: str) -> list[dict]:
    bets = await _db.db.bets.find(
        {"bankroll_id": bankroll_id, "user_id": user_id}
    ).sort("created_at", 1).to_list(length=None)
    return serialize_doc(bets)


async def create_bet(user_id: str, body: BetCreate) -> dict:
    bankroll_id = body.bankroll_id
    bankroll = await _db.db.bankrolls.find_one(
        {"_id": ObjectId(bankroll_id), "user_id": user_id}, {"_id": 1},
    )
    if not bankroll:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Bankroll not found.")

    now = utcnow()
    doc = {
        "user_id": user_id,
        "bankroll_id": bankroll_id,
        "date": body.date,
        "sport": body.sport,
        "label": body.label,
        "stake": body.stake,
        "odds": body.odds,
        "cashout_amount": body.cashout_amount,
        "verification_code": body.verification_code,
        "is_verified": False,
        "verification_status": VerificationStatus.pending.value,
        "status": body.status.value,
        "proof_image": None,
        "cashout_proof_image": None,
        "created_at": now,
        "updated_at": now,
    }
    result = await _db.db.bets.insert_one(doc)
    doc["_id"] = result.inserted_id

    await _db.db.bankrolls.update_one(
        {"_id": bankroll["_id"]},
        {"$push": {"bet_ids": str(result.inserted_id)}, "$set": {"updated_at": now}},
    )

    logger.info(
        "Bet created: user=%s bankroll=%s bet=%s stake=%.2f odds=%.2f",
        user_id, bankroll_id, result.inserted_id, body.stake, body.odds,
    )
    return serialize_doc(doc)


async def update_bet(user_id: str, bet_id: str, body: BetUpdate) -> dict:
    """Apply a partial update.

    A new verification code sends the bet back to moderation: the status
    returns to Pending. ``is_verified`` is left as it was.
    """
    existing = await _get_owned_bet(user_id, bet_id)

    changes = body.model_dump(exclude_unset=True, exclude_none=True, mode="python")
    if "status" in changes:
        changes["status"] = changes["status"].value
    code = changes.get("verification_code")
    if code and code != existing.get("verification_code"):
        changes["verification_status"] = VerificationStatus.pending.value
    changes["updated_at"] = utcnow()

    await _db.db.bets.update_one({"_id": existing["_id"]}, {"$set": changes})
    existing.update(changes)
    return serialize_doc(existing)


async def delete_bet(user_id: str, bet_id: str) -> None:
    bet = await _db.db.bets.find_one_and_delete({"_id": ObjectId(bet_id), "user_id": user_id})
    if not bet:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Bet not found.")
    await _db.db.bankrolls.update_one(
        {"_id": ObjectId(bet["bankroll_id"])},
        {"$pull": {"bet_ids": bet_id}},
    )
    logger.info("Bet deleted: user=%s bet=%s", user_id, bet_id)


async def save_proof(user_id: str, bet_id: str, kind: ProofKind, file: UploadFile) -> dict:
    """Store a proof image and send the bet back to moderation."""
    bet = await _get_owned_bet(user_id, bet_id)

    suffix = _IMAGE_TYPES.get(file.content_type or "")
    if not suffix:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            f"Unsupported image type. Allowed: {', '.join(sorted(_IMAGE_TYPES))}",
        )
    content = await file.read(settings.UPLOAD_MAX_BYTES + 1)
    if len(content) > settings.UPLOAD_MAX_BYTES:
        raise HTTPException(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "Image is too large.")
    if not content:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Empty file.")

    target = Path(settings.UPLOAD_DIR) / bet_id / f"{uuid.uuid4().hex}{suffix}"
    await run_in_threadpool(_write_file, target, content)

    field = _PROOF_FIELDS[kind]
    changes = {
        field: target.as_posix(),
        "verification_status": VerificationStatus.pending.value,
        "is_verified": False,
        "updated_at": utcnow(),
    }
    await _db.db.bets.update_one({"_id": bet["_id"]}, {"$set": changes})
    bet.update(changes)

    logger.info("Proof uploaded: user=%s bet=%s kind=%s bytes=%d", user_id, bet_id, kind.value, len(content))
    return serialize_doc(bet)


def _write_file(target: Path, content: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)


# ---------- Admin moderation ----------

async def list_all_bets(search: str = "", limit: int = 10, page: int = 1) -> dict:
    """Paginated bets of every user, searchable by sport or label."""
    query: dict[str, Any] = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query = {"$or": [{"sport": pattern}, {"label": pattern}]}

    total = await _db.db.bets.count_documents(query)
    bets = (
        await _db.db.bets.find(query)
        .sort("created_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list(length=limit)
    )

    user_ids = list({ObjectId(b["user_id"]) for b in bets if ObjectId.is_valid(b.get("user_id", ""))})
    bankroll_ids = list({ObjectId(b["bankroll_id"]) for b in bets if ObjectId.is_valid(b.get("bankroll_id", ""))})
    users = await _db.db.users.find(
        {"_id": {"$in": user_ids}}, {"username": 1, "email": 1},
    ).to_list(length=None)
    bankrolls = await _db.db.bankrolls.find(
        {"_id": {"$in": bankroll_ids}}, {"name": 1, "starting_capital": 1, "currency": 1},
    ).to_list(length=None)
    users_by_id = {str(u["_id"]): serialize_doc(u) for u in users}
    bankrolls_by_id = {str(b["_id"]): serialize_doc(b) for b in bankrolls}

    items = []
    for bet in bets:
        row = serialize_doc(bet)
        row["user"] = users_by_id.get(bet["user_id"])
        row["bankroll"] = bankrolls_by_id.get(bet["bankroll_id"])
        items.append(row)

    return {
        "bets": items,
        "total_bets": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "current_page": page,
    }


async def moderate_bet(
    bet_id: str,
    decision: VerificationStatus,
    admin_id: str,
    request: Optional[Request] = None,
) -> dict:
    """Approve (Accepted + verified) or reject (Rejected + unverified) a bet."""
    bet = await _db.db.bets.find_one({"_id": ObjectId(bet_id)})
    if not bet:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Bet not found.")

    changes = {
        "is_verified": decision == VerificationStatus.accepted,
        "verification_status": decision.value,
        "updated_at": utcnow(),
    }
    await _db.db.bets.update_one({"_id": bet["_id"]}, {"$set": changes})
    before = bet.get("verification_status")
    bet.update(changes)

    action = "BET_APPROVED" if decision == VerificationStatus.accepted else "BET_REJECTED"
    await log_audit(
        actor_id=admin_id,
        target_id=bet_id,
        action=action,
        metadata={"before": before, "after": decision.value},
        request=request,
    )
    logger.info("Bet moderated: bet=%s decision=%s admin=%s", bet_id, decision.value, admin_id)
    return serialize_doc(bet)
