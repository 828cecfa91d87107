"""Bet endpoints: owner CRUD plus proof uploads and admin moderation."""

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status

from quantara.models.bet import BetCreate, BetUpdate, ProofKind, VerificationStatus
from quantara.services import bet_service
from quantara.services.auth_service import get_admin_user, get_current_user

router = APIRouter(prefix="/api/bets", tags=["bets"])


# ---------- Admin ----------

@router.get("/admin/all")
async def get_all_bets_for_admin(
    search: str = Query(""),
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    admin=Depends(get_admin_user),
):
    """Moderation queue: every bet, newest first, searchable by sport/label."""
    return await bet_service.list_all_bets(search=search, limit=limit, page=page)


@router.put("/admin/approve/{bet_id}")
async def approve_bet(bet_id: str, request: Request, admin=Depends(get_admin_user)):
    bet = await bet_service.moderate_bet(
        bet_id, VerificationStatus.accepted, str(admin["_id"]), request,
    )
    return {"message": "Bet approved successfully.", "bet": bet}


@router.put("/admin/reject/{bet_id}")
async def reject_bet(bet_id: str, request: Request, admin=Depends(get_admin_user)):
    bet = await bet_service.moderate_bet(
        bet_id, VerificationStatus.rejected, str(admin["_id"]), request,
    )
    return {"message": "Bet rejected successfully.", "bet": bet}


# ---------- Owner ----------

@router.get("/{bankroll_id}")
async def get_bets(bankroll_id: str, user=Depends(get_current_user)):
    return await bet_service.list_bets(str(user["_id"]), bankroll_id)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def add_bet(body: BetCreate, user=Depends(get_current_user)):
    bet = await bet_service.create_bet(str(user["_id"]), body)
    return {"message": "Bet created successfully.", "bet": bet}


@router.put("/{bet_id}")
async def update_bet(bet_id: str, body: BetUpdate, user=Depends(get_current_user)):
    bet = await bet_service.update_bet(str(user["_id"]), bet_id, body)
    return {"message": "Bet updated successfully.", "bet": bet}


@router.post("/{bet_id}/proof")
async def upload_proof(
    bet_id: str,
    kind: ProofKind = Query(ProofKind.verification),
    file: UploadFile = File(...),
    user=Depends(get_current_user),
):
    """Attach a verification or cashout screenshot; the bet returns to moderation."""
    bet = await bet_service.save_proof(str(user["_id"]), bet_id, kind, file)
    return {"message": "Proof uploaded successfully.", "bet": bet}


@router.delete("/{bet_id}")
async def delete_bet(bet_id: str, user=Depends(get_current_user)):
    await bet_service.delete_bet(str(user["_id"]), bet_id)
    return {"message": "Bet deleted successfully."}
