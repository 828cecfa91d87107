"""Bankroll endpoints: CRUD with statistics, sharing and the quarterly leaderboard."""

from fastapi import APIRouter, Depends, status

from quantara.models.bankroll import BankrollCreate, BankrollUpdate, LeaderboardEntry, ShareToggle
from quantara.services import bankroll_service
from quantara.services.auth_service import get_current_user

router = APIRouter(prefix="/api/bankrolls", tags=["bankrolls"])


@router.get("/")
async def get_bankrolls(user=Depends(get_current_user)):
    """All bankrolls of the current user, each with bets and stats."""
    return await bankroll_service.list_bankrolls(str(user["_id"]))


@router.post("/", status_code=status.HTTP_201_CREATED)
async def add_bankroll(body: BankrollCreate, user=Depends(get_current_user)):
    bankroll = await bankroll_service.create_bankroll(str(user["_id"]), body)
    return {"message": "Bankroll created successfully.", "bankroll": bankroll}


# Static paths must be registered before /{bankroll_id}.
@router.get("/top", response_model=list[LeaderboardEntry])
async def get_top_bankrolls(user=Depends(get_current_user)):
    """Best public bankrolls of the current quarter by profit percentage."""
    return await bankroll_service.get_top_bankrolls()


@router.get("/shared/{link}")
async def get_shared_bankroll(link: str):
    """Read-only view of a bankroll its owner made shareable. No login needed."""
    return await bankroll_service.get_shared_bankroll(link)


@router.get("/{bankroll_id}")
async def get_bankroll(bankroll_id: str, user=Depends(get_current_user)):
    return await bankroll_service.get_bankroll(str(user["_id"]), bankroll_id)


@router.put("/{bankroll_id}")
async def update_bankroll(bankroll_id: str, body: BankrollUpdate, user=Depends(get_current_user)):
    bankroll = await bankroll_service.update_bankroll(str(user["_id"]), bankroll_id, body)
    return {"message": "Bankroll updated successfully.", "bankroll": bankroll}


@router.post("/{bankroll_id}/share")
async def share_bankroll(bankroll_id: str, body: ShareToggle, user=Depends(get_current_user)):
    return await bankroll_service.set_shareable(str(user["_id"]), bankroll_id, body.is_shareable)


@router.delete("/{bankroll_id}")
async def delete_bankroll(bankroll_id: str, user=Depends(get_current_user)):
    await bankroll_service.delete_bankroll(str(user["_id"]), bankroll_id)
    return {"message": "Bankroll and associated bets deleted successfully."}
