import logging
import math
import re
import secrets

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from quantara.config import settings
from quantara.database import get_db
from quantara.models.user import (
    AdminUserCreate,
    ForgotPasswordRequest,
    ProfileUpdate,
    ResetPasswordRequest,
    Role,
    RoleUpdate,
    SubscriptionStatus,
    UserCreate,
    UserLogin,
    UserResponse,
)
from quantara.services import email_service, payment_service
from quantara.services.audit_service import log_audit
from quantara.services.auth_service import (
    create_access_token,
    create_password_reset_token,
    get_admin_user,
    get_current_user,
    hash_password,
    hash_reset_token,
    verify_password,
)
from quantara.services.email_templates import password_reset_template, welcome_template
from quantara.utils import utcnow

logger = logging.getLogger("quantara.auth")
router = APIRouter(prefix="/api/auth", tags=["auth"])

_RESET_SENT = "If the address is registered, a password reset link has been sent."


def _user_response(user: dict) -> UserResponse:
    return UserResponse(
        id=str(user["_id"]),
        username=user["username"],
        email=user["email"],
        role=user.get("role", Role.user.value),
        subscription=user.get("subscription") or {},
        created_at=user["created_at"],
    )


async def _ensure_unique(db, username: str | None, email: str | None, exclude_id=None) -> None:
    clauses = []
    if username:
        clauses.append({"username": username})
    if email:
        clauses.append({"email": email})
    if not clauses:
        return
    query: dict = {"$or": clauses}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    existing = await db.users.find_one(query, {"username": 1, "email": 1})
    if not existing:
        return
    if username and existing.get("username") == username:
        raise HTTPException(status.HTTP_409_CONFLICT, "Username already in use.")
    raise HTTPException(status.HTTP_409_CONFLICT, "Email already in use.")


async def _insert_user(db, username: str, email: str, password: str, role: Role) -> str:
    customer_id = await payment_service.create_customer(email)
    now = utcnow()
    user_doc = {
        "username": username,
        "email": email,
        "hashed_password": hash_password(password),
        "role": role.value,
        "subscription": {
            "status": SubscriptionStatus.incomplete.value,
            "plan_id": None,
            "current_period_end": None,
            "customer_id": customer_id,
            "subscription_id": None,
        },
        "reset_password_token": None,
        "reset_password_expires_at": None,
        "created_at": now,
        "updated_at": now,
    }
    result = await db.users.insert_one(user_doc)
    return str(result.inserted_id)


# ---------- Self-service ----------

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: UserCreate, request: Request, db=Depends(get_db)):
    """Register a new user and open their Stripe customer record."""
    await _ensure_unique(db, body.username, body.email)
    user_id = await _insert_user(db, body.username, body.email, body.password, Role.user)

    await log_audit(actor_id=user_id, target_id=user_id, action="REGISTER", request=request)
    logger.info("User registered: %s", user_id)
    return {"message": "User registered successfully."}


@router.post("/login")
async def login(body: UserLogin, request: Request, db=Depends(get_db)):
    """Exchange email and password for a bearer token."""
    user = await db.users.find_one({"email": body.email})
    if not user or not verify_password(body.password, user["hashed_password"]):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid email or password.")

    user_id = str(user["_id"])
    token = create_access_token(user_id, user.get("role", Role.user.value))
    logger.info("User logged in: %s", user_id)
    return {"token": token, "token_type": "bearer"}


@router.get("/profile", response_model=UserResponse)
async def get_profile(user=Depends(get_current_user)):
    return _user_response(user)


@router.put("/profile", response_model=UserResponse)
async def update_profile(body: ProfileUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    """Change username and/or email; both stay unique."""
    changes = {}
    if body.username and body.username != user["username"]:
        changes["username"] = body.username
    if body.email and body.email != user["email"]:
        changes["email"] = body.email
    if not changes:
        return _user_response(user)

    await _ensure_unique(db, changes.get("username"), changes.get("email"), exclude_id=user["_id"])
    changes["updated_at"] = utcnow()
    await db.users.update_one({"_id": user["_id"]}, {"$set": changes})
    user.update(changes)
    return _user_response(user)


@router.post("/forgot-password")
async def forgot_password(body: ForgotPasswordRequest, db=Depends(get_db)):
    """Mail a single-use reset link. The answer is the same for unknown addresses."""
    user = await db.users.find_one({"email": body.email})
    if not user:
        return {"message": _RESET_SENT}

    token, token_hash, expires_at = create_password_reset_token()
    await db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"reset_password_token": token_hash, "reset_password_expires_at": expires_at}},
    )

    reset_url = f"{settings.FRONTEND_URL.rstrip('/')}/reset-password/{token}"
    html = password_reset_template(
        user["username"], reset_url, settings.FRONTEND_URL, settings.PASSWORD_RESET_EXPIRE_MINUTES,
    )
    try:
        await email_service.send_email(user["email"], "Password Reset Request", html)
    except email_service.EmailDeliveryError:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Failed to send email.")
    return {"message": _RESET_SENT}


@router.post("/reset-password/{token}")
async def reset_password(token: str, body: ResetPasswordRequest, request: Request, db=Depends(get_db)):
    user = await db.users.find_one({
        "reset_password_token": hash_reset_token(token),
        "reset_password_expires_at": {"$gt": utcnow()},
    })
    if not user:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid or expired token.")

    await db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {
            "hashed_password": hash_password(body.password),
            "reset_password_token": None,
            "reset_password_expires_at": None,
            "updated_at": utcnow(),
        }},
    )
    user_id = str(user["_id"])
    await log_audit(actor_id=user_id, target_id=user_id, action="PASSWORD_RESET", request=request)
    return {"message": "Password reset successfully."}


# ---------- Admin ----------

@router.post("/admin/register", status_code=status.HTTP_201_CREATED)
async def admin_register(
    body: AdminUserCreate,
    request: Request,
    admin=Depends(get_admin_user),
    db=Depends(get_db),
):
    """Create an account on someone's behalf and mail them the credentials."""
    await _ensure_unique(db, body.username, body.email)
    password = body.password or secrets.token_urlsafe(9)
    user_id = await _insert_user(db, body.username, body.email, password, body.role)

    await log_audit(
        actor_id=str(admin["_id"]), target_id=user_id, action="ADMIN_CREATE_USER",
        metadata={"role": body.role.value}, request=request,
    )

    email_sent = False
    if email_service.is_configured():
        html = welcome_template(body.username, body.email, password, settings.FRONTEND_URL)
        try:
            await email_service.send_email(body.email, "Welcome to Quantara", html)
            email_sent = True
        except email_service.EmailDeliveryError:
            logger.warning("Welcome mail for %s not delivered", user_id)

    return {"message": "User created successfully.", "id": user_id, "email_sent": email_sent}


@router.get("/users")
async def list_users(
    search: str = Query(""),
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    admin=Depends(get_admin_user),
    db=Depends(get_db),
):
    """Paginated user list with bankroll and bet counts."""
    query: dict = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query = {"$or": [{"username": pattern}, {"email": pattern}]}

    total = await db.users.count_documents(query)
    users = (
        await db.users.find(query, {"hashed_password": 0, "reset_password_token": 0})
        .sort("created_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list(length=limit)
    )

    ids = [str(u["_id"]) for u in users]
    bankroll_counts = await _count_by_user(db.bankrolls, ids)
    bet_counts = await _count_by_user(db.bets, ids)

    return {
        "users": [
            {
                **_user_response(u).model_dump(mode="json"),
                "bankroll_count": bankroll_counts.get(str(u["_id"]), 0),
                "bet_count": bet_counts.get(str(u["_id"]), 0),
            }
            for u in users
        ],
        "total_users": total,
        "total_pages": math.ceil(total / limit),
        "current_page": page,
    }


async def _count_by_user(collection, user_ids: list[str]) -> dict[str, int]:
    if not user_ids:
        return {}
    rows = await collection.aggregate([
        {"$match": {"user_id": {"$in": user_ids}}},
        {"$group": {"_id": "$user_id", "count": {"$sum": 1}}},
    ]).to_list(length=None)
    return {row["_id"]: row["count"] for row in rows}


@router.put("/users/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: str,
    body: RoleUpdate,
    request: Request,
    admin=Depends(get_admin_user),
    db=Depends(get_db),
):
    if user_id == str(admin["_id"]) and body.role != Role.admin:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "You cannot remove your own admin role.")

    user = await db.users.find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found.")

    before = user.get("role")
    await db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"role": body.role.value, "updated_at": utcnow()}},
    )
    user["role"] = body.role.value

    await log_audit(
        actor_id=str(admin["_id"]), target_id=user_id, action="USER_ROLE_CHANGED",
        metadata={"before": before, "after": body.role.value}, request=request,
    )
    return _user_response(user)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    admin=Depends(get_admin_user),
    db=Depends(get_db),
):
    """Delete a user together with their bankrolls and bets."""
    user = await db.users.find_one({"_id": ObjectId(user_id)}, {"_id": 1})
    if not user:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found.")

    bankrolls = await db.bankrolls.delete_many({"user_id": user_id})
    bets = await db.bets.delete_many({"user_id": user_id})
    await db.users.delete_one({"_id": user["_id"]})

    await log_audit(
        actor_id=str(admin["_id"]), target_id=user_id, action="ADMIN_DELETE_USER",
        metadata={"bankrolls": bankrolls.deleted_count, "bets": bets.deleted_count},
        request=request,
    )
    logger.info("User deleted: %s by admin %s", user_id, admin["_id"])
    return {"message": "User deleted successfully."}
