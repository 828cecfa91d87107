"""Insert-only audit trail.

Moderation decisions, role changes, account creation/deletion and Stripe
subscription syncs are appended to ``audit_logs``. Nothing updates or deletes
these records. Client addresses are stored as their network prefix only.
"""

import ipaddress
import logging
from typing import Any, Optional

from fastapi import Request

import quantara.database as _db
from quantara.utils import utcnow

logger = logging.getLogger("quantara.audit")

_IPV4_PREFIX = 24
_IPV6_PREFIX = 48


def client_network(request: Optional[Request]) -> Optional[str]:
    """/24 (IPv4) or /48 (IPv6) network of the caller; the proxy header wins."""
    if request is None:
        return None
    raw = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    if not raw and request.client:
        raw = request.client.host
    try:
        address = ipaddress.ip_address(raw)
    except ValueError:
        return None
    prefix = _IPV4_PREFIX if address.version == 4 else _IPV6_PREFIX
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False))


async def log_audit(
    *,
    actor_id: str,
    target_id: str,
    action: str,
    metadata: Optional[dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> None:
    """Append one record; a failed insert is logged, never raised.

    ``actor_id`` is a user id or "STRIPE" for webhook-driven changes.
    """
    entry = {
        "timestamp": utcnow(),
        "action": action,
        "actor_id": actor_id,
        "target_id": target_id,
        "metadata": dict(metadata or {}),
        "client_network": client_network(request),
    }
    try:
        await _db.db.audit_logs.insert_one(entry)
    except Exception:
        logger.exception("Audit write failed: action=%s actor=%s target=%s", action, actor_id, target_id)
