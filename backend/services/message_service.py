from typing import List, Optional

import structlog
from pydantic import BaseModel
from supabase import Client

from models import USER_MESSAGES, USERS, utc_now_iso
from core.access_control import AccessScope, ensure_access

logger = structlog.get_logger("message_service")

MESSAGE_TYPES = ("info", "warning", "success", "alert")
BROADCAST = "all"


class MessageDraft(BaseModel):
    user_id: str
    title: str
    content: str
    message_type: str = "info"


def _row(user_id: str, draft: MessageDraft) -> dict:
    return {
        "user_id": user_id,
        "title": draft.title.strip(),
        "content": draft.content.strip(),
        "message_type": draft.message_type,
        "is_read": False,
        "created_at": utc_now_iso(),
    }


def broadcast_recipients(db: Client, scope: AccessScope) -> List[str]:
    """End users the caller may message; a full admin reaches every non-staff user."""
    query = (
        db.table(USERS)
        .select("id")
        .eq("is_admin", False)
        .eq("is_manager", False)
        .eq("is_superiormanager", False)
    )
    rows = scope.apply(query).execute().data or []
    return [r["id"] for r in rows]


def send_message(db: Client, scope: AccessScope, draft: MessageDraft) -> int:
    """Send to one user or, with user_id "all", to every user in scope. Returns the count sent."""
    if not draft.title.strip() or not draft.content.strip():
        raise ValueError("Please fill in all fields")
    if draft.message_type not in MESSAGE_TYPES:
        raise ValueError(f"Invalid message type: {draft.message_type}")

    if draft.user_id == BROADCAST:
        recipients = broadcast_recipients(db, scope)
        if not recipients:
            return 0
        db.table(USER_MESSAGES).insert([_row(uid, draft) for uid in recipients]).execute()
        logger.info("message_broadcast", recipients=len(recipients), title=draft.title)
        return len(recipients)

    ensure_access(scope, draft.user_id, "send messages")
    db.table(USER_MESSAGES).insert(_row(draft.user_id, draft)).execute()
    logger.info("message_sent", user_id=draft.user_id, title=draft.title)
    return 1


def list_messages_for_admin(db: Client, scope: AccessScope, limit: int = 50) -> List[dict]:
    query = scope.apply(db.table(USER_MESSAGES).select("*"), column="user_id")
    return query.order("created_at", desc=True).limit(limit).execute().data or []


def list_messages_for_user(db: Client, user_id: str) -> List[dict]:
    return (
        db.table(USER_MESSAGES)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
        .data
        or []
    )


def mark_read(db: Client, user_id: str, message_id: str) -> Optional[dict]:
    rows = (
        db.table(USER_MESSAGES)
        .update({"is_read": True})
        .eq("id", message_id)
        .eq("user_id", user_id)
        .execute()
        .data
    )
    return rows[0] if rows else None


def delete_message(db: Client, user_id: str, message_id: str) -> bool:
    rows = db.table(USER_MESSAGES).delete().eq("id", message_id).eq("user_id", user_id).execute().data
    return bool(rows)
