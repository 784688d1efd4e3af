"""
Live chat between clients and support.

Clients poll `messages_since` every couple of seconds as a fallback to the
realtime subscription; admins see sessions scoped by the client's user id.
"""

from typing import List, Optional

import structlog
from supabase import Client

from models import CHAT_MESSAGES, CHAT_SESSIONS, utc_now_iso
from core.access_control import AccessScope, ensure_access

logger = structlog.get_logger("chat_service")

SUPPORT_AGENT_NAME = "Support Agent"


class ChatSessionNotFound(LookupError):
    pass


def get_session(db: Client, session_id: str) -> dict:
    res = db.table(CHAT_SESSIONS).select("*").eq("id", session_id).maybe_single().execute()
    row = res.data if res else None
    if not row:
        raise ChatSessionNotFound(f"Chat session {session_id} not found")
    return row


def _touch(db: Client, session_id: str) -> None:
    now = utc_now_iso()
    db.table(CHAT_SESSIONS).update({"updated_at": now, "last_message_at": now}).eq("id", session_id).execute()


def _insert_message(db: Client, session_id: str, sender_type: str, sender_name: str, text: str) -> dict:
    row = {
        "session_id": session_id,
        "sender_type": sender_type,
        "sender_name": sender_name,
        "message": text,
        "read_by_admin": sender_type == "admin",
        "read_by_client": sender_type == "client",
    }
    inserted = db.table(CHAT_MESSAGES).insert(row).execute().data or [row]
    _touch(db, session_id)
    return inserted[0]


def start_session(db: Client, user_id: str, client_name: str, client_email: str) -> dict:
    name = client_name.strip()
    email = client_email.strip()
    if not name or not email:
        raise ValueError("Please enter both name and email to start.")

    session = (
        db.table(CHAT_SESSIONS)
        .insert({
            "client_name": name,
            "client_email": email,
            "client_user_id": user_id,
            "status": "active",
            "last_message_at": utc_now_iso(),
        })
        .execute()
        .data[0]
    )
    greeting = _insert_message(
        db, session["id"], "client", name, f"Hi, I'm {name}. I need help with my account."
    )
    logger.info("chat_started", session_id=session["id"], user_id=user_id)
    return {"session": session, "messages": [greeting]}


def _own_session(db: Client, user_id: str, session_id: str) -> dict:
    session = get_session(db, session_id)
    if session.get("client_user_id") != user_id:
        raise ChatSessionNotFound(f"Chat session {session_id} not found")
    return session


def client_send(db: Client, user_id: str, session_id: str, text: str) -> dict:
    if not text.strip():
        raise ValueError("Message must not be empty")
    session = _own_session(db, user_id, session_id)
    if session.get("status") == "closed":
        raise ValueError("This chat session has been closed")
    return _insert_message(db, session_id, "client", session.get("client_name") or "Client", text.strip())


def messages_since(db: Client, user_id: str, session_id: str, after: Optional[str] = None) -> List[dict]:
    _own_session(db, user_id, session_id)
    query = db.table(CHAT_MESSAGES).select("*").eq("session_id", session_id)
    if after:
        query = query.gt("created_at", after)
    return query.order("created_at").execute().data or []


def list_sessions(db: Client, scope: AccessScope) -> List[dict]:
    query = scope.apply(db.table(CHAT_SESSIONS).select("*"), column="client_user_id")
    sessions = query.order("last_message_at", desc=True).execute().data or []

    out = []
    for session in sessions:
        unread = (
            db.table(CHAT_MESSAGES)
            .select("id", count="exact")
            .eq("session_id", session["id"])
            .eq("sender_type", "client")
            .eq("read_by_admin", False)
            .execute()
        )
        out.append({**session, "unread_count": unread.count or 0})
    return out


def _scoped_session(db: Client, scope: AccessScope, session_id: str, action: str) -> dict:
    session = get_session(db, session_id)
    ensure_access(scope, session.get("client_user_id"), action)
    return session


def admin_messages(db: Client, scope: AccessScope, session_id: str) -> List[dict]:
    """Full transcript; unread client messages are marked read by admin."""
    _scoped_session(db, scope, session_id, "read this chat")
    messages = db.table(CHAT_MESSAGES).select("*").eq("session_id", session_id).order("created_at").execute().data or []

    unread_ids = [m["id"] for m in messages if m.get("sender_type") == "client" and not m.get("read_by_admin")]
    if unread_ids:
        db.table(CHAT_MESSAGES).update({"read_by_admin": True}).in_("id", unread_ids).execute()
        for m in messages:
            if m["id"] in unread_ids:
                m["read_by_admin"] = True
    return messages


def admin_send(db: Client, scope: AccessScope, session_id: str, text: str) -> dict:
    if not text.strip():
        raise ValueError("Message must not be empty")
    _scoped_session(db, scope, session_id, "reply in this chat")
    return _insert_message(db, session_id, "admin", SUPPORT_AGENT_NAME, text.strip())


def close_session(db: Client, scope: AccessScope, session_id: str) -> None:
    _scoped_session(db, scope, session_id, "close this chat")
    db.table(CHAT_SESSIONS).update({"status": "closed", "updated_at": utc_now_iso()}).eq("id", session_id).execute()
    logger.info("chat_closed", session_id=session_id)
