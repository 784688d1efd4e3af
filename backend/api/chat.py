from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from supabase import Client

from api.deps import AdminContext, current_user_id, get_admin_context, service_call
from database import get_db
from services import chat_service

router = APIRouter(prefix="/api/chat/sessions", tags=["Chat"])
admin_router = APIRouter(prefix="/api/admin/chat/sessions", tags=["Admin", "Chat"])


class StartChat(BaseModel):
    client_name: str
    client_email: str


class ChatText(BaseModel):
    message: str


@router.post("", status_code=201)
def start_chat(body: StartChat, user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("Chat start", user_id=user_id):
        return chat_service.start_session(db, user_id, body.client_name, body.client_email)


@router.post("/{session_id}/messages", status_code=201)
def client_message(
    session_id: str,
    body: ChatText,
    user_id: str = Depends(current_user_id),
    db: Client = Depends(get_db),
):
    with service_call("Chat message", session_id=session_id):
        return chat_service.client_send(db, user_id, session_id, body.message)


@router.get("/{session_id}/messages")
def poll_messages(
    session_id: str,
    after: Optional[str] = None,
    user_id: str = Depends(current_user_id),
    db: Client = Depends(get_db),
):
    # Clients poll every 2 seconds with the last created_at they have seen
    with service_call("Chat poll", session_id=session_id):
        return chat_service.messages_since(db, user_id, session_id, after)


@admin_router.get("")
def list_sessions(ctx: AdminContext = Depends(get_admin_context), db: Client = Depends(get_db)):
    with service_call("Chat session listing"):
        return chat_service.list_sessions(db, ctx.scope)


@admin_router.get("/{session_id}/messages")
def session_messages(session_id: str, ctx: AdminContext = Depends(get_admin_context), db: Client = Depends(get_db)):
    with service_call("Chat transcript", session_id=session_id):
        return chat_service.admin_messages(db, ctx.scope, session_id)


@admin_router.post("/{session_id}/messages", status_code=201)
def admin_reply(
    session_id: str,
    body: ChatText,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("Chat reply", session_id=session_id):
        return chat_service.admin_send(db, ctx.scope, session_id, body.message)


@admin_router.post("/{session_id}/close")
def close_session(session_id: str, ctx: AdminContext = Depends(get_admin_context), db: Client = Depends(get_db)):
    with service_call("Chat close", session_id=session_id):
        chat_service.close_session(db, ctx.scope, session_id)
    return {"status": "closed"}
