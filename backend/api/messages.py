from fastapi import APIRouter, Depends, HTTPException, Request
from supabase import Client

from api.deps import AdminContext, current_user_id, get_admin_context, service_call
from core.rate_limiting import WRITE_LIMIT, limiter
from database import get_db
from services import message_service
from services.message_service import MessageDraft

router = APIRouter(prefix="/api/messages", tags=["Messages"])
admin_router = APIRouter(prefix="/api/admin/messages", tags=["Admin", "Messages"])


@router.get("")
def my_messages(user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("Message listing", user_id=user_id):
        return message_service.list_messages_for_user(db, user_id)


@router.post("/{message_id}/read")
def mark_message_read(message_id: str, user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("Mark read", message_id=message_id):
        row = message_service.mark_read(db, user_id, message_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return row


@router.delete("/{message_id}")
def delete_message(message_id: str, user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("Message deletion", message_id=message_id):
        deleted = message_service.delete_message(db, user_id, message_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Message not found")
    return {"status": "success"}


@admin_router.get("")
def admin_messages(ctx: AdminContext = Depends(get_admin_context), db: Client = Depends(get_db)):
    with service_call("Message listing"):
        return message_service.list_messages_for_admin(db, ctx.scope)


@admin_router.post("", status_code=201)
@limiter.limit(WRITE_LIMIT)
def send_message(
    request: Request,  # Required by slowapi
    draft: MessageDraft,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("Message send", user_id=draft.user_id):
        sent = message_service.send_message(db, ctx.scope, draft)
    return {"status": "success", "sent": sent}
