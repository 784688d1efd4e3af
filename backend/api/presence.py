from fastapi import APIRouter, Depends
from supabase import Client

from api.deps import AdminContext, current_user_id, get_admin_context, service_call
from database import get_db
from services import presence_service
from services.presence_service import PresenceUpdate

router = APIRouter(prefix="/api/presence", tags=["Presence"])
admin_router = APIRouter(prefix="/api/admin/presence", tags=["Admin", "Presence"])


@router.post("")
def heartbeat(update: PresenceUpdate, user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("Presence update", user_id=user_id):
        return presence_service.update_presence(db, user_id, update)


@admin_router.get("")
def who_is_online(ctx: AdminContext = Depends(get_admin_context), db: Client = Depends(get_db)):
    with service_call("Presence listing"):
        return presence_service.list_presence(db, ctx.scope)
