from datetime import datetime
from typing import List, Optional

import structlog
from pydantic import BaseModel
from supabase import Client

from models import USER_PRESENCE, utc_now_iso
from core.access_control import AccessScope

logger = structlog.get_logger("presence_service")


class PresenceUpdate(BaseModel):
    is_online: bool
    last_seen: Optional[datetime] = None


def update_presence(db: Client, user_id: str, update: PresenceUpdate) -> dict:
    row = {
        "user_id": user_id,
        "is_online": update.is_online,
        "last_seen": update.last_seen.isoformat() if update.last_seen else utc_now_iso(),
        "updated_at": utc_now_iso(),
    }
    saved = db.table(USER_PRESENCE).upsert(row, on_conflict="user_id").execute().data or [row]
    logger.debug("presence_updated", user_id=user_id, is_online=update.is_online)
    return saved[0]


def list_presence(db: Client, scope: AccessScope) -> List[dict]:
    query = scope.apply(db.table(USER_PRESENCE).select("*"), column="user_id")
    return query.order("last_seen", desc=True).execute().data or []
