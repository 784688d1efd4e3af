"""
Hierarchical access control for the admin panel.

Three role tiers live on `users`:
- Full admin (is_admin only): every user row.
- Superior manager (is_admin + is_superiormanager): the managers assigned to
  them in `user_assignments`, and those managers' assigned end users.
- Manager (is_manager): their directly assigned end users.

Every id surfaced by an assignment edge is re-checked against the live role
flags before it is trusted, so an edge that points at a since-promoted account
grants nothing. Resolution fails closed: any backend error narrows the scope to
the caller alone.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import structlog
from supabase import Client

from models import Admin, USERS, USER_ASSIGNMENTS

logger = structlog.get_logger("access_control")

# Matches no row; used to force an empty result set
NO_MATCH_ID = "00000000-0000-0000-0000-000000000000"


class ScopeKind(str, Enum):
    ALL = "all"
    IDS = "ids"
    NONE = "none"


class AccessDenied(Exception):
    """Raised when a mutation targets a user outside the caller's scope."""

    def __init__(self, action: str, user_id: Optional[str] = None):
        self.action = action
        self.user_id = user_id
        super().__init__(f"You don't have permission to {action} for this user")


@dataclass(frozen=True)
class AccessScope:
    """Resolved set of user ids an admin may act upon."""
    kind: ScopeKind
    ids: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def all(cls) -> "AccessScope":
        return cls(ScopeKind.ALL)

    @classmethod
    def none(cls) -> "AccessScope":
        return cls(ScopeKind.NONE)

    @classmethod
    def of(cls, ids: Iterable[str]) -> "AccessScope":
        return cls(ScopeKind.IDS, tuple(_dedupe(ids)))

    @property
    def is_all(self) -> bool:
        return self.kind == ScopeKind.ALL

    def allows(self, user_id: str) -> bool:
        if self.kind == ScopeKind.ALL:
            return True
        if self.kind == ScopeKind.NONE:
            return False
        return user_id in self.ids

    def apply(self, query, column: str = "id"):
        """Narrow a PostgREST filter builder to the rows this scope may see."""
        if self.kind == ScopeKind.ALL:
            return query
        if self.kind == ScopeKind.IDS and self.ids:
            return query.in_(column, list(self.ids))
        return query.eq(column, NO_MATCH_ID)

    def summary(self) -> dict:
        return {"kind": self.kind.value, "user_ids": list(self.ids)}


def ensure_access(scope: AccessScope, user_id: str, action: str) -> None:
    """Re-check a single target right before a write."""
    if not scope.allows(user_id):
        logger.warning("access_denied", action=action, target_user_id=user_id, scope=scope.kind.value)
        raise AccessDenied(action, user_id)


def _dedupe(ids: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for i in ids:
        if i and i not in seen:
            seen.add(i)
            out.append(i)
    return out


def load_admin(db: Client, user_id: str) -> Optional[Admin]:
    """Fetch the caller's role flags; None when the row is missing or the query fails."""
    try:
        res = (
            db.table(USERS)
            .select("id, is_admin, is_manager, is_superiormanager")
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error("admin_load_failed", user_id=user_id, error=str(e))
        return None

    row = res.data if res else None
    if not row:
        logger.info("admin_not_found", user_id=user_id)
        return None
    return Admin.from_row(row)


def assigned_user_ids(db: Client, manager_ids: List[str]) -> List[str]:
    """Targets of every assignment edge leaving `manager_ids`."""
    if not manager_ids:
        return []
    query = db.table(USER_ASSIGNMENTS).select("assigned_user_id")
    if len(manager_ids) == 1:
        query = query.eq("manager_id", manager_ids[0])
    else:
        query = query.in_("manager_id", manager_ids)
    rows = query.execute().data or []
    return _dedupe(r["assigned_user_id"] for r in rows)


def verify_role(
    db: Client,
    ids: List[str],
    is_admin: bool,
    is_manager: bool,
    is_superiormanager: bool,
) -> List[str]:
    """
    Keep only the ids whose live role flags match exactly.
    Order of `ids` is preserved.
    """
    if not ids:
        return []
    rows = (
        db.table(USERS)
        .select("id")
        .in_("id", ids)
        .eq("is_admin", is_admin)
        .eq("is_manager", is_manager)
        .eq("is_superiormanager", is_superiormanager)
        .execute()
        .data
        or []
    )
    verified = {r["id"] for r in rows}
    return [i for i in ids if i in verified]


def verify_managers(db: Client, ids: List[str]) -> List[str]:
    # is_admin is not constrained for managers
    if not ids:
        return []
    rows = (
        db.table(USERS)
        .select("id")
        .in_("id", ids)
        .eq("is_manager", True)
        .eq("is_superiormanager", False)
        .execute()
        .data
        or []
    )
    verified = {r["id"] for r in rows}
    return [i for i in ids if i in verified]


def verify_end_users(db: Client, ids: List[str]) -> List[str]:
    return verify_role(db, ids, is_admin=False, is_manager=False, is_superiormanager=False)


def _resolve_superior_manager(db: Client, admin: Admin) -> AccessScope:
    try:
        manager_ids = verify_managers(db, assigned_user_ids(db, [admin.id]))
        if not manager_ids:
            logger.info("superior_manager_without_managers", admin_id=admin.id)
            return AccessScope.of([admin.id])

        user_ids = verify_end_users(db, assigned_user_ids(db, manager_ids))
    except Exception as e:
        logger.warning("access_resolution_degraded", admin_id=admin.id, role="superior_manager", error=str(e))
        return AccessScope.of([admin.id])

    return AccessScope.of([admin.id, *manager_ids, *user_ids])


def _resolve_manager(db: Client, admin: Admin) -> AccessScope:
    try:
        user_ids = verify_end_users(db, assigned_user_ids(db, [admin.id]))
    except Exception as e:
        logger.warning("access_resolution_degraded", admin_id=admin.id, role="manager", error=str(e))
        return AccessScope.of([admin.id])

    return AccessScope.of([admin.id, *user_ids])


def resolve_accessible_ids(db: Client, admin: Optional[Admin]) -> AccessScope:
    """
    Compute the caller's scope.

    Returns ALL for a full admin, an explicit id list for superior managers and
    managers (always containing the caller), and NONE for anyone else.
    """
    if admin is None:
        return AccessScope.none()

    if admin.is_full_admin:
        scope = AccessScope.all()
    elif admin.is_superior_manager:
        scope = _resolve_superior_manager(db, admin)
    elif admin.is_manager:
        scope = _resolve_manager(db, admin)
    else:
        scope = AccessScope.none()

    logger.info("access_resolved", admin_id=admin.id, scope=scope.kind.value, count=len(scope.ids))
    return scope
