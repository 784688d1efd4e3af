"""
User search and assignment management for the admin hierarchy.
"""

from typing import List

import structlog
from supabase import Client

from models import Admin, Assignment, USERS, USER_ASSIGNMENTS, UserSummary
from core.access_control import AccessDenied, AccessScope, verify_managers

logger = structlog.get_logger("hierarchy_service")

MIN_SEARCH_LENGTH = 2
SEARCH_LIMIT = 20


def search_users(db: Client, scope: AccessScope, term: str) -> List[UserSummary]:
    term = term.strip().lower()
    if len(term) < MIN_SEARCH_LENGTH:
        return []

    # PostgREST or-filter syntax; commas and parens would split the expression
    safe = term.replace(",", " ").replace("(", " ").replace(")", " ")
    # LIKE wildcards match literally
    safe = safe.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    query = (
        db.table(USERS)
        .select("id, email, full_name, is_admin, is_manager, is_superiormanager")
        .or_(f"email.ilike.%{safe}%,full_name.ilike.%{safe}%")
    )
    rows = scope.apply(query).order("created_at", desc=True).limit(SEARCH_LIMIT).execute().data or []
    return [UserSummary.from_row(r) for r in rows]


def get_user(db: Client, user_id: str) -> dict:
    res = db.table(USERS).select("id, email, full_name").eq("id", user_id).maybe_single().execute()
    row = res.data if res else None
    if not row:
        raise LookupError(f"User {user_id} not found")
    return row


def list_assignments(db: Client, scope: AccessScope) -> List[dict]:
    query = db.table(USER_ASSIGNMENTS).select("*")
    if not scope.is_all:
        query = scope.apply(query, column="assigned_user_id")
    return query.order("created_at", desc=True).execute().data or []


def _manages(db: Client, manager_id: str, user_id: str) -> bool:
    rows = (
        db.table(USER_ASSIGNMENTS)
        .select("id")
        .eq("manager_id", manager_id)
        .eq("assigned_user_id", user_id)
        .limit(1)
        .execute()
        .data
    )
    return bool(rows)


def _superior_of(db: Client, manager_id: str) -> List[str]:
    """Superior managers that already hold an edge to `manager_id`."""
    rows = (
        db.table(USER_ASSIGNMENTS)
        .select("manager_id")
        .eq("assigned_user_id", manager_id)
        .execute()
        .data
        or []
    )
    holders = [r["manager_id"] for r in rows]
    if not holders:
        return []
    superiors = (
        db.table(USERS)
        .select("id")
        .in_("id", holders)
        .eq("is_superiormanager", True)
        .execute()
        .data
        or []
    )
    return [r["id"] for r in superiors]


def can_assign(db: Client, admin: Admin, manager_id: str) -> bool:
    """
    Full admins assign to anyone, superior managers only to managers they
    control (re-verified as managers), managers only to themselves.
    """
    if admin.is_full_admin:
        return True
    if admin.is_superior_manager:
        return _manages(db, admin.id, manager_id) and bool(verify_managers(db, [manager_id]))
    if admin.is_manager:
        return manager_id == admin.id
    return False


def _target_flags(db: Client, user_id: str) -> dict:
    res = (
        db.table(USERS)
        .select("id, is_admin, is_manager, is_superiormanager")
        .eq("id", user_id)
        .maybe_single()
        .execute()
    )
    row = res.data if res else None
    if not row:
        raise LookupError(f"User {user_id} not found")
    return row


def create_assignment(db: Client, admin: Admin, manager_id: str, user_id: str) -> dict:
    if manager_id == user_id:
        raise ValueError("A user cannot be assigned to themselves")

    manager = Admin.from_row(_target_flags(db, manager_id))
    target = Admin.from_row(_target_flags(db, user_id))

    if manager.is_superiormanager:
        # Manager -> superior manager edges are reserved for full admins
        if not admin.is_full_admin:
            raise AccessDenied("assign managers to superior managers", user_id)
        if not (target.is_manager and not target.is_superiormanager):
            raise ValueError("Only managers can be assigned to a superior manager")
    else:
        if not manager.is_manager:
            raise ValueError("Users can only be assigned to a manager")
        if target.is_admin or target.is_manager or target.is_superiormanager:
            raise ValueError("Only end users can be assigned to a manager")
        if not can_assign(db, admin, manager_id):
            raise AccessDenied("make this assignment", user_id)

    if _manages(db, manager_id, user_id):
        raise ValueError("This user is already assigned to that manager")
    if manager.is_superiormanager and _superior_of(db, user_id):
        raise ValueError("This manager is already assigned to a superior manager")

    edge = Assignment(manager_id=manager_id, assigned_user_id=user_id, assigned_by=admin.id)
    row = db.table(USER_ASSIGNMENTS).insert(edge.model_dump(exclude_none=True)).execute().data[0]
    logger.info("assignment_created", manager_id=manager_id, assigned_user_id=user_id, assigned_by=admin.id)
    return row


def delete_assignment(db: Client, admin: Admin, assignment_id: str) -> None:
    res = db.table(USER_ASSIGNMENTS).select("*").eq("id", assignment_id).maybe_single().execute()
    row = res.data if res else None
    if not row:
        raise LookupError(f"Assignment {assignment_id} not found")

    if not admin.is_full_admin:
        allowed = row["manager_id"] == admin.id or (
            admin.is_superior_manager and can_assign(db, admin, row["manager_id"])
        )
        if not allowed:
            raise AccessDenied("remove this assignment", row["assigned_user_id"])

    db.table(USER_ASSIGNMENTS).delete().eq("id", assignment_id).execute()
    logger.info("assignment_removed", assignment_id=assignment_id, removed_by=admin.id)
