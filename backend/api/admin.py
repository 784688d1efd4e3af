"""
Admin panel endpoints.

Every route resolves the caller's access scope once (see `get_admin_context`)
and narrows reads with it; writes re-check the single target user right
before touching the backend.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from supabase import Client

from api.deps import AdminContext, get_admin_context, service_call
from core.access_control import ensure_access
from core.rate_limiting import WRITE_LIMIT, limiter
from database import get_db
from models import Balances, UserSummary
from services import balance_service, hierarchy_service, ledger_service

router = APIRouter(prefix="/api/admin", tags=["Admin"])


class AssignmentRequest(BaseModel):
    manager_id: str
    user_id: str


@router.get("/me")
def who_am_i(ctx: AdminContext = Depends(get_admin_context)) -> Dict[str, Any]:
    return {
        "admin": ctx.admin.model_dump(),
        "role": ctx.admin.role_description,
        "scope": ctx.scope.summary(),
    }


@router.get("/users/search", response_model=List[UserSummary])
def search_users(
    q: str = Query("", description="Email or name fragment, at least 2 characters"),
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("User search"):
        return hierarchy_service.search_users(db, ctx.scope, q)


@router.get("/users/{user_id}/balances", response_model=Balances)
def user_balances(
    user_id: str,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    ensure_access(ctx.scope, user_id, "view balances")
    with service_call("Balance lookup", user_id=user_id):
        return balance_service.get_balances(db, user_id)


@router.post("/users/{user_id}/balance", response_model=balance_service.BalanceResult)
@limiter.limit(WRITE_LIMIT)
def update_user_balance(
    request: Request,  # Required by slowapi
    user_id: str,
    update: balance_service.BalanceUpdate,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    ensure_access(ctx.scope, user_id, "update balances")
    with service_call("Balance update", user_id=user_id, currency=update.currency):
        return balance_service.update_balance(db, user_id, update)


@router.get("/users/{user_id}/taxes")
def user_taxes(
    user_id: str,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    ensure_access(ctx.scope, user_id, "view taxes")
    with service_call("Tax lookup", user_id=user_id):
        return ledger_service.get_tax_summary(db, user_id)


@router.put("/users/{user_id}/taxes")
@limiter.limit(WRITE_LIMIT)
def save_user_taxes(
    request: Request,
    user_id: str,
    summary: ledger_service.TaxSummary,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    ensure_access(ctx.scope, user_id, "edit taxes")
    with service_call("Tax update", user_id=user_id):
        return ledger_service.save_tax_summary(db, user_id, summary)


@router.get("/users/{user_id}/tax-records")
def user_tax_records(
    user_id: str,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    ensure_access(ctx.scope, user_id, "view taxes")
    with service_call("Tax record listing", user_id=user_id):
        return ledger_service.list_tax_records(db, user_id)


@router.post("/users/{user_id}/tax-records", status_code=201)
@limiter.limit(WRITE_LIMIT)
def add_tax_record(
    request: Request,
    user_id: str,
    record: ledger_service.TaxRecord,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    ensure_access(ctx.scope, user_id, "edit taxes")
    with service_call("Tax record", user_id=user_id):
        user = UserSummary.from_row(hierarchy_service.get_user(db, user_id))
        return ledger_service.create_tax_record(db, user_id, user.client_id, record, created_by=ctx.admin.id)


def _tax_record_in_scope(db: Client, ctx: AdminContext, tax_id: str) -> None:
    with service_call("Tax record lookup", tax_id=tax_id):
        record = ledger_service.get_tax_record(db, tax_id)
    ensure_access(ctx.scope, record.get("user_id"), "edit taxes")


@router.put("/tax-records/{tax_id}")
@limiter.limit(WRITE_LIMIT)
def edit_tax_record(
    request: Request,
    tax_id: str,
    record: ledger_service.TaxRecord,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    _tax_record_in_scope(db, ctx, tax_id)
    with service_call("Tax record update", tax_id=tax_id):
        return ledger_service.update_tax_record(db, tax_id, record)


@router.post("/tax-records/{tax_id}/status")
@limiter.limit(WRITE_LIMIT)
def change_tax_status(
    request: Request,
    tax_id: str,
    body: ledger_service.TaxStatusChange,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    _tax_record_in_scope(db, ctx, tax_id)
    with service_call("Tax status update", tax_id=tax_id):
        return ledger_service.set_tax_status(db, tax_id, body.status)


@router.delete("/tax-records/{tax_id}")
def remove_tax_record(
    tax_id: str,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    _tax_record_in_scope(db, ctx, tax_id)
    with service_call("Tax record removal", tax_id=tax_id):
        ledger_service.delete_tax_record(db, tax_id)
    return {"status": "success", "message": "Tax record deleted"}


@router.post("/users/{user_id}/transactions", status_code=201)
@limiter.limit(WRITE_LIMIT)
def add_transaction_record(
    request: Request,
    user_id: str,
    record: ledger_service.TransactionRecord,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    ensure_access(ctx.scope, user_id, "add transactions")
    with service_call("Transaction record", user_id=user_id):
        user = hierarchy_service.get_user(db, user_id)
        return ledger_service.create_transaction_record(db, user_id, user.get("email"), record)


@router.get("/assignments")
def list_assignments(
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("Assignment listing"):
        return hierarchy_service.list_assignments(db, ctx.scope)


@router.post("/assignments", status_code=201)
def create_assignment(
    body: AssignmentRequest,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("Assignment", manager_id=body.manager_id, user_id=body.user_id):
        return hierarchy_service.create_assignment(db, ctx.admin, body.manager_id, body.user_id)


@router.delete("/assignments/{assignment_id}")
def delete_assignment(
    assignment_id: str,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("Assignment removal", assignment_id=assignment_id):
        hierarchy_service.delete_assignment(db, ctx.admin, assignment_id)
    return {"status": "success", "message": "Assignment removed"}
