from datetime import date, datetime
from typing import List, Optional

import structlog
from pydantic import BaseModel, Field, model_validator
from supabase import Client

from models import DEPOSITS, TAXES, TRANSACTION_HISTORY, TRANSFERS, utc_now, utc_now_iso

logger = structlog.get_logger("ledger_service")

TAX_TYPES = ("income", "property", "sales", "capital_gains", "corporate", "payroll", "excise", "other", "legacy")
TAX_PERIODS = ("yearly", "quarterly", "monthly", "weekly", "one-time")
TAX_STATUSES = ("pending", "paid", "overdue", "processing", "cancelled")


class TaxSummary(BaseModel):
    taxes: float = Field(0, ge=0)
    on_hold: float = Field(0, ge=0)
    paid: float = Field(0, ge=0)


class TransactionRecord(BaseModel):
    thType: str = "External Deposit"
    thDetails: str = "Funds extracted by Estonian authorities"
    thPoi: str = "Estonia Financial Intelligence Unit (FIU)"
    thStatus: str = "Successful"
    thEmail: Optional[str] = None
    created_at: Optional[datetime] = None


class TaxRecord(BaseModel):
    tax_type: str
    tax_name: str
    tax_rate: float = 0
    tax_amount: float = 0
    taxable_income: float = 0
    tax_period: str = "yearly"
    due_date: Optional[date] = None
    status: str = "pending"
    description: Optional[str] = None
    tax_year: int = Field(default_factory=lambda: utc_now().year)
    is_estimated: bool = False

    @model_validator(mode="after")
    def check_choices(self):
        if self.tax_type not in TAX_TYPES:
            raise ValueError(f"Invalid tax type: {self.tax_type}")
        if self.tax_period not in TAX_PERIODS:
            raise ValueError(f"Invalid tax period: {self.tax_period}")
        if self.status not in TAX_STATUSES:
            raise ValueError(f"Invalid tax status: {self.status}")
        return self


class TaxStatusChange(BaseModel):
    status: str


def get_tax_summary(db: Client, user_id: str) -> dict:
    """Latest tax row for a user, or an all-zero summary when none exists."""
    res = (
        db.table(TAXES)
        .select("*")
        .eq("user_id", user_id)
        .order("updated_at", desc=True)
        .limit(1)
        .maybe_single()
        .execute()
    )
    row = res.data if res else None
    if not row:
        return {"user_id": user_id, "taxes": 0, "on_hold": 0, "paid": 0}
    return row


def save_tax_summary(db: Client, user_id: str, summary: TaxSummary) -> dict:
    row = {"user_id": user_id, **summary.model_dump(), "updated_at": utc_now_iso()}
    saved = db.table(TAXES).upsert(row, on_conflict="user_id").execute().data or [row]
    logger.info("tax_summary_saved", user_id=user_id, **summary.model_dump())
    return saved[0]


def _tax_columns(record: TaxRecord) -> dict:
    if not record.tax_name.strip():
        raise ValueError("Please fill in all required fields")
    row = record.model_dump()
    row["tax_name"] = record.tax_name.strip()
    row["due_date"] = record.due_date.isoformat() if record.due_date else None
    row["description"] = record.description or None
    return row


def list_tax_records(db: Client, user_id: str) -> List[dict]:
    rows = (
        db.table(TAXES)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
        .data
        or []
    )
    # Summary rows (taxes/on_hold/paid) carry no tax_name
    return [r for r in rows if r.get("tax_name")]


def get_tax_record(db: Client, tax_id: str) -> dict:
    res = db.table(TAXES).select("*").eq("id", tax_id).maybe_single().execute()
    row = res.data if res else None
    if not row:
        raise LookupError(f"Tax record {tax_id} not found")
    return row


def create_tax_record(db: Client, user_id: str, client_id: str, record: TaxRecord, created_by: str) -> dict:
    now = utc_now_iso()
    row = {
        "user_id": user_id,
        "client_id": client_id,
        **_tax_columns(record),
        "is_active": True,
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
    }
    inserted = db.table(TAXES).insert(row).execute().data or [row]
    logger.info("tax_record_created", user_id=user_id, tax_type=record.tax_type, amount=record.tax_amount)
    return inserted[0]


def update_tax_record(db: Client, tax_id: str, record: TaxRecord) -> dict:
    changes = {**_tax_columns(record), "updated_at": utc_now_iso()}
    updated = db.table(TAXES).update(changes).eq("id", tax_id).execute().data
    if not updated:
        raise LookupError(f"Tax record {tax_id} not found")
    logger.info("tax_record_updated", tax_id=tax_id)
    return updated[0]


def set_tax_status(db: Client, tax_id: str, status: str) -> dict:
    if status not in TAX_STATUSES:
        raise ValueError(f"Invalid tax status: {status}")
    updated = (
        db.table(TAXES)
        .update({"status": status, "updated_at": utc_now_iso()})
        .eq("id", tax_id)
        .execute()
        .data
    )
    if not updated:
        raise LookupError(f"Tax record {tax_id} not found")
    logger.info("tax_status_changed", tax_id=tax_id, status=status)
    return updated[0]


def delete_tax_record(db: Client, tax_id: str) -> None:
    deleted = db.table(TAXES).delete().eq("id", tax_id).execute().data
    if not deleted:
        raise LookupError(f"Tax record {tax_id} not found")
    logger.info("tax_record_deleted", tax_id=tax_id)


def create_transaction_record(db: Client, user_id: str, user_email: Optional[str], record: TransactionRecord) -> dict:
    if not record.thType.strip() or not record.thDetails.strip():
        raise ValueError("Please fill in all required fields")

    row = {
        "uuid": user_id,
        "thType": record.thType,
        "thDetails": record.thDetails,
        "thPoi": record.thPoi,
        "thStatus": record.thStatus,
        "thEmail": record.thEmail or user_email,
        "created_at": record.created_at.isoformat() if record.created_at else utc_now_iso(),
    }
    inserted = db.table(TRANSACTION_HISTORY).insert(row).execute().data or [row]
    logger.info("transaction_record_created", user_id=user_id, th_type=record.thType)
    return inserted[0]


def list_transfers(db: Client, user_id: str, limit: int = 100) -> List[dict]:
    return (
        db.table(TRANSFERS)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
        .data
        or []
    )


def list_transaction_history(db: Client, user_id: str) -> List[dict]:
    return (
        db.table(TRANSACTION_HISTORY)
        .select("*")
        .eq("uuid", user_id)
        .order("created_at", desc=True)
        .execute()
        .data
        or []
    )


def list_deposits(db: Client, user_id: str) -> List[dict]:
    return (
        db.table(DEPOSITS)
        .select("*")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
        .data
        or []
    )
