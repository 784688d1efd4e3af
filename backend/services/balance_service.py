from typing import Optional

import structlog
from pydantic import BaseModel, model_validator
from supabase import Client

from models import (
    Balances,
    CRYPTO_BALANCES,
    CRYPTO_COLUMNS,
    FIAT_TABLES,
    TRANSFERS,
    utc_now_iso,
)

logger = structlog.get_logger("balance_service")

OPERATIONS = ("add", "subtract", "set")


class BalanceUpdate(BaseModel):
    currency: str
    amount: float
    operation: str = "add"

    @model_validator(mode="after")
    def check_fields(self):
        if self.currency not in FIAT_TABLES and self.currency not in CRYPTO_COLUMNS:
            raise ValueError(f"Invalid currency selected: {self.currency}")
        if self.operation not in OPERATIONS:
            raise ValueError(f"Invalid operation: {self.operation}")
        if self.operation == "set":
            if self.amount < 0:
                raise ValueError("Amount must not be negative")
        elif self.amount <= 0:
            raise ValueError("Amount must be greater than zero")
        return self


class BalanceResult(BaseModel):
    currency: str
    operation: str
    new_balance: Optional[float] = None
    activity_logged: bool
    message: str


def _single_balance(db: Client, table: str, user_id: str, columns: str = "balance") -> Optional[dict]:
    res = db.table(table).select(columns).eq("user_id", user_id).maybe_single().execute()
    return res.data if res else None


def get_balances(db: Client, user_id: str) -> Balances:
    """All balances for one user; missing rows read as zero."""
    usd = _single_balance(db, FIAT_TABLES["usd"], user_id) or {}
    euro = _single_balance(db, FIAT_TABLES["euro"], user_id) or {}
    cad = _single_balance(db, FIAT_TABLES["cad"], user_id) or {}
    crypto = _single_balance(db, CRYPTO_BALANCES, user_id, "btc_balance, eth_balance, usdt_balance") or {}

    return Balances(
        usd=usd.get("balance") or 0,
        euro=euro.get("balance") or 0,
        cad=cad.get("balance") or 0,
        btc=crypto.get("btc_balance") or 0,
        eth=crypto.get("eth_balance") or 0,
        usdt=crypto.get("usdt_balance") or 0,
    )


def record_transfer(db: Client, transfer: dict) -> bool:
    """Write an activity row to `transfers`. Failure is reported, not raised."""
    try:
        db.table(TRANSFERS).insert(transfer).execute()
        return True
    except Exception as e:
        logger.error("transfer_record_failed", user_id=transfer.get("user_id"), error=str(e))
        return False


def _transfer(user_id: str, currency: str, from_amount: float, to_amount: float,
              transfer_type: str, description: str) -> dict:
    code = currency.lower()
    return {
        "user_id": user_id,
        "client_id": user_id,
        "from_currency": code,
        "to_currency": code,
        "from_amount": from_amount,
        "to_amount": to_amount,
        "exchange_rate": 1.0,
        "status": "completed",
        "transfer_type": transfer_type,
        "description": description,
        "created_at": utc_now_iso(),
    }


def _update_crypto(db: Client, user_id: str, update: BalanceUpdate) -> BalanceResult:
    code = update.currency
    amount = update.amount
    db.rpc(
        "update_crypto_balance",
        {
            "p_user_id": user_id,
            "p_crypto_type": code,
            "p_amount": amount,
            "p_operation": update.operation,
        },
    ).execute()

    if update.operation == "add":
        transfer_type = "admin_crypto_deposit"
        description = f"Crypto Credit - {amount:.8f} {code} has been deposited to your account"
    elif update.operation == "subtract":
        transfer_type = "admin_crypto_debit"
        description = f"Crypto Debit - {amount:.8f} {code} has been debited from your account"
    else:
        transfer_type = "admin_crypto_adjustment"
        description = f"Crypto Balance Adjustment - Account balance set to {amount:.8f} {code}"

    logged = record_transfer(db, _transfer(user_id, code, amount, amount, transfer_type, description))
    return BalanceResult(
        currency=code,
        operation=update.operation,
        activity_logged=logged,
        message=f"{code} balance updated" if logged else f"{code} balance updated but activity logging failed",
    )


def _update_fiat(db: Client, user_id: str, update: BalanceUpdate) -> BalanceResult:
    table = FIAT_TABLES[update.currency]
    code = update.currency.upper()
    amount = update.amount

    if update.operation == "set":
        if _single_balance(db, table, user_id) is None:
            db.table(table).insert({"user_id": user_id, "balance": amount}).execute()
        else:
            db.table(table).update({"balance": amount, "updated_at": utc_now_iso()}).eq("user_id", user_id).execute()
        transfer = _transfer(
            user_id, update.currency, amount, amount, "admin_balance_adjustment",
            f"Account Balance Adjustment - Account balance set to {amount:,.2f} {code}",
        )
        new_balance = amount
    else:
        current = _single_balance(db, table, user_id)
        if current is None:
            # No row yet: a debit opens the account at zero
            new_balance = amount if update.operation == "add" else 0
            db.table(table).insert({"user_id": user_id, "balance": new_balance}).execute()
            if update.operation == "add":
                description = f"Account Credit - {new_balance:,.2f} {code} has been deposited to your account"
            else:
                description = f"Account Setup - New {code} account created"
            transfer = _transfer(
                user_id, update.currency, new_balance, new_balance,
                "admin_deposit" if update.operation == "add" else "admin_debit", description,
            )
        else:
            current_balance = current.get("balance") or 0
            if update.operation == "add":
                new_balance = current_balance + amount
            else:
                new_balance = max(0, current_balance - amount)
            db.table(table).update({"balance": new_balance, "updated_at": utc_now_iso()}).eq("user_id", user_id).execute()
            if update.operation == "add":
                transfer = _transfer(
                    user_id, update.currency, amount, new_balance, "admin_deposit",
                    f"Account Credit - {amount:,.2f} {code} has been deposited to your account",
                )
            else:
                transfer = _transfer(
                    user_id, update.currency, current_balance, amount, "admin_debit",
                    f"Account Debit - {amount:,.2f} {code} has been debited from your account",
                )

    logged = record_transfer(db, transfer)
    message = f"{code} balance is now {new_balance}"
    if not logged:
        message += " but activity logging failed"
    return BalanceResult(
        currency=update.currency,
        operation=update.operation,
        new_balance=new_balance,
        activity_logged=logged,
        message=message,
    )


def update_balance(db: Client, user_id: str, update: BalanceUpdate) -> BalanceResult:
    """Apply an admin balance change and log it to the user's activity."""
    if update.currency in CRYPTO_COLUMNS:
        result = _update_crypto(db, user_id, update)
    else:
        result = _update_fiat(db, user_id, update)

    logger.info(
        "balance_updated",
        user_id=user_id,
        currency=update.currency,
        operation=update.operation,
        amount=update.amount,
        activity_logged=result.activity_logged,
    )
    return result
