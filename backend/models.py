"""
Domain records and table names for the hosted Supabase schema.

The tables themselves are owned by the hosted backend; these models describe
the rows this service reads and writes through PostgREST.
"""
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel

# Tables
USERS = "users"
USER_ASSIGNMENTS = "user_assignments"
KYC_VERIFICATIONS = "kyc_verifications"
TAXES = "taxes"
USD_BALANCES = "usd_balances"
EURO_BALANCES = "euro_balances"
CAD_BALANCES = "cad_balances"
CRYPTO_BALANCES = "newcrypto_balances"
TRANSFERS = "transfers"
TRANSACTION_HISTORY = "TransactionHistory"
DEPOSITS = "deposits"
USER_MESSAGES = "user_messages"
USER_PRESENCE = "user_presence"
CHAT_SESSIONS = "chat_sessions"
CHAT_MESSAGES = "chat_messages"

# Storage
KYC_BUCKET = "kyc-documents"

# Fiat currency code -> balance table
FIAT_TABLES = {
    "usd": USD_BALANCES,
    "euro": EURO_BALANCES,
    "cad": CAD_BALANCES,
}

# Crypto code -> column on newcrypto_balances
CRYPTO_COLUMNS = {
    "BTC": "btc_balance",
    "ETH": "eth_balance",
    "USDT": "usdt_balance",
}


# Helper for consistent UTC timestamps
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


class Admin(BaseModel):
    """Role flags of the calling user, as stored on `users`."""
    id: str
    is_admin: bool = False
    is_manager: bool = False
    is_superiormanager: bool = False

    @classmethod
    def from_row(cls, row: dict) -> "Admin":
        # Null flags in the table read as False
        return cls(
            id=row["id"],
            is_admin=bool(row.get("is_admin")),
            is_manager=bool(row.get("is_manager")),
            is_superiormanager=bool(row.get("is_superiormanager")),
        )

    @property
    def is_full_admin(self) -> bool:
        return self.is_admin and not self.is_superiormanager and not self.is_manager

    @property
    def is_superior_manager(self) -> bool:
        return self.is_admin and self.is_superiormanager

    @property
    def role_description(self) -> str:
        if self.is_full_admin:
            return "Full Administrator - Can manage all users"
        if self.is_superior_manager:
            return "Superior Manager - Can manage assigned managers and their users"
        if self.is_manager:
            return "Manager - Can manage assigned users only"
        return "No admin permissions"


class Assignment(BaseModel):
    """Directed edge: `manager_id` may act on `assigned_user_id`."""
    id: Optional[str] = None
    manager_id: str
    assigned_user_id: str
    assigned_by: Optional[str] = None
    created_at: Optional[datetime] = None


class UserSummary(BaseModel):
    id: str
    client_id: str
    full_name: str
    email: Optional[str] = None
    is_admin: bool = False
    is_manager: bool = False
    is_superiormanager: bool = False

    @classmethod
    def from_row(cls, row: dict) -> "UserSummary":
        email = row.get("email")
        display_name = row.get("full_name") or (email.split("@")[0] if email else None) or "Unknown"
        return cls(
            id=row["id"],
            client_id=f"DCB{str(row['id'])[:6]}",
            full_name=display_name,
            email=email,
            is_admin=bool(row.get("is_admin")),
            is_manager=bool(row.get("is_manager")),
            is_superiormanager=bool(row.get("is_superiormanager")),
        )


class Balances(BaseModel):
    usd: float = 0
    euro: float = 0
    cad: float = 0
    btc: float = 0
    eth: float = 0
    usdt: float = 0
