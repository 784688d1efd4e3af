"""
Legacy financials migration.

Reconciles a spreadsheet export (uuid, email, balance, total_deposits,
taxes_due, taxes_paid, created_at) against the hosted auth directory and
writes balances, one aggregate deposit and tax ledger rows per user.

Re-running over the same file is safe:
- balances are upserted on user_id,
- the deposit is keyed on reference_id `legacy:<CCY>:<user_id>`,
- tax rows are upserted on payment_reference
  `legacy:<CCY>:<due|paid>:<user_id>:<year>`.

Every failure is scoped to its row and recorded in the skip log.
"""

import csv
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

import pandas as pd
import structlog
from supabase import Client

from models import (
    CAD_BALANCES,
    DEPOSITS,
    EURO_BALANCES,
    TAXES,
    USD_BALANCES,
    utc_now_iso,
)

logger = structlog.get_logger("legacy_import")

CURRENCY_TABLES = {
    "EUR": EURO_BALANCES,
    "USD": USD_BALANCES,
    "CAD": CAD_BALANCES,
}

EXPECTED_COLUMNS = ["uuid", "email", "balance", "total_deposits", "taxes_due", "taxes_paid", "created_at"]
SKIP_LOG_HEADER = ["uuid", "email", "reason"]
DEPOSIT_METHOD = "legacy_import"
AUTH_PAGE_SIZE = 1000
MIN_CHECKPOINT_EVERY = 50


def _flag(name: str) -> bool:
    return os.getenv(name, "") == "1"


@dataclass
class ImportSettings:
    csv_path: str = "./legacy_financials.csv"
    skip_log_path: str = "./financials_skipped.csv"
    currency: str = "EUR"
    dry_run: bool = False
    quiet: bool = False
    log_every: int = 1

    @classmethod
    def from_env(cls) -> "ImportSettings":
        try:
            log_every = int(os.getenv("LOG_EVERY") or 1)
        except ValueError:
            log_every = 1
        currency = (os.getenv("IMPORT_CURRENCY") or "EUR").upper()
        if currency not in CURRENCY_TABLES:
            raise ValueError(f"IMPORT_CURRENCY must be one of {sorted(CURRENCY_TABLES)}")
        return cls(
            csv_path=os.getenv("CSV_PATH") or cls.csv_path,
            skip_log_path=os.getenv("SKIP_LOG_PATH") or cls.skip_log_path,
            currency=currency,
            dry_run=_flag("DRY_RUN"),
            quiet=_flag("QUIET"),
            log_every=max(1, log_every),
        )


@dataclass
class ImportStats:
    rows_read: int = 0
    processed: int = 0
    duplicates: int = 0
    skipped: int = 0
    row_errors: int = 0
    balances_upserted: int = 0
    zero_rows_ensured: Dict[str, int] = field(default_factory=dict)
    deposits_inserted: int = 0
    deposits_existing: int = 0
    tax_due_upserts: int = 0
    tax_paid_upserts: int = 0


@dataclass
class AuthDirectory:
    ids: Set[str]
    by_email: Dict[str, str]

    def resolve(self, csv_uuid: str, email: str) -> Optional[str]:
        """Prefer the CSV uuid when auth knows it, else a case-insensitive email match."""
        if csv_uuid and csv_uuid in self.ids:
            return csv_uuid
        if email:
            return self.by_email.get(email)
        return None


def load_auth_directory(client: Client, page_size: int = AUTH_PAGE_SIZE) -> AuthDirectory:
    """Page through every auth user."""
    ids: Set[str] = set()
    by_email: Dict[str, str] = {}
    page = 1
    while True:
        users = client.auth.admin.list_users(page=page, per_page=page_size)
        logger.info("auth_page_loaded", page=page, count=len(users))
        for u in users:
            ids.add(str(u.id))
            if u.email:
                by_email[u.email.strip().lower()] = str(u.id)
        if len(users) < page_size:
            break
        page += 1
    logger.info("auth_directory_loaded", users=len(ids), with_email=len(by_email))
    return AuthDirectory(ids=ids, by_email=by_email)


def read_rows(csv_path: str) -> List[dict]:
    # Everything as text; numbers are parsed per field so one bad cell only zeroes that cell
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    df.columns = [str(c).strip().lower() for c in df.columns]
    for col in EXPECTED_COLUMNS:
        if col not in df.columns:
            df[col] = ""
    return df[EXPECTED_COLUMNS].to_dict(orient="records")


def parse_amount(value) -> float:
    """Strip thousands separators and spaces; anything unparsable is 0."""
    if value is None:
        return 0.0
    text = str(value).replace(",", "").replace(" ", "").strip()
    if not text:
        return 0.0
    try:
        amount = float(text)
    except ValueError:
        return 0.0
    if amount != amount or amount in (float("inf"), float("-inf")):
        return 0.0
    return amount


def parse_timestamp(value) -> Optional[str]:
    if not value or not str(value).strip():
        return None
    ts = pd.to_datetime(str(value).strip(), utc=True, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.isoformat()


def tax_year(created_at: Optional[str]) -> int:
    if created_at:
        ts = pd.to_datetime(created_at, utc=True, errors="coerce")
        if not pd.isna(ts):
            return int(ts.year)
    return datetime.now(timezone.utc).year


def deposit_reference(currency: str, user_id: str) -> str:
    return f"legacy:{currency}:{user_id}"


def tax_reference(currency: str, kind: str, user_id: str, year: int) -> str:
    return f"legacy:{currency}:{kind}:{user_id}:{year}"


class SkipLog:
    """Append-only `uuid,email,reason` CSV, truncated when opened."""

    def __init__(self, path: str):
        self.path = path
        self.count = 0
        self._fh = open(path, "w", newline="", encoding="utf-8")
        self._writer = csv.writer(self._fh)
        self._writer.writerow(SKIP_LOG_HEADER)
        self._fh.flush()

    def record(self, csv_uuid: str, email: str, reason: str) -> None:
        self._writer.writerow([csv_uuid, email, reason])
        self._fh.flush()
        self.count += 1

    def close(self) -> None:
        self._fh.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class RowFailed(Exception):
    """A write that makes the rest of the row pointless."""


class LegacyFinancialsImporter:
    def __init__(self, client: Client, settings: ImportSettings, directory: AuthDirectory, skip_log: SkipLog):
        self.client = client
        self.settings = settings
        self.directory = directory
        self.skip_log = skip_log
        self.stats = ImportStats()
        self._seen: Set[str] = set()
        self.currency = settings.currency
        self.balance_table = CURRENCY_TABLES[self.currency]
        self.zero_tables = [t for c, t in CURRENCY_TABLES.items() if c != self.currency]

    def _verbose(self, row_no: int) -> bool:
        return not self.settings.quiet and row_no % self.settings.log_every == 0

    def _detail(self, row_no: int, event: str, **kw) -> None:
        if self._verbose(row_no):
            logger.info(event, row=row_no, **kw)

    def run(self, rows: List[dict]) -> ImportStats:
        total = len(rows)
        checkpoint_every = max(MIN_CHECKPOINT_EVERY, self.settings.log_every)
        logger.info("import_started", rows=total, currency=self.currency, dry_run=self.settings.dry_run)

        for row_no, row in enumerate(rows, start=1):
            self.stats.rows_read += 1
            self.process_row(row_no, row)
            if row_no % checkpoint_every == 0:
                logger.info(
                    "import_checkpoint", rows=row_no, total=total,
                    skipped=self.stats.skipped, row_errors=self.stats.row_errors,
                )

        logger.info("import_finished", skip_log=self.skip_log.path, **self._summary())
        return self.stats

    def _summary(self) -> dict:
        s = self.stats
        return {
            "rows_read": s.rows_read,
            "processed": s.processed,
            "duplicates": s.duplicates,
            "skipped": s.skipped,
            "row_errors": s.row_errors,
            "balances_upserted": s.balances_upserted,
            "zero_rows_ensured": dict(s.zero_rows_ensured),
            "deposits_inserted": s.deposits_inserted,
            "deposits_existing": s.deposits_existing,
            "tax_due_upserts": s.tax_due_upserts,
            "tax_paid_upserts": s.tax_paid_upserts,
        }

    def _skip(self, row_no: int, csv_uuid: str, email: str, reason: str) -> None:
        self.stats.skipped += 1
        self.skip_log.record(csv_uuid, email, reason)
        logger.warning("row_skipped", row=row_no, uuid=csv_uuid or None, email=email or None, reason=reason)

    def _row_error(self, csv_uuid: str, email: str, reason: str) -> None:
        # The row itself was imported; one of its ledger writes was not
        self.stats.row_errors += 1
        self.skip_log.record(csv_uuid, email, reason)

    def process_row(self, row_no: int, row: dict) -> None:
        csv_uuid = (row.get("uuid") or "").strip()
        email_raw = (row.get("email") or "").strip()
        email = email_raw.lower()
        key = csv_uuid or email

        if not key:
            self._skip(row_no, "", "", "no uuid/email")
            return
        if key in self._seen:
            # First occurrence wins; later ones are dropped without a log line
            self.stats.duplicates += 1
            self._detail(row_no, "duplicate_row", key=key)
            return
        self._seen.add(key)
        self.stats.processed += 1

        user_id = self.directory.resolve(csv_uuid, email)
        if not user_id:
            self._skip(row_no, csv_uuid, email_raw, "no matching auth.users id")
            return

        created_at = parse_timestamp(row.get("created_at"))
        amounts = {
            "balance": parse_amount(row.get("balance")),
            "total_deposits": parse_amount(row.get("total_deposits")),
            "taxes_due": parse_amount(row.get("taxes_due")),
            "taxes_paid": parse_amount(row.get("taxes_paid")),
        }
        year = tax_year(created_at)
        self._detail(row_no, "row_resolved", user_id=user_id, email=email or None,
                     created_at=created_at, tax_year=year, **amounts)

        try:
            self._upsert_balance(row_no, user_id, amounts["balance"], created_at)
            self._ensure_zero_rows(row_no, user_id, created_at)
            if amounts["total_deposits"] > 0:
                self._insert_deposit(row_no, csv_uuid, email_raw, user_id, email, amounts["total_deposits"], created_at)
            for kind, amount in (("due", amounts["taxes_due"]), ("paid", amounts["taxes_paid"])):
                if amount > 0:
                    self._upsert_tax(row_no, csv_uuid, email_raw, user_id, email, kind, amount, created_at, year)
        except RowFailed as e:
            self._skip(row_no, csv_uuid, email_raw, str(e))
        except Exception as e:
            self._skip(row_no, csv_uuid, email_raw, f"unhandled error: {e}")

    def _upsert_balance(self, row_no: int, user_id: str, balance: float, created_at: Optional[str]) -> None:
        if self.settings.dry_run:
            self.stats.balances_upserted += 1
            self._detail(row_no, "balance_upsert_dry_run", table=self.balance_table, balance=balance)
            return
        try:
            self.client.table(self.balance_table).upsert(
                {
                    "user_id": user_id,
                    "balance": balance,
                    "created_at": created_at,
                    "updated_at": utc_now_iso(),
                },
                on_conflict="user_id",
            ).execute()
        except Exception as e:
            raise RowFailed(f"upsert {self.balance_table} failed: {e}")
        self.stats.balances_upserted += 1
        self._detail(row_no, "balance_upserted", table=self.balance_table, balance=balance)

    def _ensure_zero_rows(self, row_no: int, user_id: str, created_at: Optional[str]) -> None:
        for table in self.zero_tables:
            if not self.settings.dry_run:
                try:
                    # ignore_duplicates: an existing row is left untouched
                    self.client.table(table).upsert(
                        {
                            "user_id": user_id,
                            "balance": 0,
                            "created_at": created_at,
                            "updated_at": utc_now_iso(),
                        },
                        on_conflict="user_id",
                        ignore_duplicates=True,
                    ).execute()
                except Exception as e:
                    logger.warning("zero_row_insert_failed", row=row_no, table=table, error=str(e))
                    continue
            self.stats.zero_rows_ensured[table] = self.stats.zero_rows_ensured.get(table, 0) + 1
            self._detail(row_no, "zero_row_ensured", table=table, dry_run=self.settings.dry_run)

    def _insert_deposit(self, row_no: int, csv_uuid: str, email_raw: str, user_id: str, email: str,
                        amount: float, created_at: Optional[str]) -> None:
        ref = deposit_reference(self.currency, user_id)
        if self.settings.dry_run:
            self.stats.deposits_inserted += 1
            self._detail(row_no, "deposit_dry_run", reference=ref, amount=amount)
            return

        try:
            existing = (
                self.client.table(DEPOSITS)
                .select("id")
                .eq("reference_id", ref)
                .limit(1)
                .execute()
                .data
            )
        except Exception as e:
            # Without the lookup an insert could duplicate the deposit
            self._row_error(csv_uuid, email_raw, f"deposit lookup failed: {e}")
            logger.warning("deposit_lookup_failed", row=row_no, reference=ref, error=str(e))
            return

        if existing:
            self.stats.deposits_existing += 1
            self._detail(row_no, "deposit_exists", reference=ref)
            return

        try:
            self.client.table(DEPOSITS).insert({
                "user_id": user_id,
                "client_id": email or f"legacy:{user_id}",
                "currency": self.currency,
                "amount": amount,
                "method": DEPOSIT_METHOD,
                "reference_id": ref,
                "status": "Completed",
                "bank_details": None,
                "crypto_details": None,
                "admin_notes": f"Imported total deposits from legacy sheet ({self.currency}).",
                "created_at": created_at,
                "updated_at": utc_now_iso(),
            }).execute()
        except Exception as e:
            self._row_error(csv_uuid, email_raw, f"deposit insert failed: {e}")
            logger.warning("deposit_insert_failed", row=row_no, reference=ref, error=str(e))
            return

        self.stats.deposits_inserted += 1
        self._detail(row_no, "deposit_inserted", reference=ref, amount=amount)

    def _upsert_tax(self, row_no: int, csv_uuid: str, email_raw: str, user_id: str, email: str,
                    kind: str, amount: float, created_at: Optional[str], year: int) -> None:
        ref = tax_reference(self.currency, kind, user_id, year)
        counter = "tax_due_upserts" if kind == "due" else "tax_paid_upserts"

        if not self.settings.dry_run:
            row = {
                "client_id": email or f"legacy:{user_id}",
                "user_id": user_id,
                "tax_type": "legacy",
                "tax_name": f"Legacy taxes {kind}",
                "tax_rate": 0,
                "tax_amount": round(amount, 2),
                "taxable_income": 0,
                "tax_period": "yearly",
                "due_date": created_at[:10] if created_at else None,
                "status": "pending" if kind == "due" else "paid",
                "description": f"Imported total taxes {kind} from legacy sheet ({self.currency}).",
                "tax_year": year,
                "is_active": True,
                "is_estimated": True,
                "payment_reference": ref,
                "created_at": created_at or utc_now_iso(),
                "updated_at": utc_now_iso(),
            }
            try:
                self.client.table(TAXES).upsert(row, on_conflict="payment_reference").execute()
            except Exception as e:
                self._row_error(csv_uuid, email_raw, f"tax {kind} upsert failed: {e}")
                logger.warning("tax_upsert_failed", row=row_no, reference=ref, error=str(e))
                return

        setattr(self.stats, counter, getattr(self.stats, counter) + 1)
        self._detail(row_no, "tax_upserted", kind=kind, reference=ref, amount=amount, dry_run=self.settings.dry_run)
