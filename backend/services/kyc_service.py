"""
KYC document submission and review.

Documents are stored in the `kyc-documents` bucket under the owner's id; the
`kyc_verifications` row keeps the storage paths and the review state, and
`users.kyc_status` mirrors the latest decision.
"""

import secrets
import time
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel
from supabase import Client

from models import KYC_BUCKET, KYC_VERIFICATIONS, USERS, utc_now_iso
from core.access_control import AccessScope, ensure_access

logger = structlog.get_logger("kyc_service")

# Document kind -> (storage folder, column on kyc_verifications)
DOCUMENT_KINDS = {
    "id_document": ("id-documents", "id_document_path"),
    "driver_license": ("driver-license", "driver_license_path"),
    "utility_bill": ("utility-bills", "utility_bill_path"),
    "selfie": ("selfies", "selfie_path"),
}
REQUIRED_DOCUMENTS = ("id_document", "utility_bill", "selfie")

REVIEW_STATUSES = ("approved", "rejected", "pending")
SIGNED_URL_TTL_SECONDS = 3600


class KYCValidationError(ValueError):
    pass


class KYCForm(BaseModel):
    document_type: str
    document_number: str
    full_name: str
    date_of_birth: str
    address: str
    city: str
    country: str
    postal_code: str


class UploadedDocument(BaseModel):
    filename: str
    content: bytes
    content_type: Optional[str] = None


class KYCReview(BaseModel):
    status: str
    rejection_reason: Optional[str] = None


def storage_path(user_id: str, kind: str, filename: str) -> str:
    folder, _ = DOCUMENT_KINDS[kind]
    ext = filename.rsplit(".", 1)[-1] if "." in filename else "bin"
    return f"{user_id}/{folder}/{int(time.time() * 1000)}-{secrets.token_hex(6)}.{ext}"


def _remove_uploads(bucket, user_id: str, paths: List[str]) -> None:
    if not paths:
        return
    try:
        bucket.remove(paths)
        logger.info("kyc_uploads_removed", user_id=user_id, paths=paths)
    except Exception as e:
        logger.error("kyc_upload_cleanup_failed", user_id=user_id, paths=paths, error=str(e))


def submit_kyc(db: Client, user_id: str, form: KYCForm, documents: Dict[str, UploadedDocument]) -> dict:
    """Upload the documents, record a pending verification and flag the user as pending."""
    missing = [k for k in REQUIRED_DOCUMENTS if k not in documents]
    if missing:
        raise KYCValidationError(f"Please upload all required documents (missing: {', '.join(missing)})")

    bucket = db.storage.from_(KYC_BUCKET)
    paths = {}
    try:
        for kind, doc in documents.items():
            if kind not in DOCUMENT_KINDS:
                continue
            path = storage_path(user_id, kind, doc.filename)
            bucket.upload(
                path,
                doc.content,
                {"content-type": doc.content_type or "application/octet-stream", "cache-control": "3600", "upsert": "false"},
            )
            paths[DOCUMENT_KINDS[kind][1]] = path
            logger.info("kyc_document_uploaded", user_id=user_id, kind=kind, path=path)

        record = {
            "user_id": user_id,
            **form.model_dump(),
            **paths,
            "status": "pending",
            "submitted_at": utc_now_iso(),
        }
        inserted = db.table(KYC_VERIFICATIONS).insert(record).execute().data or [record]
    except Exception:
        _remove_uploads(bucket, user_id, list(paths.values()))
        raise

    # The verification itself is stored; a stale users.kyc_status is tolerated
    try:
        db.table(USERS).update({"kyc_status": "pending"}).eq("id", user_id).execute()
    except Exception as e:
        logger.warning("kyc_user_status_update_failed", user_id=user_id, error=str(e))

    logger.info("kyc_submitted", user_id=user_id, documents=sorted(paths))
    return inserted[0]


def get_kyc_status(db: Client, user_id: str) -> str:
    res = db.table(USERS).select("kyc_status").eq("id", user_id).maybe_single().execute()
    row = res.data if res else None
    return (row or {}).get("kyc_status") or "not_started"


def list_kyc_records(db: Client, scope: AccessScope, status: Optional[str] = None) -> List[dict]:
    query = db.table(KYC_VERIFICATIONS).select("*")
    if status:
        query = query.eq("status", status)
    query = scope.apply(query, column="user_id")
    records = query.order("submitted_at", desc=True).execute().data or []
    if not records:
        return []

    user_ids = list({r["user_id"] for r in records})
    try:
        users = db.table(USERS).select("id, email").in_("id", user_ids).execute().data or []
    except Exception as e:
        logger.error("kyc_email_lookup_failed", error=str(e))
        users = []
    emails = {u["id"]: u.get("email") for u in users}

    return [{**r, "email": emails.get(r["user_id"]) or "Email not found"} for r in records]


def _get_record(db: Client, kyc_id: str) -> dict:
    res = db.table(KYC_VERIFICATIONS).select("*").eq("id", kyc_id).maybe_single().execute()
    row = res.data if res else None
    if not row:
        raise LookupError(f"KYC record {kyc_id} not found")
    return row


def review_kyc(db: Client, scope: AccessScope, kyc_id: str, review: KYCReview) -> dict:
    if review.status not in REVIEW_STATUSES:
        raise KYCValidationError(f"Invalid KYC status: {review.status}")
    if review.status == "rejected" and not (review.rejection_reason or "").strip():
        raise KYCValidationError("A rejection reason is required")

    record = _get_record(db, kyc_id)
    user_id = record["user_id"]
    ensure_access(scope, user_id, "review KYC")

    update = {"status": review.status, "reviewed_at": utc_now_iso()}
    if review.rejection_reason:
        update["rejection_reason"] = review.rejection_reason.strip()

    db.table(KYC_VERIFICATIONS).update(update).eq("id", kyc_id).execute()
    db.table(USERS).update({"kyc_status": review.status}).eq("id", user_id).execute()

    logger.info("kyc_reviewed", kyc_id=kyc_id, user_id=user_id, status=review.status)
    return {**record, **update}


def document_url(db: Client, scope: AccessScope, kyc_id: str, kind: str) -> str:
    if kind not in DOCUMENT_KINDS:
        raise KYCValidationError(f"Unknown document kind: {kind}")
    record = _get_record(db, kyc_id)
    ensure_access(scope, record["user_id"], "view KYC documents")

    path = record.get(DOCUMENT_KINDS[kind][1])
    if not path:
        raise LookupError(f"No {kind} uploaded for KYC record {kyc_id}")

    signed = db.storage.from_(KYC_BUCKET).create_signed_url(path, SIGNED_URL_TTL_SECONDS)
    # Key casing differs between storage client releases
    return signed.get("signedURL") or signed.get("signedUrl")
