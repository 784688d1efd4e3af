from typing import Dict, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from supabase import Client

from api.deps import AdminContext, current_user_id, get_admin_context, service_call
from core.rate_limiting import UPLOAD_LIMIT, limiter
from database import get_db
from services import kyc_service
from services.kyc_service import KYCForm, KYCReview, UploadedDocument

router = APIRouter(prefix="/api/kyc", tags=["KYC"])
admin_router = APIRouter(prefix="/api/admin/kyc", tags=["Admin", "KYC"])


async def _read(upload: Optional[UploadFile]) -> Optional[UploadedDocument]:
    if upload is None or not upload.filename:
        return None
    return UploadedDocument(
        filename=upload.filename,
        content=await upload.read(),
        content_type=upload.content_type,
    )


@router.post("", status_code=201)
@limiter.limit(UPLOAD_LIMIT)
async def submit_kyc(
    request: Request,  # Required by slowapi
    document_type: str = Form(...),
    document_number: str = Form(...),
    full_name: str = Form(...),
    date_of_birth: str = Form(...),
    address: str = Form(...),
    city: str = Form(...),
    country: str = Form(...),
    postal_code: str = Form(...),
    id_document: Optional[UploadFile] = File(None),
    utility_bill: Optional[UploadFile] = File(None),
    selfie: Optional[UploadFile] = File(None),
    driver_license: Optional[UploadFile] = File(None),
    user_id: str = Depends(current_user_id),
    db: Client = Depends(get_db),
):
    """
    Submit identity documents for review.

    `id_document`, `utility_bill` and `selfie` are required; `driver_license`
    is optional. The user's KYC status becomes `pending`.
    """
    form = KYCForm(
        document_type=document_type,
        document_number=document_number,
        full_name=full_name,
        date_of_birth=date_of_birth,
        address=address,
        city=city,
        country=country,
        postal_code=postal_code,
    )
    uploads = {
        "id_document": id_document,
        "utility_bill": utility_bill,
        "selfie": selfie,
        "driver_license": driver_license,
    }
    documents: Dict[str, UploadedDocument] = {}
    for kind, upload in uploads.items():
        doc = await _read(upload)
        if doc is not None:
            documents[kind] = doc

    with service_call("KYC submission", user_id=user_id):
        record = kyc_service.submit_kyc(db, user_id, form, documents)
    return {"status": "pending", "record": record}


@router.get("/status")
def kyc_status(user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("KYC status lookup", user_id=user_id):
        return {"user_id": user_id, "kyc_status": kyc_service.get_kyc_status(db, user_id)}


@admin_router.get("")
def list_kyc(
    status: Optional[str] = None,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("KYC listing"):
        return kyc_service.list_kyc_records(db, ctx.scope, status)


@admin_router.post("/{kyc_id}/status")
def review_kyc(
    kyc_id: str,
    review: KYCReview,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("KYC review", kyc_id=kyc_id):
        return kyc_service.review_kyc(db, ctx.scope, kyc_id, review)


@admin_router.get("/{kyc_id}/documents/{kind}")
def kyc_document(
    kyc_id: str,
    kind: str,
    ctx: AdminContext = Depends(get_admin_context),
    db: Client = Depends(get_db),
):
    with service_call("Document link", kyc_id=kyc_id, kind=kind):
        url = kyc_service.document_url(db, ctx.scope, kyc_id, kind)
    return {"url": url, "expires_in": kyc_service.SIGNED_URL_TTL_SECONDS}
