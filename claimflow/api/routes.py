"""API route definitions for claimflow."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from claimflow.config import get_settings
from claimflow.errors import InvalidImage, ValidationError
from claimflow.logging_config import get_logger
from claimflow.modules.claims.service import WorkflowEngine
from claimflow.modules.receipts.ocr import OcrExtractor
from claimflow.modules.receipts.store import LocalReceiptStore
from claimflow.security.rbac import Permission, Role, UserIdentity

logger = get_logger(__name__)

router = APIRouter()


# ── Request / Response Models ────────────────────────────────────────

class StatusUpdateRequest(BaseModel):
    """Admin decision on a pending claim."""

    status: str
    notes: Optional[str] = None


# ── Service accessor (set from main.py) ─────────────────────────────

@dataclass
class Services:
    workflow: WorkflowEngine
    receipts: LocalReceiptStore
    ocr: OcrExtractor


_services: Optional[Services] = None


def set_services(services: Optional[Services]) -> None:
    """Inject the wired services."""
    global _services
    _services = services


def get_services() -> Services:
    """Get the services, raising if not initialized."""
    if _services is None:
        raise HTTPException(status_code=503, detail="System not initialized")
    return _services


def get_identity(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_role: Annotated[Optional[str], Header()] = None,
) -> UserIdentity:
    """Caller identity as forwarded by the authenticating gateway."""
    try:
        return UserIdentity(user_id=int(x_user_id), role=Role(x_user_role or Role.STAFF))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Access token required")


ServicesDep = Annotated[Services, Depends(get_services)]
IdentityDep = Annotated[UserIdentity, Depends(get_identity)]


async def _read_upload(upload: Optional[UploadFile]) -> tuple[bytes, str]:
    if upload is None:
        raise InvalidImage("No image provided")
    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise InvalidImage("Only image files are allowed")
    limit = get_settings().max_receipt_bytes
    data = await upload.read(limit + 1)
    if len(data) > limit:
        raise ValidationError(f"Receipt image exceeds {limit} bytes")
    return data, content_type


# ── Health ───────────────────────────────────────────────────────────

@router.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "OK", "timestamp": dt.datetime.now(dt.UTC).isoformat()}


@router.get("/users/me")
async def me(identity: IdentityDep) -> dict[str, Any]:
    return {"user": {"id": identity.user_id, "role": identity.role.value}}


# ── Expenses ─────────────────────────────────────────────────────────

@router.post("/expenses/submit", status_code=201)
async def submit_expense(
    services: ServicesDep,
    identity: IdentityDep,
    amount: Annotated[str, Form()],
    description: Annotated[str, Form()],
    receiptDate: Annotated[Optional[str], Form()] = None,
    category: Annotated[Optional[str], Form()] = None,
    receipt: Annotated[Optional[UploadFile], File()] = None,
) -> dict[str, Any]:
    """Submit a claim with its receipt image."""
    identity.require_permission(Permission.SUBMIT_CLAIMS)
    if receipt is None:
        raise ValidationError(
            "Receipt image is required",
            details=[{"field": "receipt", "msg": "Receipt image is required"}],
        )
    data, _ = await _read_upload(receipt)
    key = await services.receipts.save(data, receipt.filename or "")
    try:
        claim_id = await services.workflow.submit(
            submitter_id=identity.user_id,
            amount=amount,
            description=description,
            category=category,
            receipt_date=receiptDate,
            receipt_key=key,
        )
    except BaseException:
        # Includes cancellation
        await services.receipts.delete(key)
        raise
    return {"id": claim_id, "message": "Expense submitted successfully"}


@router.post("/expenses/extract-receipt")
async def extract_receipt(
    services: ServicesDep,
    identity: IdentityDep,
    receipt: Annotated[Optional[UploadFile], File()] = None,
) -> dict[str, Any]:
    """OCR a receipt and suggest its total. Independent of submission."""
    identity.require_permission(Permission.EXTRACT_RECEIPTS)
    data, content_type = await _read_upload(receipt)
    result = await services.ocr.extract(data, content_type=content_type)
    return {
        "extractedText": result.raw_text,
        "suggestedAmount": result.suggested_amount,
        "message": "Text extracted successfully",
    }


@router.get("/expenses/my-expenses")
async def my_expenses(services: ServicesDep, identity: IdentityDep) -> list[dict[str, Any]]:
    identity.require_permission(Permission.VIEW_OWN_CLAIMS)
    claims = await services.workflow.list_mine(identity.user_id)
    return [c.to_api() for c in claims]


@router.get("/expenses/pending")
async def pending_expenses(services: ServicesDep, identity: IdentityDep) -> list[dict[str, Any]]:
    identity.require_permission(Permission.REVIEW_CLAIMS)
    claims = await services.workflow.list_pending()
    return [c.to_api() for c in claims]


@router.get("/expenses/all")
async def all_expenses(
    services: ServicesDep,
    identity: IdentityDep,
    status: Optional[str] = Query(default=None),
) -> list[dict[str, Any]]:
    identity.require_permission(Permission.REVIEW_CLAIMS)
    claims = await services.workflow.list_all(status)
    return [c.to_api() for c in claims]


@router.patch("/expenses/{claim_id}/status")
async def update_status(
    claim_id: int,
    body: StatusUpdateRequest,
    services: ServicesDep,
    identity: IdentityDep,
) -> dict[str, Any]:
    await services.workflow.decide(identity, claim_id, body.status, body.notes)
    return {"message": "Expense status updated successfully"}


def error_response(exc: Any) -> JSONResponse:
    """Render a workflow failure as JSON with its status code."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
