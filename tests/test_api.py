"""Tests for the FastAPI API routes."""

from __future__ import annotations

import asyncio
import datetime as dt
import io
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from claimflow.api.routes import Services, set_services, submit_expense
from claimflow.errors import ExtractionFailed, NotFoundOrAlreadyDecided, StorageError, ValidationError
from claimflow.modules.claims.models import ClaimStatus, ExpenseClaim, Submitter
from claimflow.modules.receipts.ocr import OcrResult
from claimflow.security.rbac import Role, UserIdentity

JPEG = bytes([0xFF, 0xD8, 0xFF, 0xE0, 0x00, 0x10, 0x4A, 0x46, 0x49, 0x46, 0x00, 0x01])

STAFF = {"X-User-Id": "2", "X-User-Role": "staff"}
ADMIN = {"X-User-Id": "1", "X-User-Role": "admin"}


def _claim(claim_id: int = 1, status: ClaimStatus = ClaimStatus.PENDING) -> ExpenseClaim:
    return ExpenseClaim(
        id=claim_id,
        submitter_id=2,
        amount=Decimal("42.00"),
        description="Taxi",
        receipt_key="receipt-abc.jpg",
        status=status,
        submitted_at=dt.datetime(2024, 1, 1, 9, 0),
    )


@pytest.fixture
def mock_services():
    """Create mock services with the calls the routes make."""
    workflow = MagicMock()
    workflow.submit = AsyncMock(return_value=7)
    workflow.decide = AsyncMock(return_value=_claim(status=ClaimStatus.APPROVED))
    workflow.list_mine = AsyncMock(return_value=[_claim(2), _claim(1)])
    workflow.list_pending = AsyncMock(return_value=[_claim(1)])
    workflow.list_all = AsyncMock(return_value=[])

    receipts = MagicMock()
    receipts.save = AsyncMock(return_value="receipt-abc.jpg")
    receipts.delete = AsyncMock()

    ocr = MagicMock()
    ocr.extract = AsyncMock(return_value=OcrResult(raw_text="Total: $12.34", suggested_amount="$12.34"))

    return Services(workflow=workflow, receipts=receipts, ocr=ocr)


@pytest.fixture
def client(mock_services):
    """Create a test client with mock services."""
    set_services(mock_services)
    from claimflow.main import app
    yield TestClient(app)
    set_services(None)


class TestHealth:
    def test_health(self, client) -> None:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "OK"

    def test_me(self, client) -> None:
        assert client.get("/api/users/me", headers=ADMIN).json() == {"user": {"id": 1, "role": "admin"}}

    def test_missing_identity(self, client) -> None:
        assert client.get("/api/expenses/my-expenses").status_code == 401


class TestSubmit:
    def _post(self, client, files=True, **data):
        form = {"amount": "42.00", "description": "Taxi", **data}
        upload = {"receipt": ("r.jpg", JPEG, "image/jpeg")} if files else None
        return client.post("/api/expenses/submit", data=form, files=upload, headers=STAFF)

    def test_submit(self, client, mock_services) -> None:
        resp = self._post(client, category="travel", receiptDate="2024-01-02")
        assert resp.status_code == 201
        assert resp.json() == {"id": 7, "message": "Expense submitted successfully"}
        mock_services.workflow.submit.assert_awaited_once_with(
            submitter_id=2,
            amount="42.00",
            description="Taxi",
            category="travel",
            receipt_date="2024-01-02",
            receipt_key="receipt-abc.jpg",
        )

    def test_missing_receipt(self, client, mock_services) -> None:
        resp = self._post(client, files=False)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Receipt image is required"
        mock_services.workflow.submit.assert_not_called()

    def test_non_image_upload(self, client, mock_services) -> None:
        resp = client.post(
            "/api/expenses/submit",
            data={"amount": "1.00", "description": "x"},
            files={"receipt": ("r.pdf", b"%PDF", "application/pdf")},
            headers=STAFF,
        )
        assert resp.status_code == 400
        mock_services.receipts.save.assert_not_called()

    def test_validation_failure_removes_stored_receipt(self, client, mock_services) -> None:
        mock_services.workflow.submit.side_effect = ValidationError("Invalid expense")
        resp = self._post(client, amount="-1")
        assert resp.status_code == 400
        mock_services.receipts.delete.assert_awaited_once_with("receipt-abc.jpg")

    def test_storage_failure(self, client, mock_services) -> None:
        mock_services.workflow.submit.side_effect = StorageError("Database error")
        resp = self._post(client)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Database error"}


class TestExtractReceipt:
    def test_extract(self, client, mock_services) -> None:
        resp = client.post(
            "/api/expenses/extract-receipt",
            files={"receipt": ("test.jpg", JPEG, "image/jpeg")},
            headers=STAFF,
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "extractedText": "Total: $12.34",
            "suggestedAmount": "$12.34",
            "message": "Text extracted successfully",
        }
        mock_services.ocr.extract.assert_awaited_once_with(JPEG, content_type="image/jpeg")

    def test_no_file(self, client) -> None:
        resp = client.post("/api/expenses/extract-receipt", headers=STAFF)
        assert resp.status_code == 400
        assert resp.json()["error"] == "No image provided"

    def test_engine_failure(self, client, mock_services) -> None:
        mock_services.ocr.extract.side_effect = ExtractionFailed()
        resp = client.post(
            "/api/expenses/extract-receipt",
            files={"receipt": ("test.jpg", JPEG, "image/jpeg")},
            headers=STAFF,
        )
        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to extract text from image"


class TestListings:
    def test_my_expenses(self, client, mock_services) -> None:
        resp = client.get("/api/expenses/my-expenses", headers=STAFF)
        assert resp.status_code == 200
        body = resp.json()
        assert [c["id"] for c in body] == [2, 1]
        assert body[0]["amount"] == "42.00"
        assert body[0]["receipt_image"] == "receipt-abc.jpg"
        mock_services.workflow.list_mine.assert_awaited_once_with(2)

    def test_pending_requires_admin(self, client) -> None:
        assert client.get("/api/expenses/pending", headers=STAFF).status_code == 403

    def test_pending(self, client, mock_services) -> None:
        mock_services.workflow.list_pending.return_value = [
            _claim(1).model_copy(
                update={"submitter": Submitter(first_name="Sam", last_name="Staff", email="sam@example.com")}
            )
        ]
        resp = client.get("/api/expenses/pending", headers=ADMIN)
        assert resp.status_code == 200
        row = resp.json()[0]
        assert row["status"] == "pending"
        assert (row["first_name"], row["last_name"], row["email"]) == ("Sam", "Staff", "sam@example.com")

    def test_all_passes_filter_through(self, client, mock_services) -> None:
        assert client.get("/api/expenses/all?status=bogus", headers=ADMIN).status_code == 200
        mock_services.workflow.list_all.assert_awaited_once_with("bogus")

    def test_all_requires_admin(self, client) -> None:
        assert client.get("/api/expenses/all", headers=STAFF).status_code == 403


class TestStatusUpdate:
    def test_decide(self, client, mock_services) -> None:
        resp = client.patch("/api/expenses/1/status", json={"status": "approved", "notes": "ok"}, headers=ADMIN)
        assert resp.status_code == 200
        actor, claim_id, decision, notes = mock_services.workflow.decide.call_args.args
        assert actor.user_id == 1 and actor.is_admin
        assert (claim_id, decision, notes) == (1, "approved", "ok")

    def test_already_decided(self, client, mock_services) -> None:
        mock_services.workflow.decide.side_effect = NotFoundOrAlreadyDecided(1)
        resp = client.patch("/api/expenses/1/status", json={"status": "approved"}, headers=ADMIN)
        assert resp.status_code == 404
        assert "already decided" in resp.json()["error"]

    def test_missing_status_field(self, client) -> None:
        resp = client.patch("/api/expenses/1/status", json={"notes": "x"}, headers=ADMIN)
        assert resp.status_code == 400


class TestSubmitCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_submit_removes_stored_receipt(self, mock_services) -> None:
        mock_services.workflow.submit.side_effect = asyncio.CancelledError()
        upload = UploadFile(
            file=io.BytesIO(JPEG),
            filename="r.jpg",
            headers=Headers({"content-type": "image/jpeg"}),
        )
        with pytest.raises(asyncio.CancelledError):
            await submit_expense(
                services=mock_services,
                identity=UserIdentity(user_id=2, role=Role.STAFF),
                amount="42.00",
                description="Taxi",
                receipt=upload,
            )
        mock_services.receipts.delete.assert_awaited_once_with("receipt-abc.jpg")
