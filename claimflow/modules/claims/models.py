"""Expense claim data models."""

from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from claimflow.database import Base

CENTS = Decimal("0.01")


class ClaimStatus(StrEnum):
    """Claim status. ``approved`` and ``rejected`` are terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not ClaimStatus.PENDING


class ClaimCategory(StrEnum):
    """Expense categories."""
    OFFICE = "office"
    TRAVEL = "travel"
    MEALS = "meals"
    EQUIPMENT = "equipment"
    UTILITIES = "utilities"
    OTHER = "other"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


# ── Persistence ──────────────────────────────────────────────────────

class UserRecord(Base):
    """Staff member or administrator."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="staff")
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ClaimRecord(Base):
    """One row per expense claim."""

    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submitter_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2, asdecimal=True), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    receipt_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
    receipt_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ClaimStatus.PENDING.value, index=True)
    submitted_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    decided_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


# ── Domain ───────────────────────────────────────────────────────────

class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str
    last_name: str
    role: str


class Submitter(BaseModel):
    """Who filed a claim, as shown on the admin review lists."""

    model_config = ConfigDict(from_attributes=True)

    first_name: str
    last_name: str
    email: str


class ExpenseClaim(BaseModel):
    """Read model of a persisted claim.

    ``submitter`` is only filled in by the admin listings.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    submitter_id: int
    amount: Decimal
    description: str
    category: Optional[ClaimCategory] = None
    receipt_date: Optional[dt.date] = None
    receipt_key: Optional[str] = None
    status: ClaimStatus
    submitted_at: dt.datetime
    decided_at: Optional[dt.datetime] = None
    decided_by: Optional[int] = None
    notes: Optional[str] = None
    submitter: Optional[Submitter] = None

    @property
    def is_decided(self) -> bool:
        return self.status.is_terminal

    def to_api(self) -> dict[str, Any]:
        """Render with the field names the web client expects."""
        data = {
            "id": self.id,
            "user_id": self.submitter_id,
            "amount": str(self.amount),
            "description": self.description,
            "category": self.category.value if self.category else None,
            "receipt_date": self.receipt_date.isoformat() if self.receipt_date else None,
            "receipt_image": self.receipt_key,
            "status": self.status.value,
            "submitted_at": self.submitted_at.isoformat(),
            "approved_at": self.decided_at.isoformat() if self.decided_at else None,
            "approved_by": self.decided_by,
            "notes": self.notes,
        }
        if self.submitter is not None:
            data.update(self.submitter.model_dump())
        return data


class ClaimSubmission(BaseModel):
    """Validated input for a new claim."""

    submitter_id: int
    amount: Decimal
    description: str
    category: Optional[ClaimCategory] = None
    receipt_date: Optional[dt.date] = None
    receipt_key: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Decimal:
        try:
            amount = Decimal(str(v).strip()).quantize(CENTS, rounding=ROUND_HALF_UP)
        except (InvalidOperation, ValueError):
            raise ValueError("amount must be a number")
        if not amount.is_finite() or amount <= 0:
            raise ValueError("amount must be greater than zero")
        return amount

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be empty")
        return v

    @field_validator("category", "receipt_date", "receipt_key", mode="before")
    @classmethod
    def blank_as_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v
