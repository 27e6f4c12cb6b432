"""Async persistence for claims and users."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from claimflow.database import session_scope
from claimflow.errors import StorageError, ValidationError
from claimflow.logging_config import get_logger
from claimflow.modules.claims.models import (
    ClaimRecord,
    ClaimStatus,
    ExpenseClaim,
    Submitter,
    User,
    UserRecord,
    utcnow,
)

logger = get_logger(__name__)


class ClaimRepository:
    """Owns the authoritative claim rows.

    Each public method runs in its own session and transaction, so no caller
    ever observes a partially written claim.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(
        self,
        submitter_id: int,
        amount: Decimal,
        description: str,
        category: Optional[str] = None,
        receipt_date: Optional[dt.date] = None,
        receipt_key: Optional[str] = None,
        submitted_at: Optional[dt.datetime] = None,
    ) -> int:
        """Insert a pending claim and return its generated id."""
        record = ClaimRecord(
            submitter_id=submitter_id,
            amount=amount,
            description=description,
            category=category,
            receipt_date=receipt_date,
            receipt_key=receipt_key,
            status=ClaimStatus.PENDING.value,
            submitted_at=submitted_at or utcnow(),
        )
        try:
            async with session_scope(self._session_factory) as session:
                session.add(record)
                await session.flush()
                claim_id = record.id
        except IntegrityError as exc:
            logger.warning("claim_insert_rejected", submitter_id=submitter_id, error=str(exc.orig))
            raise ValidationError(f"Unknown submitter {submitter_id}") from exc
        except SQLAlchemyError as exc:
            logger.error("claim_insert_failed", submitter_id=submitter_id, error=str(exc))
            raise StorageError("Database error") from exc
        return claim_id

    async def get(self, claim_id: int) -> Optional[ExpenseClaim]:
        try:
            async with session_scope(self._session_factory) as session:
                record = await session.get(ClaimRecord, claim_id)
                return ExpenseClaim.model_validate(record) if record else None
        except SQLAlchemyError as exc:
            logger.error("claim_fetch_failed", claim_id=claim_id, error=str(exc))
            raise StorageError("Database error") from exc

    async def mark_decided(
        self,
        claim_id: int,
        status: ClaimStatus,
        decided_by: int,
        decided_at: dt.datetime,
        notes: Optional[str] = None,
    ) -> int:
        """Move a pending claim to a terminal status.

        One conditional UPDATE guarded by ``status = 'pending'``; returns the
        number of rows affected, which is 0 when the claim is missing or some
        other decision already landed.
        """
        stmt = (
            update(ClaimRecord)
            .where(ClaimRecord.id == claim_id, ClaimRecord.status == ClaimStatus.PENDING.value)
            .values(
                status=status.value,
                decided_at=decided_at,
                decided_by=decided_by,
                notes=notes,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(stmt)
                return result.rowcount
        except IntegrityError as exc:
            logger.warning("claim_decision_rejected", claim_id=claim_id, decided_by=decided_by)
            raise ValidationError(f"Unknown user {decided_by}") from exc
        except SQLAlchemyError as exc:
            logger.error("claim_decision_write_failed", claim_id=claim_id, error=str(exc))
            raise StorageError("Database error") from exc

    async def list_by_status(self, status: ClaimStatus, oldest_first: bool = True) -> list[ExpenseClaim]:
        """Claims in ``status`` with their submitter's name and email."""
        stmt = self._with_submitter().where(ClaimRecord.status == status.value)
        return await self._fetch_with_submitter(stmt.order_by(*self._ordering(oldest_first)))

    async def list_by_submitter(self, submitter_id: int) -> list[ExpenseClaim]:
        stmt = select(ClaimRecord).where(ClaimRecord.submitter_id == submitter_id)
        return await self._fetch(stmt.order_by(*self._ordering(oldest_first=False)))

    async def list_all(self, status: Optional[ClaimStatus] = None) -> list[ExpenseClaim]:
        stmt = self._with_submitter()
        if status is not None:
            stmt = stmt.where(ClaimRecord.status == status.value)
        return await self._fetch_with_submitter(stmt.order_by(*self._ordering(oldest_first=False)))

    @staticmethod
    def _with_submitter():
        return select(ClaimRecord, UserRecord).join(UserRecord, ClaimRecord.submitter_id == UserRecord.id)

    @staticmethod
    def _ordering(oldest_first: bool):
        # id breaks ties between claims stamped in the same instant
        if oldest_first:
            return ClaimRecord.submitted_at.asc(), ClaimRecord.id.asc()
        return ClaimRecord.submitted_at.desc(), ClaimRecord.id.desc()

    async def _fetch(self, stmt) -> list[ExpenseClaim]:
        try:
            async with session_scope(self._session_factory) as session:
                rows = (await session.scalars(stmt)).all()
                return [ExpenseClaim.model_validate(r) for r in rows]
        except SQLAlchemyError as exc:
            logger.error("claim_query_failed", error=str(exc))
            raise StorageError("Database error") from exc

    async def _fetch_with_submitter(self, stmt) -> list[ExpenseClaim]:
        try:
            async with session_scope(self._session_factory) as session:
                rows = (await session.execute(stmt)).all()
                return [
                    ExpenseClaim.model_validate(claim).model_copy(
                        update={"submitter": Submitter.model_validate(user)}
                    )
                    for claim, user in rows
                ]
        except SQLAlchemyError as exc:
            logger.error("claim_query_failed", error=str(exc))
            raise StorageError("Database error") from exc


class UserRepository:
    """Minimal user lookups needed by the workflow and the CLI."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, email: str, first_name: str, last_name: str, role: str = "staff") -> int:
        record = UserRecord(email=email.strip().lower(), first_name=first_name, last_name=last_name, role=role)
        try:
            async with session_scope(self._session_factory) as session:
                session.add(record)
                await session.flush()
                user_id = record.id
        except IntegrityError as exc:
            raise ValidationError(f"User with email '{email}' already exists") from exc
        except SQLAlchemyError as exc:
            logger.error("user_insert_failed", error=str(exc))
            raise StorageError("Database error") from exc
        logger.info("user_added", user_id=user_id, role=role)
        return user_id

    async def get(self, user_id: int) -> Optional[User]:
        try:
            async with session_scope(self._session_factory) as session:
                record = await session.get(UserRecord, user_id)
                return User.model_validate(record) if record else None
        except SQLAlchemyError as exc:
            raise StorageError("Database error") from exc

    async def admin_emails(self) -> list[str]:
        try:
            async with session_scope(self._session_factory) as session:
                rows = await session.scalars(
                    select(UserRecord.email).where(UserRecord.role == "admin").order_by(UserRecord.id)
                )
                return list(rows.all())
        except SQLAlchemyError as exc:
            raise StorageError("Database error") from exc
