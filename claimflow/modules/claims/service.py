"""Expense claim workflow: submission, decision and review queues."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from claimflow.errors import ClaimNotFound, NotFoundOrAlreadyDecided, ValidationError
from claimflow.logging_config import get_logger
from claimflow.modules.claims.models import (
    ClaimStatus,
    ClaimSubmission,
    ExpenseClaim,
    utcnow,
)
from claimflow.modules.claims.repository import ClaimRepository
from claimflow.modules.notifications.bus import (
    ADMIN_CHANNEL,
    EventKind,
    NotificationBus,
    NotificationEvent,
    user_channel,
)
from claimflow.security.rbac import Permission, UserIdentity

logger = get_logger(__name__)

DECISIONS = (ClaimStatus.APPROVED, ClaimStatus.REJECTED)


def _field_errors(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
        for err in exc.errors()
    ]


class WorkflowEngine:
    """Drives claims through ``pending -> approved | rejected``.

    The engine keeps no claim state between calls. The repository owns the
    rows and the bus only carries notifications, which are published after
    the write has committed and are never awaited.
    """

    def __init__(
        self,
        claims: ClaimRepository,
        bus: NotificationBus,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._claims = claims
        self._bus = bus
        self._clock = clock

    async def submit(
        self,
        submitter_id: int,
        amount: Decimal | str | float,
        description: str,
        category: Optional[str] = None,
        receipt_date: Optional[dt.date | str] = None,
        receipt_key: Optional[str] = None,
    ) -> int:
        """Create a pending claim and alert the admin channel."""
        try:
            submission = ClaimSubmission(
                submitter_id=submitter_id,
                amount=amount,
                description=description,
                category=category,
                receipt_date=receipt_date,
                receipt_key=receipt_key,
            )
        except PydanticValidationError as exc:
            raise ValidationError("Invalid expense", details=_field_errors(exc)) from exc
        if submission.receipt_key is None:
            raise ValidationError(
                "Receipt image is required",
                details=[{"field": "receipt", "msg": "Receipt image is required"}],
            )

        claim_id = await self._claims.insert(
            submitter_id=submission.submitter_id,
            amount=submission.amount,
            description=submission.description,
            category=submission.category.value if submission.category else None,
            receipt_date=submission.receipt_date,
            receipt_key=submission.receipt_key,
            submitted_at=self._clock(),
        )
        logger.info(
            "claim_submitted",
            claim_id=claim_id,
            submitter_id=submitter_id,
            amount=str(submission.amount),
        )

        self._bus.publish(
            ADMIN_CHANNEL,
            NotificationEvent(
                kind=EventKind.NEW_CLAIM,
                target_channel=ADMIN_CHANNEL,
                payload={
                    "id": claim_id,
                    "userId": submission.submitter_id,
                    "amount": str(submission.amount),
                    "description": submission.description,
                    "status": ClaimStatus.PENDING.value,
                },
            ),
        )
        return claim_id

    async def decide(
        self,
        actor: UserIdentity,
        claim_id: int,
        decision: ClaimStatus | str,
        notes: Optional[str] = None,
    ) -> ExpenseClaim:
        """Approve or reject a pending claim.

        Raises ``NotFoundOrAlreadyDecided`` when the conditional update
        touches no row: the id is unknown or another decision got there first.
        Callers must not retry that outcome.
        """
        actor.require_permission(Permission.DECIDE_CLAIMS)
        try:
            status = ClaimStatus(decision)
        except ValueError:
            status = None
        if status not in DECISIONS:
            raise ValidationError(
                f"Invalid decision '{decision}'",
                details=[{"field": "status", "msg": "must be 'approved' or 'rejected'"}],
            )

        affected = await self._claims.mark_decided(
            claim_id,
            status=status,
            decided_by=actor.user_id,
            decided_at=self._clock(),
            notes=notes,
        )
        if affected == 0:
            logger.info("claim_decision_conflict", claim_id=claim_id, actor_id=actor.user_id)
            raise NotFoundOrAlreadyDecided(claim_id)

        claim = await self._claims.get(claim_id)
        if claim is None:
            raise ClaimNotFound(claim_id)
        logger.info("claim_decided", claim_id=claim_id, status=status.value, actor_id=actor.user_id)

        channel = user_channel(claim.submitter_id)
        self._bus.publish(
            channel,
            NotificationEvent(
                kind=EventKind.CLAIM_DECIDED,
                target_channel=channel,
                payload={"id": claim_id, "status": status.value, "notes": notes},
            ),
        )
        return claim

    async def get(self, claim_id: int) -> ExpenseClaim:
        claim = await self._claims.get(claim_id)
        if claim is None:
            raise ClaimNotFound(claim_id)
        return claim

    async def list_pending(self) -> list[ExpenseClaim]:
        """Review queue, oldest submission first."""
        return await self._claims.list_by_status(ClaimStatus.PENDING, oldest_first=True)

    async def list_mine(self, submitter_id: int) -> list[ExpenseClaim]:
        return await self._claims.list_by_submitter(submitter_id)

    async def list_all(self, status_filter: Optional[str] = None) -> list[ExpenseClaim]:
        """Every claim, newest first. Unknown filter values mean no filter."""
        status: Optional[ClaimStatus] = None
        if status_filter:
            try:
                status = ClaimStatus(status_filter)
            except ValueError:
                logger.debug("status_filter_ignored", status_filter=status_filter)
        return await self._claims.list_all(status)
