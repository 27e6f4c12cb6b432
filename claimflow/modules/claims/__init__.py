"""Expense claims: persistence and the approval workflow."""

from claimflow.modules.claims.models import ClaimCategory, ClaimStatus, ExpenseClaim
from claimflow.modules.claims.repository import ClaimRepository, UserRepository
from claimflow.modules.claims.service import WorkflowEngine

__all__ = [
    "ClaimCategory",
    "ClaimRepository",
    "ClaimStatus",
    "ExpenseClaim",
    "UserRepository",
    "WorkflowEngine",
]
