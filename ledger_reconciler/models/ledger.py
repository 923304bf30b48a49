"""
Ledger Models

Accounts, categories, tags and committed ledger entries, plus the result
objects returned by the pipeline, the validator and the committer.

Accounts/categories/tags are owned by the surrounding application; this
package only reads them (tags are the exception: the committer creates a
tag on first use).
"""

import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ledger_reconciler.models.candidate import (
    BatchContext,
    Candidate,
    Direction,
    ReconciliationIssue,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


# =============================================================================
# ACCOUNTS
# =============================================================================

class AccountAsset(BaseModel):
    """One currency holding of an account."""

    currency: str
    amount: Decimal = Decimal("0")


class Account(BaseModel):
    """
    A user account with ordered currency holdings.

    The order of `assets` matters: "first holding" is used when a
    currency has to be inferred from the account.
    """

    id: str = Field(default_factory=_new_id)
    name: str
    assets: list[AccountAsset] = Field(default_factory=list)
    is_hidden: bool = False

    def holding(self, currency: Optional[str]) -> Optional[AccountAsset]:
        if not currency:
            return None
        code = currency.upper()
        for asset in self.assets:
            if asset.currency.upper() == code:
                return asset
        return None

    def holds(self, currency: Optional[str]) -> bool:
        return self.holding(currency) is not None

    def balance(self, currency: Optional[str]) -> Decimal:
        asset = self.holding(currency)
        return asset.amount if asset else Decimal("0")

    @property
    def currencies(self) -> list[str]:
        return [asset.currency.upper() for asset in self.assets]


class AccountUsageStats(BaseModel):
    """Derived per-account usage used for tie-breaking."""

    usage_count: int = 0
    last_used_at_ms: int = 0


class AccountBook(BaseModel):
    """
    Snapshot of a user's accounts for one pipeline run.

    Built once per batch from concurrent repository reads.
    """

    accounts: list[Account] = Field(default_factory=list)
    default_account_id: Optional[str] = None
    sentinel_account_id: Optional[str] = None
    usage: dict[str, AccountUsageStats] = Field(default_factory=dict)

    def get(self, account_id: Optional[str]) -> Optional[Account]:
        if not account_id:
            return None
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None

    @property
    def default(self) -> Optional[Account]:
        return self.get(self.default_account_id)

    @property
    def sentinel(self) -> Optional[Account]:
        return self.get(self.sentinel_account_id)

    def is_sentinel(self, account_id: Optional[str]) -> bool:
        return bool(account_id) and account_id == self.sentinel_account_id

    @property
    def real_accounts(self) -> list[Account]:
        """Visible accounts other than the sentinel."""
        return [
            a for a in self.accounts
            if not a.is_hidden and a.id != self.sentinel_account_id
        ]

    def stats(self, account_id: str) -> AccountUsageStats:
        return self.usage.get(account_id) or AccountUsageStats()


# =============================================================================
# CATEGORIES & TAGS
# =============================================================================

class Category(BaseModel):
    """A user category. `direction` is None for categories usable both ways."""

    id: str = Field(default_factory=_new_id)
    name: str
    direction: Optional[Direction] = None


class Tag(BaseModel):
    """A user tag with optional aliases."""

    id: str = Field(default_factory=_new_id)
    name: str
    aliases: list[str] = Field(default_factory=list)
    usage_count: int = 0


class ResolvedTag(BaseModel):
    """Outcome of matching a tag mention against the user's tags."""

    status: str = Field(
        ...,
        pattern="^(matched|suggested|new|none)$",
        description="How the tag was resolved"
    )
    tag_id: Optional[str] = None
    name: Optional[str] = None
    similarity: float = 0.0

    @property
    def is_new(self) -> bool:
        return self.status == "new"


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class LedgerEntryCreate(BaseModel):
    """Fields required to create a ledger entry."""

    user_id: str
    direction: Direction
    amount: Decimal = Field(..., gt=0)
    currency: str
    account_id: str
    to_account_id: Optional[str] = None
    category_id: Optional[str] = None
    tag_id: Optional[str] = None
    description: Optional[str] = None
    raw_text: Optional[str] = None
    transaction_date: datetime = Field(default_factory=_utcnow)
    convert_to_currency: Optional[str] = None
    converted_amount: Optional[Decimal] = None

    @classmethod
    def from_candidate(cls, user_id: str, candidate: Candidate) -> "LedgerEntryCreate":
        """Build the create payload from a validated candidate."""
        is_transfer = candidate.direction == Direction.TRANSFER
        return cls(
            user_id=user_id,
            direction=candidate.direction,
            amount=candidate.amount,
            currency=candidate.currency,
            account_id=candidate.account_id,
            to_account_id=candidate.to_account_id if is_transfer else None,
            category_id=None if is_transfer else candidate.category_id,
            tag_id=candidate.tag_id,
            description=candidate.description,
            raw_text=candidate.user_text or None,
            transaction_date=candidate.transaction_date or _utcnow(),
            convert_to_currency=candidate.convert_to_currency,
            converted_amount=candidate.converted_amount,
        )


class LedgerEntry(LedgerEntryCreate):
    """A committed ledger entry."""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    created_at: datetime = Field(default_factory=_utcnow)

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy used for before/after rows."""
        return self.model_dump(mode="json")


# =============================================================================
# RESULTS
# =============================================================================

class BatchValidationResult(BaseModel):
    """
    Result of validating a whole batch.

    Validation stops at the first candidate with missing fields.
    """

    is_valid: bool
    failed_index: Optional[int] = Field(
        default=None,
        description="Index of the first candidate that cannot be committed"
    )
    missing: list[str] = Field(default_factory=list)
    issues: list[ReconciliationIssue] = Field(default_factory=list)


class ReviewState(BaseModel):
    """Post-commit review of created entries, one by one."""

    entry_ids: list[str] = Field(default_factory=list)
    current_index: int = 0

    @property
    def current_entry_id(self) -> Optional[str]:
        if 0 <= self.current_index < len(self.entry_ids):
            return self.entry_ids[self.current_index]
        return None


class CommitResult(BaseModel):
    """Result of committing a batch."""

    success: bool
    entries: list[LedgerEntry] = Field(default_factory=list)
    created_tags: list[Tag] = Field(default_factory=list)
    issue: Optional[ReconciliationIssue] = None
    rolled_back: bool = False
    review: Optional[ReviewState] = None


class DraftSession(BaseModel):
    """
    A batch held between reconciliation and confirmation.

    When validation failed, `failed_index` points at the candidate a
    follow-up correction will be merged into.
    """

    session_id: str = Field(default_factory=_new_id)
    context: BatchContext
    candidates: list[Candidate] = Field(default_factory=list)
    failed_index: Optional[int] = None
    missing: list[str] = Field(default_factory=list)
    issues: list[ReconciliationIssue] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def user_id(self) -> str:
        return self.context.user_id

    @property
    def is_ready(self) -> bool:
        return self.failed_index is None and not self.issues

    def fingerprint(self) -> str:
        """Stable hash of what a confirmation would commit."""
        payload = {
            "user_id": self.context.user_id,
            "session_id": self.session_id,
            "candidates": [
                c.model_dump(mode="json", exclude={"meta"})
                for c in self.candidates
            ],
        }
        raw = json.dumps(payload, sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class PipelineResult(BaseModel):
    """Result of running the reconciliation pipeline for one user event."""

    success: bool
    session: Optional[DraftSession] = None
    issues: list[ReconciliationIssue] = Field(default_factory=list)
    message: str = ""

    @property
    def issue_kinds(self) -> list[str]:
        return [issue.kind.value for issue in self.issues]
