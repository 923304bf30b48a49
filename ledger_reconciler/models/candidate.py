"""
Candidate Models for the Reconciliation Pipeline

A Candidate is one not-yet-committed proposed ledger event. It is created
fresh by the extraction collaborator, flows through every pipeline stage,
and is either committed or abandoned.

DESIGN DECISION: The candidate is a single closed record with explicit
optional fields. Everything a stage learns *about* the candidate (why it
cannot be committed, where a conversion amount came from, whether a side
was explicitly named) lives in a separate ResolutionMeta side-channel, so
the ledger-facing fields never carry ad-hoc bookkeeping.

Expected failures are values (ReconciliationIssue), not exceptions.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


BATCH_MARKER_RE = re.compile(r"\[\[BATCH:([^\]]+)\]\]")


# =============================================================================
# ENUMS
# =============================================================================

class Direction(str, Enum):
    """Direction of a money movement."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class ConversionSource(str, Enum):
    """Where the converted amount of an exchange-like transfer came from."""
    EXPLICIT = "explicit"  # both legs stated by the user
    RATE = "rate"          # computed from a live rate lookup
    UNKNOWN = "unknown"    # not resolved yet


class CandidateSource(str, Enum):
    """Origin of the batch."""
    TEXT = "text"
    VOICE = "voice"
    IMAGE = "image"


class IssueKind(str, Enum):
    """
    Every failure kind the pipeline can report.

    All of these are recoverable: the caller keeps the draft and
    merges a follow-up correction into it.
    """
    UNSUPPORTED_CURRENCY = "unsupported_currency"
    MISSING_CRITICAL_FIELDS = "missing_critical_fields"
    AMBIGUOUS_MASS_EDIT_MATCH = "ambiguous_mass_edit_match"
    TOO_MANY_MASS_EDIT_MATCHES = "too_many_mass_edit_matches"
    NO_MASS_EDIT_MATCHES = "no_mass_edit_matches"
    RATE_LOOKUP_FAILED = "rate_lookup_failed"
    ACCOUNT_HAS_NO_HOLDINGS = "account_has_no_holdings"
    COMMIT_FAILED = "commit_failed"
    RATE_LIMITED = "rate_limited"
    EXTRACTION_FAILED = "extraction_failed"
    DUPLICATE_CONFIRM = "duplicate_confirm"


class ReconciliationIssue(BaseModel):
    """A single failure reported by a stage."""

    kind: IssueKind
    message: str = Field(
        ...,
        description="Human-readable reason shown to the user"
    )
    details: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# CANDIDATE
# =============================================================================

class ResolutionMeta(BaseModel):
    """
    Side-channel metadata produced while resolving a candidate.

    Never persisted. Cleared whenever a correction is merged in.
    """

    missing: list[str] = Field(
        default_factory=list,
        description="Reasons the candidate cannot be committed yet"
    )
    issues: list[ReconciliationIssue] = Field(default_factory=list)
    conversion_source: Optional[ConversionSource] = None
    currency_explicit: bool = False
    from_outside_explicit: bool = False
    to_outside_explicit: bool = False
    is_fee: bool = False
    synthesized: bool = False

    def block(self, kind: IssueKind, message: str, **details: Any) -> None:
        """Record a blocking issue."""
        self.issues.append(
            ReconciliationIssue(kind=kind, message=message, details=details)
        )
        if message not in self.missing:
            self.missing.append(message)


class Candidate(BaseModel):
    """
    One proposed ledger event.

    CRITICAL: This is PROPOSED data, NOT verified. It only becomes a
    ledger entry through the Validator and the Committer.

    Field names accept both the snake_case names used in Python and the
    camelCase names emitted by the extraction collaborator.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    direction: Direction
    exchange_like: bool = Field(
        default=False,
        validation_alias=AliasChoices("exchange_like", "exchangeLike"),
    )

    amount: Optional[Decimal] = None
    currency: Optional[str] = None

    account: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("account", "fromAccount", "from_account"),
    )
    account_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("account_id", "accountId"),
    )
    to_account: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("to_account", "toAccount"),
    )
    to_account_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("to_account_id", "toAccountId"),
    )

    category: Optional[str] = None
    category_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("category_id", "categoryId"),
    )

    tag_text: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tag_text", "tagText"),
    )
    normalized_tag: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("normalized_tag", "normalizedTag"),
    )
    tag_confidence: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("tag_confidence", "tagConfidence"),
    )
    tag_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tag_id", "tagId"),
    )
    tag_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tag_name", "tagName"),
    )
    tag_is_new: bool = Field(
        default=False,
        validation_alias=AliasChoices("tag_is_new", "tagIsNew"),
    )

    description: Optional[str] = None
    raw_text: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("raw_text", "rawText"),
    )
    transaction_date: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("transaction_date", "transactionDate"),
    )

    convert_to_currency: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("convert_to_currency", "convertToCurrency"),
    )
    converted_amount: Optional[Decimal] = Field(
        default=None,
        validation_alias=AliasChoices("converted_amount", "convertedAmount"),
    )

    meta: ResolutionMeta = Field(default_factory=ResolutionMeta)

    @field_validator('amount', 'converted_amount', mode='before')
    @classmethod
    def coerce_amount(cls, v: Any) -> Optional[Decimal]:
        """Amounts are stored as positive Decimals; sign is carried by direction."""
        if v is None or v == "":
            return None
        try:
            if isinstance(v, float):
                value = Decimal(repr(v))
            else:
                value = Decimal(str(v).replace(",", ".").replace(" ", ""))
        except (InvalidOperation, ValueError):
            return None
        if not value.is_finite():
            return None
        return abs(value)

    @field_validator('currency', 'convert_to_currency', mode='before')
    @classmethod
    def upper_currency(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        code = str(v).strip().upper()
        return code or None

    @field_validator('transaction_date', mode='before')
    @classmethod
    def parse_date(cls, v: Any) -> Optional[datetime]:
        """Accept ISO strings (date-only included); garbage becomes None."""
        if v is None or v == "":
            return None
        if isinstance(v, datetime):
            return v if v.tzinfo else v.replace(tzinfo=timezone.utc)
        try:
            parsed = datetime.fromisoformat(str(v).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    @property
    def is_transfer(self) -> bool:
        return self.direction == Direction.TRANSFER

    @property
    def batch_key(self) -> str:
        """
        Key shared by all candidates of one extraction call.

        The batch marker embedded in raw_text wins; otherwise the raw text
        itself (candidates of one call share it).
        """
        source = self.raw_text or ""
        match = BATCH_MARKER_RE.search(source)
        if match:
            return match.group(1).strip()
        return " ".join(source.lower().split())

    @property
    def user_text(self) -> str:
        """raw_text without the batch marker."""
        return strip_batch_marker(self.raw_text or "")

    def clone(self, **changes: Any) -> "Candidate":
        """Deep copy with fresh resolution metadata."""
        copy = self.model_copy(deep=True)
        copy.meta = ResolutionMeta()
        for key, value in changes.items():
            setattr(copy, key, value)
        return copy


class BatchContext(BaseModel):
    """Everything the pipeline knows about one inbound user event."""

    batch_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    user_id: str
    source: CandidateSource = CandidateSource.TEXT
    text: str = Field(
        default="",
        description="User text, caption or voice transcript"
    )
    image_date: Optional[datetime] = None
    timezone: str = "UTC+02:00"
    now: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_image(self) -> bool:
        return self.source == CandidateSource.IMAGE


def attach_batch_marker(raw_text: str, batch_id: str) -> str:
    """Embed the batch marker into raw text (replacing an existing one)."""
    return f"{strip_batch_marker(raw_text)} [[BATCH:{batch_id}]]".strip()


def strip_batch_marker(raw_text: str) -> str:
    return BATCH_MARKER_RE.sub("", raw_text or "").strip()
