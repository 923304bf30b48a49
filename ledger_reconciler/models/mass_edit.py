"""
Mass-Edit Models

A mass-edit instruction is converted by the extraction collaborator into
a structured filter plus an update patch or a delete intent.

CRITICAL: Matching is DETERMINISTIC and never mutates the ledger.
The output is a proposal of before/after rows that the user must
explicitly confirm.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ledger_reconciler.models.candidate import Direction, ReconciliationIssue


class MassEditAction(str, Enum):
    UPDATE = "update"
    DELETE = "delete"


class MassEditMode(str, Enum):
    SINGLE = "single"  # exactly one entry is expected
    BATCH = "batch"


def _to_decimal(v: Any) -> Optional[Decimal]:
    if v is None or v == "":
        return None
    try:
        if isinstance(v, float):
            return abs(Decimal(repr(v)))
        return abs(Decimal(str(v).replace(",", ".").replace(" ", "")))
    except (InvalidOperation, ValueError):
        return None


def _to_datetime(v: Any) -> Optional[datetime]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(v).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class _EntryFields(BaseModel):
    """Fields shared by filters and patches."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    direction: Optional[Direction] = None
    currency: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    description: Optional[str] = None
    tag: Optional[str] = None
    account: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("account", "fromAccount", "from_account"),
    )
    to_account: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("to_account", "toAccount"),
    )
    transaction_date: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("transaction_date", "transactionDate"),
    )

    @field_validator('amount', mode='before')
    @classmethod
    def coerce_amount(cls, v: Any) -> Optional[Decimal]:
        return _to_decimal(v)

    @field_validator('currency', mode='before')
    @classmethod
    def upper_currency(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip().upper() or None

    @field_validator('transaction_date', mode='before')
    @classmethod
    def parse_date(cls, v: Any) -> Optional[datetime]:
        return _to_datetime(v)

    @field_validator('category', 'description', 'tag', 'account', 'to_account', mode='before')
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip() or None

    def present(self) -> dict[str, Any]:
        """Only the fields that were actually given."""
        return {k: v for k, v in self.model_dump().items() if v is not None}

    @property
    def is_empty(self) -> bool:
        return not self.present()


class MassEditFilter(_EntryFields):
    """Every present field must match for an entry to be selected."""


class MassEditPatch(_EntryFields):
    """Fields to overwrite on every selected entry."""


class MassEditInstruction(BaseModel):
    """Structured form of one natural-language mass-edit instruction."""
    model_config = ConfigDict(populate_by_name=True)

    action: MassEditAction
    mode: MassEditMode = MassEditMode.BATCH
    filter: MassEditFilter = Field(default_factory=MassEditFilter)
    exclude: Optional[MassEditFilter] = None
    update: Optional[MassEditPatch] = None
    delete_all: bool = Field(
        default=False,
        validation_alias=AliasChoices("delete_all", "deleteAll"),
    )
    raw_text: str = Field(
        default="",
        validation_alias=AliasChoices("raw_text", "rawText"),
    )


class MassEditDraftRow(BaseModel):
    """One proposed mutation. Never applied without confirmation."""

    transaction_id: str
    action: MassEditAction
    before: dict[str, Any]
    after: Optional[dict[str, Any]] = None


class MassEditProposal(BaseModel):
    """Result of matching a mass-edit instruction against the ledger."""

    proposal_id: str = Field(default_factory=lambda: uuid4().hex)
    user_id: str
    success: bool
    instruction: Optional[MassEditInstruction] = None
    rows: list[MassEditDraftRow] = Field(default_factory=list)
    issue: Optional[ReconciliationIssue] = None

    @property
    def match_count(self) -> int:
        return len(self.rows)


class MassEditApplyResult(BaseModel):
    """Outcome of applying a confirmed proposal."""

    proposal_id: str
    success: bool
    applied_ids: list[str] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)
    issue: Optional[ReconciliationIssue] = None
