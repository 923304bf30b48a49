"""
Main Orchestrator for the Ledger Reconciler

This module ties together all the components and defines the
end-to-end flows for:
1. Reconciliation (message → extract → merge → expand → normalize →
   resolve → validate → confirm → commit)
2. Mass edit (instruction → extract filter → match → confirm → apply)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written without an explicit confirm() / apply()
- A batch that cannot be committed is held as a draft and corrected,
  never partially saved
- Every step is audited

Expected failures come back as ReconciliationIssue values inside the
result objects. Only programming errors propagate as exceptions.
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from ledger_reconciler.agents import ExtractionClient, ExtractionError, GeminiExtractionAgent
from ledger_reconciler.audit import AuditLogger, create_correlation_id
from ledger_reconciler.config import PipelineSettings, get_settings
from ledger_reconciler.models.candidate import (
    BatchContext,
    Candidate,
    CandidateSource,
    IssueKind,
    ReconciliationIssue,
    ResolutionMeta,
    attach_batch_marker,
)
from ledger_reconciler.models.ledger import (
    AccountBook,
    Category,
    CommitResult,
    DraftSession,
    PipelineResult,
    Tag,
)
from ledger_reconciler.models.mass_edit import (
    MassEditAction,
    MassEditApplyResult,
    MassEditProposal,
)
from ledger_reconciler.pipeline import (
    AccountResolver,
    BatchCommitter,
    CatalogResolver,
    CurrencyResolver,
    DateStabilizer,
    compute_usage_stats,
    expand_composite_trades,
    merge_candidates,
    normalize_exchanges,
)
from ledger_reconciler.queries import MassEditMatcher
from ledger_reconciler.services.currency import (
    CurrencyServiceInterface,
    KnownCurrencies,
    StaticCurrencyService,
)
from ledger_reconciler.services.guards import ConfirmLockRegistry, RequestRateLimiter
from ledger_reconciler.services.image import read_image_date
from ledger_reconciler.services.storage import (
    AccountStorageInterface,
    CategoryStorageInterface,
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryBackend,
    InMemoryCategoryStorage,
    InMemoryLedgerStorage,
    InMemoryTagStorage,
    LedgerStorageInterface,
    TagStorageInterface,
)
from ledger_reconciler.validation import CandidateValidator


logger = structlog.get_logger(__name__)


class UserLookups(BaseModel):
    """Everything read from the repositories for one pipeline run."""

    book: AccountBook
    categories: list[Category] = Field(default_factory=list)
    tags: list[Tag] = Field(default_factory=list)
    known: KnownCurrencies

    @property
    def account_names(self) -> list[str]:
        return [a.name for a in self.book.accounts if not a.is_hidden]

    @property
    def category_names(self) -> list[str]:
        return [c.name for c in self.categories]

    @property
    def tag_names(self) -> list[str]:
        return [t.name for t in self.tags]


# Fields a correction never overwrites
_NOT_MERGED = {"direction", "raw_text", "meta"}

# A new mention invalidates the id resolved from the old one
_MENTION_IDS = {
    "account": "account_id",
    "to_account": "to_account_id",
    "category": "category_id",
    "tag_text": "tag_id",
    "normalized_tag": "tag_id",
}


def _is_blank(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (int, float, Decimal)):
        return value == 0
    return False


def merge_correction(draft: Candidate, correction: Candidate) -> list[str]:
    """
    Copy every non-empty field of the correction onto the draft.

    Blank strings, None and zero amounts are ignored. The draft's
    resolution metadata is cleared. Returns the names of changed fields.
    """
    changed: list[str] = []
    for field in Candidate.model_fields:
        if field in _NOT_MERGED:
            continue
        value = getattr(correction, field)
        if _is_blank(value):
            continue
        setattr(draft, field, value)
        changed.append(field)

    for mention, id_field in _MENTION_IDS.items():
        if mention in changed and id_field not in changed:
            setattr(draft, id_field, None)
    if {"tag_text", "normalized_tag"} & set(changed):
        draft.tag_name = None
        draft.tag_is_new = False

    draft.meta = ResolutionMeta()
    return changed


async def load_user_lookups(
    user_id: str,
    account_storage: AccountStorageInterface,
    category_storage: CategoryStorageInterface,
    tag_storage: TagStorageInterface,
    ledger_storage: LedgerStorageInterface,
    currency_service: CurrencyServiceInterface,
    history_limit: int,
) -> UserLookups:
    """Issue the independent repository reads concurrently."""
    (
        accounts,
        default_id,
        outside_id,
        categories,
        tags,
        recent,
        known,
    ) = await asyncio.gather(
        account_storage.list_accounts(user_id),
        account_storage.get_default_account_id(user_id),
        account_storage.get_outside_account_id(user_id),
        category_storage.list_categories(user_id),
        tag_storage.list_tags(user_id),
        ledger_storage.list_entries(user_id, limit=history_limit),
        currency_service.get_known_currencies(),
    )
    book = AccountBook(
        accounts=accounts,
        default_account_id=default_id,
        sentinel_account_id=outside_id,
        usage=compute_usage_stats(recent),
    )
    return UserLookups(book=book, categories=categories, tags=tags, known=known)


class ReconciliationFlow:
    """
    Orchestrates the reconciliation flow.

    Flow:
    1. Rate-limit check
    2. Extract → raw candidates (untrusted)
    3. Merge → Expand → Normalize exchanges
    4. Resolve accounts, categories/tags, currencies, dates
    5. Validate → DraftSession (PAUSE - require confirmation)
    6. Correct → merge follow-up fields into the failed candidate
    7. Confirm → commit with compensation on failure

    Human confirmation (step 7) is MANDATORY.
    The system NEVER auto-saves.
    """

    def __init__(
        self,
        account_storage: AccountStorageInterface,
        category_storage: CategoryStorageInterface,
        tag_storage: TagStorageInterface,
        ledger_storage: LedgerStorageInterface,
        currency_service: CurrencyServiceInterface,
        extraction: Optional[ExtractionClient] = None,
        audit_logger: Optional[AuditLogger] = None,
        rate_limiter: Optional[RequestRateLimiter] = None,
        locks: Optional[ConfirmLockRegistry] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self._settings = settings or get_settings().pipeline
        self._accounts = account_storage
        self._categories = category_storage
        self._tags = tag_storage
        self._ledger = ledger_storage
        self._currency = currency_service
        self._extraction = extraction
        self._audit_logger = audit_logger
        self._rate_limiter = rate_limiter or RequestRateLimiter(
            self._settings.rate_limit_max_requests,
            self._settings.rate_limit_window_seconds,
        )
        self._locks = locks or ConfirmLockRegistry()
        self._committer = BatchCommitter(ledger_storage, tag_storage)

    async def _load(self, user_id: str) -> UserLookups:
        return await load_user_lookups(
            user_id,
            self._accounts,
            self._categories,
            self._tags,
            self._ledger,
            self._currency,
            self._settings.recent_history_limit,
        )

    async def _check_rate_limit(self, user_id: str, correlation_id: UUID) -> Optional[PipelineResult]:
        if self._rate_limiter.try_acquire(user_id):
            return None
        retry_after = self._rate_limiter.retry_after(user_id)
        if self._audit_logger:
            await self._audit_logger.log_rate_limited(
                user_id=user_id,
                retry_after_seconds=retry_after,
                correlation_id=correlation_id,
            )
        return PipelineResult(
            success=False,
            issues=[ReconciliationIssue(
                kind=IssueKind.RATE_LIMITED,
                message=f"слишком много запросов, попробуйте через {int(retry_after) + 1} с",
                details={"retry_after_seconds": retry_after},
            )],
            message="Слишком много запросов.",
        )

    async def _extraction_failed(
        self,
        context: BatchContext,
        message: str,
        correlation_id: UUID,
    ) -> PipelineResult:
        if self._audit_logger:
            await self._audit_logger.log_extraction_failed(
                user_id=context.user_id,
                batch_id=context.batch_id,
                error_message=message,
                correlation_id=correlation_id,
            )
        return PipelineResult(
            success=False,
            issues=[ReconciliationIssue(kind=IssueKind.EXTRACTION_FAILED, message=message)],
            message="Не удалось распознать операцию.",
        )

    def _reconcile(
        self,
        candidates: list[Candidate],
        context: BatchContext,
        lookups: UserLookups,
    ) -> list[Candidate]:
        """Merge, expand and normalize. Run once per extraction."""
        supported = lookups.known.all or None
        for candidate in candidates:
            candidate.raw_text = attach_batch_marker(
                candidate.raw_text or context.text, context.batch_id
            )
        merged = merge_candidates(candidates)
        expanded = expand_composite_trades(merged, supported)
        return normalize_exchanges(expanded, context, supported)

    async def _resolve(
        self,
        candidates: list[Candidate],
        context: BatchContext,
        lookups: UserLookups,
    ) -> list[Candidate]:
        """Resolution stages; safe to re-run after a correction."""
        for candidate in candidates:
            candidate.meta = ResolutionMeta(
                conversion_source=candidate.meta.conversion_source,
                is_fee=candidate.meta.is_fee,
                synthesized=candidate.meta.synthesized,
            )
        AccountResolver(lookups.book, self._settings).resolve(candidates)
        CatalogResolver(lookups.categories, lookups.tags, self._settings).resolve(candidates)
        await CurrencyResolver(lookups.known, self._currency, lookups.book).resolve(candidates)
        return DateStabilizer(context, self._settings).stabilize(candidates)

    async def _validate_into_session(
        self,
        session: DraftSession,
        lookups: UserLookups,
        correlation_id: UUID,
    ) -> PipelineResult:
        validator = CandidateValidator(lookups.book.sentinel_account_id)
        result = validator.validate_batch(session.candidates)
        session.failed_index = result.failed_index
        session.missing = result.missing
        session.issues = result.issues
        message = validator.get_user_friendly_summary(result, len(session.candidates))

        if not result.is_valid:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    user_id=session.user_id,
                    batch_id=session.context.batch_id,
                    failed_index=result.failed_index,
                    missing=result.missing,
                    correlation_id=correlation_id,
                )
            return PipelineResult(success=False, session=session, issues=result.issues, message=message)
        return PipelineResult(success=True, session=session, message=message)

    async def _run(
        self,
        context: BatchContext,
        extract,
        correlation_id: Optional[UUID],
    ) -> PipelineResult:
        correlation_id = correlation_id or create_correlation_id()

        limited = await self._check_rate_limit(context.user_id, correlation_id)
        if limited:
            return limited
        if self._extraction is None:
            return await self._extraction_failed(
                context, "extraction is not configured", correlation_id
            )

        lookups = await self._load(context.user_id)
        try:
            candidates = await extract(lookups)
        except ExtractionError as e:
            return await self._extraction_failed(context, str(e), correlation_id)
        if not candidates:
            return await self._extraction_failed(
                context, "не найдено ни одной операции", correlation_id
            )

        if self._audit_logger:
            await self._audit_logger.log_extraction_completed(
                user_id=context.user_id,
                batch_id=context.batch_id,
                source=context.source.value,
                candidate_count=len(candidates),
                correlation_id=correlation_id,
            )

        candidates = self._reconcile(candidates, context, lookups)
        candidates = await self._resolve(candidates, context, lookups)
        session = DraftSession(context=context, candidates=candidates)
        return await self._validate_into_session(session, lookups, correlation_id)

    async def process_text(
        self,
        user_id: str,
        text: str,
        timezone: Optional[str] = None,
        source: CandidateSource = CandidateSource.TEXT,
        correlation_id: Optional[UUID] = None,
    ) -> PipelineResult:
        """Reconcile one text (or voice transcript) message."""
        context = BatchContext(
            user_id=user_id,
            source=source,
            text=text,
            timezone=timezone or self._settings.default_timezone,
        )

        async def extract(lookups: UserLookups) -> list[Candidate]:
            return await self._extraction.parse_transaction(
                text,
                lookups.category_names,
                lookups.tag_names,
                lookups.account_names,
                context.timezone,
            )

        return await self._run(context, extract, correlation_id)

    async def process_image(
        self,
        user_id: str,
        image_bytes: bytes,
        mime_type: str,
        caption: Optional[str] = None,
        image_date=None,
        timezone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> PipelineResult:
        """Reconcile one photo (receipt, banking screenshot) with optional caption."""
        if image_date is None:
            image_date = read_image_date(image_bytes)
        context = BatchContext(
            user_id=user_id,
            source=CandidateSource.IMAGE,
            text=caption or "",
            image_date=image_date,
            timezone=timezone or self._settings.default_timezone,
        )

        async def extract(lookups: UserLookups) -> list[Candidate]:
            return await self._extraction.parse_transaction_from_image(
                image_bytes,
                mime_type,
                lookups.category_names,
                lookups.tag_names,
                lookups.account_names,
                context.timezone,
                caption=caption,
            )

        return await self._run(context, extract, correlation_id)

    async def apply_correction(
        self,
        session: DraftSession,
        text: str,
        correlation_id: Optional[UUID] = None,
    ) -> PipelineResult:
        """
        Merge a follow-up message into the failed candidate and re-validate.

        Merge/expand/normalize are not re-run; the held batch keeps its shape.
        """
        correlation_id = correlation_id or create_correlation_id()
        if session.failed_index is None:
            return PipelineResult(success=session.is_ready, session=session, issues=session.issues)

        limited = await self._check_rate_limit(session.user_id, correlation_id)
        if limited:
            limited.session = session
            return limited
        if self._extraction is None:
            return await self._extraction_failed(
                session.context, "extraction is not configured", correlation_id
            )

        lookups = await self._load(session.user_id)
        try:
            corrections = await self._extraction.parse_transaction(
                text,
                lookups.category_names,
                lookups.tag_names,
                lookups.account_names,
                session.context.timezone,
            )
        except ExtractionError as e:
            failed = await self._extraction_failed(session.context, str(e), correlation_id)
            failed.session = session
            return failed
        if not corrections:
            failed = await self._extraction_failed(
                session.context, "в сообщении нет исправлений", correlation_id
            )
            failed.session = session
            return failed

        fields = merge_correction(session.candidates[session.failed_index], corrections[0])
        if self._audit_logger:
            await self._audit_logger.log_correction_merged(
                user_id=session.user_id,
                session_id=session.session_id,
                fields=fields,
                correlation_id=correlation_id,
            )

        session.candidates = await self._resolve(session.candidates, session.context, lookups)
        return await self._validate_into_session(session, lookups, correlation_id)

    async def confirm(
        self,
        session: DraftSession,
        correlation_id: Optional[UUID] = None,
    ) -> CommitResult:
        """
        Commit a ready session.

        A second confirm of the same draft while the first is in flight is
        refused with DUPLICATE_CONFIRM.
        """
        correlation_id = correlation_id or create_correlation_id()
        if not session.is_ready:
            return CommitResult(
                success=False,
                issue=session.issues[0] if session.issues else ReconciliationIssue(
                    kind=IssueKind.MISSING_CRITICAL_FIELDS,
                    message="не хватает: " + ", ".join(session.missing),
                ),
            )

        fingerprint = session.fingerprint()
        if not self._locks.acquire(fingerprint):
            if self._audit_logger:
                await self._audit_logger.log_duplicate_confirm(
                    user_id=session.user_id,
                    fingerprint=fingerprint,
                    correlation_id=correlation_id,
                )
            return CommitResult(
                success=False,
                issue=ReconciliationIssue(
                    kind=IssueKind.DUPLICATE_CONFIRM,
                    message="эта операция уже сохраняется",
                ),
            )

        try:
            result = await self._committer.commit(session.user_id, session.candidates)
        finally:
            self._locks.release(fingerprint)

        if self._audit_logger:
            if result.success:
                await self._audit_logger.log_batch_committed(
                    user_id=session.user_id,
                    session_id=session.session_id,
                    entry_ids=[e.id for e in result.entries],
                    correlation_id=correlation_id,
                )
            else:
                await self._audit_logger.log_commit_failed(
                    user_id=session.user_id,
                    session_id=session.session_id,
                    error_message=result.issue.message if result.issue else "",
                    rolled_back=result.rolled_back,
                    correlation_id=correlation_id,
                )
                details = result.issue.details if result.issue else {}
                await self._audit_logger.log_rollback_completed(
                    user_id=session.user_id,
                    session_id=session.session_id,
                    deleted_ids=details.get("deleted_ids", []),
                    failed_ids=details.get("rollback_failed_ids", []),
                    correlation_id=correlation_id,
                )
        return result


class MassEditFlow:
    """
    Orchestrates the mass-edit flow.

    Flow:
    1. Instruction → LLM → MassEditInstruction
    2. Instruction → deterministic matcher → MassEditProposal
    3. Review → user confirms the before/after rows (PAUSE)
    4. Apply → sequential updates/deletes

    The LLM never selects entries; the matcher does, on stored data.
    """

    def __init__(
        self,
        account_storage: AccountStorageInterface,
        category_storage: CategoryStorageInterface,
        tag_storage: TagStorageInterface,
        ledger_storage: LedgerStorageInterface,
        currency_service: CurrencyServiceInterface,
        extraction: Optional[ExtractionClient] = None,
        audit_logger: Optional[AuditLogger] = None,
        rate_limiter: Optional[RequestRateLimiter] = None,
        locks: Optional[ConfirmLockRegistry] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self._settings = settings or get_settings().pipeline
        self._accounts = account_storage
        self._categories = category_storage
        self._tags = tag_storage
        self._ledger = ledger_storage
        self._currency = currency_service
        self._extraction = extraction
        self._audit_logger = audit_logger
        self._rate_limiter = rate_limiter or RequestRateLimiter(
            self._settings.rate_limit_max_requests,
            self._settings.rate_limit_window_seconds,
        )
        self._locks = locks or ConfirmLockRegistry()

    def _rejected(self, user_id: str, kind: IssueKind, message: str) -> MassEditProposal:
        return MassEditProposal(
            user_id=user_id,
            success=False,
            issue=ReconciliationIssue(kind=kind, message=message),
        )

    async def propose(
        self,
        user_id: str,
        text: str,
        timezone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> MassEditProposal:
        correlation_id = correlation_id or create_correlation_id()

        if not self._rate_limiter.try_acquire(user_id):
            if self._audit_logger:
                await self._audit_logger.log_rate_limited(
                    user_id=user_id,
                    retry_after_seconds=self._rate_limiter.retry_after(user_id),
                    correlation_id=correlation_id,
                )
            return self._rejected(user_id, IssueKind.RATE_LIMITED, "слишком много запросов")
        if self._extraction is None:
            return self._rejected(user_id, IssueKind.EXTRACTION_FAILED, "extraction is not configured")

        lookups = await load_user_lookups(
            user_id,
            self._accounts,
            self._categories,
            self._tags,
            self._ledger,
            self._currency,
            self._settings.recent_history_limit,
        )
        try:
            instruction = await self._extraction.parse_mass_edit_instruction(
                text,
                lookups.category_names,
                lookups.tag_names,
                lookups.account_names,
                timezone or self._settings.default_timezone,
            )
        except ExtractionError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="extraction",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return self._rejected(user_id, IssueKind.EXTRACTION_FAILED, "не удалось разобрать команду")
        if not instruction.raw_text:
            instruction.raw_text = text

        entries = await self._ledger.list_entries(user_id)
        matcher = MassEditMatcher(
            lookups.book, lookups.categories, lookups.tags, lookups.known, self._settings
        )
        proposal = matcher.match(user_id, instruction, entries)

        if self._audit_logger:
            if proposal.success:
                await self._audit_logger.log_mass_edit_proposed(
                    user_id=user_id,
                    proposal_id=proposal.proposal_id,
                    action=instruction.action.value,
                    match_count=proposal.match_count,
                    correlation_id=correlation_id,
                )
            else:
                await self._audit_logger.log_mass_edit_rejected(
                    user_id=user_id,
                    proposal_id=proposal.proposal_id,
                    issue_kind=proposal.issue.kind.value,
                    message=proposal.issue.message,
                    correlation_id=correlation_id,
                )
        return proposal

    async def apply(
        self,
        proposal: MassEditProposal,
        correlation_id: Optional[UUID] = None,
    ) -> MassEditApplyResult:
        """Apply a confirmed proposal row by row."""
        correlation_id = correlation_id or create_correlation_id()
        if not proposal.success or not proposal.rows:
            return MassEditApplyResult(
                proposal_id=proposal.proposal_id,
                success=False,
                issue=proposal.issue or ReconciliationIssue(
                    kind=IssueKind.NO_MASS_EDIT_MATCHES,
                    message="нечего применять",
                ),
            )

        fingerprint = f"mass-edit:{proposal.user_id}:{proposal.proposal_id}"
        if not self._locks.acquire(fingerprint):
            if self._audit_logger:
                await self._audit_logger.log_duplicate_confirm(
                    user_id=proposal.user_id,
                    fingerprint=fingerprint,
                    correlation_id=correlation_id,
                )
            return MassEditApplyResult(
                proposal_id=proposal.proposal_id,
                success=False,
                issue=ReconciliationIssue(
                    kind=IssueKind.DUPLICATE_CONFIRM,
                    message="эти изменения уже применяются",
                ),
            )

        applied: list[str] = []
        failed: list[str] = []
        try:
            for row in proposal.rows:
                try:
                    if row.action == MassEditAction.DELETE:
                        if await self._ledger.delete_entry(row.transaction_id):
                            applied.append(row.transaction_id)
                        else:
                            failed.append(row.transaction_id)
                    else:
                        await self._ledger.update_entry(row.transaction_id, row.after or {})
                        applied.append(row.transaction_id)
                except Exception as e:
                    failed.append(row.transaction_id)
                    logger.error(
                        "mass_edit_row_failed",
                        transaction_id=row.transaction_id,
                        error=str(e),
                    )
                    if self._audit_logger:
                        await self._audit_logger.log_error(
                            error_type="mass_edit_row_failed",
                            error_message=str(e),
                            details={"transaction_id": row.transaction_id},
                            correlation_id=correlation_id,
                        )
        finally:
            self._locks.release(fingerprint)

        if self._audit_logger:
            await self._audit_logger.log_mass_edit_applied(
                user_id=proposal.user_id,
                proposal_id=proposal.proposal_id,
                applied=len(applied),
                failed=len(failed),
                correlation_id=correlation_id,
            )
        return MassEditApplyResult(
            proposal_id=proposal.proposal_id,
            success=not failed,
            applied_ids=applied,
            failed_ids=failed,
            issue=None if not failed else ReconciliationIssue(
                kind=IssueKind.COMMIT_FAILED,
                message=f"не удалось применить {len(failed)} из {len(proposal.rows)}",
                details={"failed_ids": failed},
            ),
        )


def create_app_components(
    backend: Optional[InMemoryBackend] = None,
    extraction: Optional[ExtractionClient] = None,
    currency_service: Optional[CurrencyServiceInterface] = None,
    use_gemini: bool = True,
) -> tuple[ReconciliationFlow, MassEditFlow, InMemoryBackend]:
    """
    Factory function to create all application components.

    Args:
        backend: Shared in-memory backend; a fresh one when None.
        extraction: Extraction collaborator; Gemini when None and use_gemini.
        currency_service: Currency support; static rates when None.
        use_gemini: Whether to try initializing the Gemini agent.
                    Set to False for testing without credentials.

    Returns:
        (reconciliation_flow, mass_edit_flow, backend)
    """
    backend = backend or InMemoryBackend()
    settings = get_settings().pipeline

    if extraction is None and use_gemini:
        try:
            extraction = GeminiExtractionAgent()
        except Exception as e:
            # Credentials not configured - continue without extraction
            logger.warning("extraction_not_configured", error=str(e))
            extraction = None

    currency_service = currency_service or StaticCurrencyService()
    audit_logger = AuditLogger(InMemoryAuditStorage(backend))
    rate_limiter = RequestRateLimiter(
        settings.rate_limit_max_requests,
        settings.rate_limit_window_seconds,
    )
    locks = ConfirmLockRegistry()

    storages = dict(
        account_storage=InMemoryAccountStorage(backend),
        category_storage=InMemoryCategoryStorage(backend),
        tag_storage=InMemoryTagStorage(backend),
        ledger_storage=InMemoryLedgerStorage(backend),
        currency_service=currency_service,
    )
    reconciliation_flow = ReconciliationFlow(
        **storages,
        extraction=extraction,
        audit_logger=audit_logger,
        rate_limiter=rate_limiter,
        locks=locks,
        settings=settings,
    )
    mass_edit_flow = MassEditFlow(
        **storages,
        extraction=extraction,
        audit_logger=audit_logger,
        rate_limiter=rate_limiter,
        locks=locks,
        settings=settings,
    )
    return reconciliation_flow, mass_edit_flow, backend
