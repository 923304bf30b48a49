"""End-to-end tests for the reconciliation and mass-edit flows."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from io import BytesIO

import pytest
from PIL import ExifTags, Image

from ledger_reconciler.agents import ExtractionError
from ledger_reconciler.audit import AuditLogger
from ledger_reconciler.config import PipelineSettings
from ledger_reconciler.models.audit import AuditEventType
from ledger_reconciler.models.candidate import Candidate, Direction, IssueKind
from ledger_reconciler.models.ledger import Account, AccountAsset, Category, LedgerEntryCreate
from ledger_reconciler.models.mass_edit import MassEditInstruction
from ledger_reconciler.orchestrator import (
    MassEditFlow,
    ReconciliationFlow,
    create_app_components,
    merge_correction,
)
from ledger_reconciler.services.guards import ConfirmLockRegistry, RequestRateLimiter
from ledger_reconciler.services.storage import (
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryBackend,
    InMemoryCategoryStorage,
    InMemoryLedgerStorage,
    InMemoryTagStorage,
)

from tests.conftest import USER_ID, ScriptedExtraction


def row(**fields) -> Candidate:
    return Candidate.model_validate(fields)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def backend() -> InMemoryBackend:
    backend = InMemoryBackend()
    backend.ensure_outside_account(USER_ID, "Вне Wallet")
    backend.add_account(USER_ID, Account(
        id="mono", name="Monobank", assets=[AccountAsset(currency="UAH", amount=Decimal("1000"))],
    ))
    backend.add_account(USER_ID, Account(
        id="privat", name="Privat", assets=[AccountAsset(currency="USD", amount=Decimal("10"))],
    ))
    backend.add_category(USER_ID, Category(id="cafe", name="Кафе", direction=Direction.EXPENSE))
    backend.add_category(USER_ID, Category(id="food", name="Продукты", direction=Direction.EXPENSE))
    backend.add_category(USER_ID, Category(id="none", name="Не выбрано"))
    return backend


def _storages(backend, rates):
    return dict(
        account_storage=InMemoryAccountStorage(backend),
        category_storage=InMemoryCategoryStorage(backend),
        tag_storage=InMemoryTagStorage(backend),
        ledger_storage=InMemoryLedgerStorage(backend),
        currency_service=rates,
    )


def make_flow(backend, rates, extraction, **kwargs) -> ReconciliationFlow:
    return ReconciliationFlow(
        **_storages(backend, rates),
        extraction=extraction,
        audit_logger=AuditLogger(InMemoryAuditStorage(backend)),
        settings=PipelineSettings(),
        **kwargs,
    )


def make_mass_edit_flow(backend, rates, extraction, **kwargs) -> MassEditFlow:
    return MassEditFlow(
        **_storages(backend, rates),
        extraction=extraction,
        audit_logger=AuditLogger(InMemoryAuditStorage(backend)),
        settings=PipelineSettings(),
        **kwargs,
    )


def _balance(backend, account_id, currency):
    return backend.find_account(account_id).balance(currency)


def _event_types(backend) -> list[AuditEventType]:
    return [e.event_type for e in backend.events]


class TestMergeCorrection:
    """Tests for merging a follow-up into a held candidate."""

    def test_only_filled_fields_are_copied(self):
        """Test blanks and zero amounts never overwrite the draft."""
        draft = row(direction="expense", amount=120, currency="UAH", account="Mono", account_id="mono")
        correction = row(direction="income", amount=0, currency="", description="кофе")
        changed = merge_correction(draft, correction)

        assert changed == ["description"]
        assert draft.direction == Direction.EXPENSE
        assert draft.amount == Decimal("120")
        assert draft.account_id == "mono"

    def test_new_mention_clears_resolved_id(self):
        """Test a changed account mention drops the stale account id."""
        draft = row(direction="expense", amount=5, account="Mono", account_id="mono")
        draft.meta.missing.append("счёт")
        merge_correction(draft, row(direction="expense", account="приват"))

        assert draft.account == "приват"
        assert draft.account_id is None
        assert draft.meta.missing == []

    def test_new_tag_resets_tag_resolution(self):
        """Test a new tag mention forgets the previously resolved tag."""
        draft = row(direction="expense", tag_text="отпуск", tag_id="t1", tag_name="отпуск")
        merge_correction(draft, row(direction="expense", tag_text="работа"))

        assert draft.tag_text == "работа"
        assert draft.tag_id is None
        assert draft.tag_name is None


class TestReconciliationFlow:
    """Tests for ReconciliationFlow."""

    def test_simple_purchase(self, backend, rates):
        """Test one purchase is resolved, confirmed and booked."""
        extraction = ScriptedExtraction([[
            row(direction="expense", amount=120, currency="грн", category="кафе", description="кофе"),
        ]])
        flow = make_flow(backend, rates, extraction)
        result = asyncio.run(flow.process_text(USER_ID, "купил кофе за 120 грн"))

        assert result.success
        c = result.session.candidates[0]
        assert c.direction == Direction.EXPENSE
        assert c.amount == Decimal("120")
        assert c.currency == "UAH"
        assert c.account_id == "mono"
        assert c.category_id == "cafe"
        assert c.meta.missing == []
        assert c.user_text == "купил кофе за 120 грн"

        commit = asyncio.run(flow.confirm(result.session))
        assert commit.success
        assert len(backend.entries) == 1
        assert _balance(backend, "mono", "UAH") == Decimal("880")
        assert AuditEventType.BATCH_COMMITTED in _event_types(backend)

    def test_exchange_becomes_one_transfer(self, backend, rates):
        """Test an exchange is booked as one converting transfer."""
        extraction = ScriptedExtraction([[
            row(direction="expense", amount=400, currency="UAH"),
            row(direction="income", amount=10, currency="USD"),
        ]])
        flow = make_flow(backend, rates, extraction)
        result = asyncio.run(flow.process_text(USER_ID, "обмен 400 грн на 10 usd"))

        assert result.success
        assert len(result.session.candidates) == 1
        transfer = result.session.candidates[0]
        assert transfer.direction == Direction.TRANSFER
        assert transfer.account_id == "mono"
        assert transfer.to_account_id == "privat"

        asyncio.run(flow.confirm(result.session))
        assert _balance(backend, "mono", "UAH") == Decimal("600")
        assert _balance(backend, "privat", "USD") == Decimal("20")

    def test_correction_completes_draft(self, backend, rates):
        """Test a blocked draft is held and a follow-up fixes it."""
        extraction = ScriptedExtraction([
            [row(direction="expense", amount=5, currency="USD", description="кофе")],
            [row(direction="expense", account="приват")],
        ])
        flow = make_flow(backend, rates, extraction)
        result = asyncio.run(flow.process_text(USER_ID, "заплатил 5 usd за кофе"))

        assert not result.success
        session = result.session
        assert session.failed_index == 0
        assert session.missing == ["на счёте Monobank нет валюты USD"]

        refused = asyncio.run(flow.confirm(session))
        assert not refused.success
        assert backend.entries == {}

        corrected = asyncio.run(flow.apply_correction(session, "с привата"))
        assert corrected.success
        assert session.candidates[0].account_id == "privat"
        assert session.is_ready
        assert AuditEventType.CORRECTION_MERGED in _event_types(backend)

        asyncio.run(flow.confirm(session))
        assert _balance(backend, "privat", "USD") == Decimal("5")

    def test_image_uses_photo_date(self, backend, rates):
        """Test an image batch takes the photo's day."""
        extraction = ScriptedExtraction([[
            row(direction="expense", amount=250, currency="UAH", transaction_date="2026-09-01"),
        ]])
        flow = make_flow(backend, rates, extraction)
        result = asyncio.run(flow.process_image(
            USER_ID, b"img", "image/jpeg",
            image_date=datetime(2026, 10, 1, 8, tzinfo=timezone.utc),
        ))

        assert result.success
        assert result.session.candidates[0].transaction_date == datetime(2026, 10, 1, 12, tzinfo=timezone.utc)
        assert extraction.calls == ["<image>"]

    def test_image_date_from_exif(self, backend, rates):
        """Test the capture time in the photo is used when no date is passed."""
        exif = Image.Exif()
        exif[ExifTags.Base.DateTime] = "2026:10:03 18:45:00"
        buf = BytesIO()
        Image.new("RGB", (8, 8)).save(buf, format="JPEG", exif=exif)
        extraction = ScriptedExtraction([[row(direction="expense", amount=90, currency="UAH")]])
        flow = make_flow(backend, rates, extraction)
        result = asyncio.run(flow.process_image(USER_ID, buf.getvalue(), "image/jpeg"))

        assert result.success
        assert result.session.context.image_date == datetime(2026, 10, 3, 18, 45, tzinfo=timezone.utc)
        assert result.session.candidates[0].transaction_date == datetime(2026, 10, 3, 12, tzinfo=timezone.utc)

    def test_rate_limited(self, backend, rates):
        """Test a second message in the window never reaches extraction."""
        extraction = ScriptedExtraction([
            [row(direction="expense", amount=1, currency="UAH")],
            [row(direction="expense", amount=2, currency="UAH")],
        ])
        limiter = RequestRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())
        flow = make_flow(backend, rates, extraction, rate_limiter=limiter)

        asyncio.run(flow.process_text(USER_ID, "1 грн"))
        result = asyncio.run(flow.process_text(USER_ID, "2 грн"))

        assert result.issue_kinds == ["rate_limited"]
        assert len(extraction.calls) == 1
        assert AuditEventType.RATE_LIMITED in _event_types(backend)

    def test_duplicate_confirm(self, backend, rates):
        """Test a confirm racing an in-flight one is refused."""
        extraction = ScriptedExtraction([[row(direction="expense", amount=10, currency="UAH")]])
        locks = ConfirmLockRegistry()
        flow = make_flow(backend, rates, extraction, locks=locks)
        session = asyncio.run(flow.process_text(USER_ID, "10 грн")).session

        locks.acquire(session.fingerprint())
        duplicate = asyncio.run(flow.confirm(session))
        assert duplicate.issue.kind == IssueKind.DUPLICATE_CONFIRM
        assert backend.entries == {}

        locks.release(session.fingerprint())
        assert asyncio.run(flow.confirm(session)).success
        assert len(backend.entries) == 1

    def test_extraction_error(self, backend, rates):
        """Test an extraction failure is reported as a value."""
        flow = make_flow(backend, rates, ScriptedExtraction([ExtractionError("boom")]))
        result = asyncio.run(flow.process_text(USER_ID, "что-то"))

        assert not result.success
        assert result.issues[0].kind == IssueKind.EXTRACTION_FAILED
        assert result.issues[0].message == "boom"
        assert AuditEventType.EXTRACTION_FAILED in _event_types(backend)

    def test_nothing_extracted(self, backend, rates):
        """Test an empty extraction is a failure, not an empty draft."""
        flow = make_flow(backend, rates, ScriptedExtraction([[]]))
        result = asyncio.run(flow.process_text(USER_ID, "привет"))
        assert result.issue_kinds == ["extraction_failed"]
        assert result.session is None

    def test_without_extraction(self):
        """Test the factory works without credentials."""
        flow, _, _ = create_app_components(use_gemini=False)
        result = asyncio.run(flow.process_text(USER_ID, "кофе 50"))
        assert result.issues[0].message == "extraction is not configured"


class TestMassEditFlow:
    """Tests for MassEditFlow."""

    @pytest.fixture
    def seeded(self, backend):
        ledger = InMemoryLedgerStorage(backend)
        day = datetime(2026, 10, 19, 12, tzinfo=timezone.utc)
        for amount, category_id in ((120, "cafe"), (80, "cafe"), (300, "food")):
            asyncio.run(ledger.create_entry(LedgerEntryCreate(
                user_id=USER_ID,
                direction=Direction.EXPENSE,
                amount=Decimal(amount),
                currency="UAH",
                account_id="mono",
                category_id=category_id,
                transaction_date=day,
            )))
        return backend

    def test_delete_single(self, seeded, rates):
        """Test a proposed delete is applied and the balance restored."""
        instruction = MassEditInstruction.model_validate(
            {"action": "delete", "mode": "single", "filter": {"amount": 120, "currency": "UAH"}}
        )
        flow = make_mass_edit_flow(seeded, rates, ScriptedExtraction(instruction=instruction))
        assert _balance(seeded, "mono", "UAH") == Decimal("500")

        proposal = asyncio.run(flow.propose(USER_ID, "удали 120 грн"))
        assert proposal.success
        assert proposal.match_count == 1

        result = asyncio.run(flow.apply(proposal))
        assert result.success
        assert len(seeded.entries) == 2
        assert _balance(seeded, "mono", "UAH") == Decimal("620")
        assert AuditEventType.MASS_EDIT_APPLIED in _event_types(seeded)

    def test_update_category(self, seeded, rates):
        """Test an update moves every matched entry."""
        instruction = MassEditInstruction.model_validate({
            "action": "update",
            "filter": {"category": "Кафе"},
            "update": {"category": "Продукты"},
        })
        flow = make_mass_edit_flow(seeded, rates, ScriptedExtraction(instruction=instruction))
        proposal = asyncio.run(flow.propose(USER_ID, "перенеси кафе в продукты"))
        assert proposal.match_count == 2

        asyncio.run(flow.apply(proposal))
        assert {e.category_id for e in seeded.entries.values()} == {"food"}

    def test_ambiguous_single_is_rejected(self, seeded, rates):
        """Test single mode with two matches is refused and audited."""
        instruction = MassEditInstruction.model_validate(
            {"action": "delete", "mode": "single", "filter": {"category": "Кафе"}}
        )
        flow = make_mass_edit_flow(seeded, rates, ScriptedExtraction(instruction=instruction))
        proposal = asyncio.run(flow.propose(USER_ID, "удали кафе"))

        assert proposal.issue.kind == IssueKind.AMBIGUOUS_MASS_EDIT_MATCH
        assert AuditEventType.MASS_EDIT_REJECTED in _event_types(seeded)
        assert asyncio.run(flow.apply(proposal)).success is False
        assert len(seeded.entries) == 3

    def test_row_failures_are_reported(self, seeded, rates):
        """Test rows whose entry vanished are listed as failed."""
        instruction = MassEditInstruction.model_validate(
            {"action": "delete", "filter": {"category": "Кафе"}}
        )
        flow = make_mass_edit_flow(seeded, rates, ScriptedExtraction(instruction=instruction))
        proposal = asyncio.run(flow.propose(USER_ID, "удали кафе"))
        gone = proposal.rows[0].transaction_id
        seeded.entries.pop(gone)

        result = asyncio.run(flow.apply(proposal))
        assert not result.success
        assert result.failed_ids == [gone]
        assert result.issue.kind == IssueKind.COMMIT_FAILED
        assert len(result.applied_ids) == 1

    def test_failed_update_is_audited(self, seeded, rates):
        """Test an update of a vanished entry is recorded as a system error."""
        instruction = MassEditInstruction.model_validate({
            "action": "update",
            "filter": {"amount": 300},
            "update": {"category": "Кафе"},
        })
        flow = make_mass_edit_flow(seeded, rates, ScriptedExtraction(instruction=instruction))
        proposal = asyncio.run(flow.propose(USER_ID, "перенеси 300 в кафе"))
        seeded.entries.pop(proposal.rows[0].transaction_id)

        result = asyncio.run(flow.apply(proposal))
        assert result.failed_ids == [proposal.rows[0].transaction_id]
        assert AuditEventType.SYSTEM_ERROR in _event_types(seeded)

    def test_duplicate_apply(self, seeded, rates):
        """Test an apply racing an in-flight one is refused."""
        instruction = MassEditInstruction.model_validate({"action": "delete", "filter": {"amount": 300}})
        locks = ConfirmLockRegistry()
        flow = make_mass_edit_flow(seeded, rates, ScriptedExtraction(instruction=instruction), locks=locks)
        proposal = asyncio.run(flow.propose(USER_ID, "удали 300"))

        locks.acquire(f"mass-edit:{USER_ID}:{proposal.proposal_id}")
        result = asyncio.run(flow.apply(proposal))
        assert result.issue.kind == IssueKind.DUPLICATE_CONFIRM
        assert len(seeded.entries) == 3

    def test_unparseable_instruction(self, seeded, rates):
        """Test an extraction failure is a rejected proposal."""
        flow = make_mass_edit_flow(seeded, rates, ScriptedExtraction())
        proposal = asyncio.run(flow.propose(USER_ID, "сделай что-нибудь"))

        assert proposal.issue.kind == IssueKind.EXTRACTION_FAILED
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in _event_types(seeded)
