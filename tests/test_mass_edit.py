"""Tests for the deterministic mass-edit matcher."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledger_reconciler.config import PipelineSettings
from ledger_reconciler.models.candidate import Direction, IssueKind
from ledger_reconciler.models.ledger import Category, LedgerEntry
from ledger_reconciler.models.mass_edit import MassEditAction, MassEditInstruction
from ledger_reconciler.queries import MassEditMatcher


DAY = datetime(2026, 10, 19, 9, tzinfo=timezone.utc)
CATEGORIES = [
    Category(id="cafe", name="Кафе", direction=Direction.EXPENSE),
    Category(id="food", name="Продукты", direction=Direction.EXPENSE),
]


def entry(entry_id: str, amount, currency: str = "UAH", **fields) -> LedgerEntry:
    values = {
        "user_id": "u",
        "direction": Direction.EXPENSE,
        "account_id": "mono",
        "transaction_date": DAY,
        **fields,
    }
    return LedgerEntry(id=entry_id, amount=Decimal(str(amount)), currency=currency, **values)


@pytest.fixture
def matcher(book, known, settings) -> MassEditMatcher:
    return MassEditMatcher(book, CATEGORIES, [], known, settings)


def _ids(entries) -> list[str]:
    return [e.id for e in entries]


class TestAmountTolerance:
    """Tests for the amount band."""

    def test_fiat_band(self, matcher):
        """Test 100.00 USD matches 100.004 but not 100.02."""
        entries = [entry("a", "100.004", "USD"), entry("b", "100.02", "USD"), entry("c", 100, "EUR")]
        instruction = MassEditInstruction.model_validate(
            {"action": "delete", "filter": {"amount": "100.00", "currency": "USD"}}
        )
        assert _ids(matcher.select(instruction, entries)) == ["a"]

    def test_crypto_band(self, matcher):
        """Test crypto amounts use the tight band."""
        entries = [entry("a", "0.00150001", "BTC"), entry("b", "0.0015001", "BTC")]
        instruction = MassEditInstruction.model_validate(
            {"action": "delete", "filter": {"amount": "0.0015", "currency": "btc"}}
        )
        assert _ids(matcher.select(instruction, entries)) == ["a"]

    def test_precise_filter_narrows_band(self, matcher):
        """Test a filter with more decimals than the band uses its own precision."""
        assert matcher.amount_tolerance("UAH", Decimal("1.125")) == Decimal("0.001")
        assert matcher.amount_tolerance("UAH", Decimal("100")) == Decimal("0.01")


class TestSelection:
    """Tests for filter evaluation."""

    def test_category_and_date(self, matcher):
        """Test named fields resolve to ids and dates match by day."""
        entries = [
            entry("a", 10, category_id="cafe"),
            entry("b", 20, category_id="food"),
            entry("c", 30, category_id="cafe", transaction_date=datetime(2026, 10, 1, tzinfo=timezone.utc)),
        ]
        instruction = MassEditInstruction.model_validate({
            "action": "delete",
            "filter": {"category": "кафе", "transactionDate": "2026-10-19"},
        })
        assert _ids(matcher.select(instruction, entries)) == ["a"]

    def test_account_filter_uses_id(self, matcher):
        """Test the account filter compares the entry's account id."""
        entries = [entry("a", 10, account_id="mono"), entry("b", 10, account_id="privat")]
        instruction = MassEditInstruction.model_validate(
            {"action": "delete", "filter": {"account": "приват"}}
        )
        assert _ids(matcher.select(instruction, entries)) == ["b"]

    def test_exclude(self, matcher):
        """Test excluded entries are removed from the selection."""
        entries = [
            entry("a", 10, category_id="cafe", description="Starbucks"),
            entry("b", 20, category_id="cafe", description="Aroma"),
        ]
        instruction = MassEditInstruction.model_validate({
            "action": "delete",
            "filter": {"category": "Кафе"},
            "exclude": {"description": "starbucks"},
        })
        assert _ids(matcher.select(instruction, entries)) == ["b"]

    def test_text_amounts_narrow_a_delete(self, matcher):
        """Test amounts in the instruction text intersect a filter without amount."""
        entries = [
            entry("a", 100, description="Такси Uklon"),
            entry("b", 50, description="такси"),
            entry("c", 70, description="Такси"),
        ]
        instruction = MassEditInstruction.model_validate({
            "action": "delete",
            "filter": {"description": "такси"},
            "rawText": "удали такси 100 грн и 50 грн",
        })
        assert _ids(matcher.select(instruction, entries)) == ["a", "b"]

    def test_empty_filter_needs_delete_all(self, matcher):
        """Test an empty filter selects nothing unless everything was asked for."""
        entries = [entry("a", 10), entry("b", 20)]
        assert matcher.select(MassEditInstruction(action="delete"), entries) == []
        everything = MassEditInstruction(action="delete", delete_all=True)
        assert _ids(matcher.select(everything, entries)) == ["a", "b"]


class TestProposal:
    """Tests for building proposals."""

    def test_update_rows(self, matcher):
        """Test update rows carry the snapshot and the resolved patch."""
        entries = [entry("a", 10, category_id="cafe"), entry("b", 20, category_id="food")]
        instruction = MassEditInstruction.model_validate({
            "action": "update",
            "filter": {"category": "Кафе"},
            "update": {"category": "Продукты", "amount": "12.5"},
        })
        proposal = matcher.match("u", instruction, entries)

        assert proposal.success
        assert proposal.match_count == 1
        row = proposal.rows[0]
        assert row.transaction_id == "a"
        assert row.action == MassEditAction.UPDATE
        assert row.before["category_id"] == "cafe"
        assert row.after == {"category_id": "food", "amount": "12.5"}

    def test_delete_rows_have_no_after(self, matcher):
        """Test delete rows carry only the snapshot."""
        instruction = MassEditInstruction.model_validate({"action": "delete", "filter": {"amount": 10}})
        proposal = matcher.match("u", instruction, [entry("a", 10)])
        assert proposal.rows[0].after is None

    def test_update_without_patch(self, matcher):
        """Test an update with nothing to change is rejected."""
        instruction = MassEditInstruction.model_validate({"action": "update", "filter": {"amount": 10}})
        proposal = matcher.match("u", instruction, [entry("a", 10)])
        assert proposal.issue.kind == IssueKind.MISSING_CRITICAL_FIELDS

    def test_ambiguous_single(self, matcher):
        """Test single mode refuses more than one match."""
        entries = [entry("a", 10, category_id="cafe"), entry("b", 20, category_id="cafe")]
        instruction = MassEditInstruction.model_validate(
            {"action": "delete", "mode": "single", "filter": {"category": "Кафе"}}
        )
        proposal = matcher.match("u", instruction, entries)
        assert not proposal.success
        assert proposal.issue.kind == IssueKind.AMBIGUOUS_MASS_EDIT_MATCH
        assert proposal.issue.details["match_count"] == 2

    def test_too_many(self, book, known):
        """Test the selection cap."""
        matcher = MassEditMatcher(book, CATEGORIES, [], known, PipelineSettings(mass_edit_max_matches=2))
        instruction = MassEditInstruction(action="delete", delete_all=True)
        proposal = matcher.match("u", instruction, [entry("a", 1), entry("b", 2), entry("c", 3)])
        assert proposal.issue.kind == IssueKind.TOO_MANY_MASS_EDIT_MATCHES

    def test_no_matches(self, matcher):
        """Test an empty selection is a failure."""
        instruction = MassEditInstruction.model_validate({"action": "delete", "filter": {"amount": 999}})
        proposal = matcher.match("u", instruction, [entry("a", 10)])
        assert proposal.issue.kind == IssueKind.NO_MASS_EDIT_MATCHES

    def test_unknown_name(self, matcher):
        """Test a filter naming an unknown account matches nothing."""
        instruction = MassEditInstruction.model_validate(
            {"action": "delete", "filter": {"account": "Sparkasse"}}
        )
        proposal = matcher.match("u", instruction, [entry("a", 10)])
        assert proposal.issue.kind == IssueKind.NO_MASS_EDIT_MATCHES
        assert proposal.issue.details == {"field": "account"}
