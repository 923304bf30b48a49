"""Tests for committing batches and compensating on failure."""

import asyncio
from decimal import Decimal

import pytest

from ledger_reconciler.models.candidate import IssueKind
from ledger_reconciler.models.ledger import Account, AccountAsset, Tag
from ledger_reconciler.pipeline import BatchCommitter
from ledger_reconciler.services.storage import (
    InMemoryBackend,
    InMemoryLedgerStorage,
    InMemoryTagStorage,
    StorageError,
)

from tests.conftest import USER_ID, candidate


class FlakyLedgerStorage(InMemoryLedgerStorage):
    """Ledger storage that fails on the n-th create (1-based)."""

    def __init__(self, backend, fail_on: int, fail_deletes: bool = False):
        super().__init__(backend)
        self._fail_on = fail_on
        self._fail_deletes = fail_deletes
        self.creates = 0

    async def create_entry(self, payload):
        self.creates += 1
        if self.creates == self._fail_on:
            raise StorageError("disk full")
        return await super().create_entry(payload)

    async def delete_entry(self, entry_id):
        if self._fail_deletes:
            raise StorageError("read-only")
        return await super().delete_entry(entry_id)


class FlakyTagStorage(InMemoryTagStorage):
    """Tag storage whose n-th usage increment (1-based) fails."""

    def __init__(self, backend, fail_increment_on: int):
        super().__init__(backend)
        self._fail_on = fail_increment_on
        self.increments = 0

    async def increment_usage(self, tag_id):
        self.increments += 1
        if self.increments == self._fail_on:
            raise StorageError("counter unavailable")
        return await super().increment_usage(tag_id)


@pytest.fixture
def backend() -> InMemoryBackend:
    backend = InMemoryBackend()
    backend.add_account(USER_ID, Account(
        id="mono", name="Monobank", assets=[AccountAsset(currency="UAH", amount=Decimal("1000"))],
    ))
    backend.add_account(USER_ID, Account(
        id="privat", name="Privat", assets=[AccountAsset(currency="USD", amount=Decimal("10"))],
    ))
    return backend


def _batch():
    return [
        candidate("expense", 100, "UAH", account_id="mono", tag_name="отпуск", tag_is_new=True),
        candidate("expense", 50, "UAH", account_id="mono", tag_name="Отпуск", tag_is_new=True),
        candidate("income", 5, "USD", account_id="privat"),
    ]


def _balance(backend, account_id, currency):
    return backend.find_account(account_id).balance(currency)


class TestBatchCommitter:
    """Tests for BatchCommitter."""

    def test_commits_every_candidate(self, backend):
        """Test one entry per candidate, in order, with balances applied."""
        committer = BatchCommitter(InMemoryLedgerStorage(backend), InMemoryTagStorage(backend))
        result = asyncio.run(committer.commit(USER_ID, _batch()))

        assert result.success
        assert [e.amount for e in result.entries] == [Decimal("100"), Decimal("50"), Decimal("5")]
        assert len(backend.entries) == 3
        assert _balance(backend, "mono", "UAH") == Decimal("850")
        assert _balance(backend, "privat", "USD") == Decimal("15")
        assert result.review.entry_ids == [e.id for e in result.entries]

    def test_new_tag_is_created_once(self, backend):
        """Test a new tag shared by two candidates is created once and counted twice."""
        committer = BatchCommitter(InMemoryLedgerStorage(backend), InMemoryTagStorage(backend))
        result = asyncio.run(committer.commit(USER_ID, _batch()))

        assert len(result.created_tags) == 1
        tag = backend.tags[result.created_tags[0].id]
        assert tag.usage_count == 2
        assert result.entries[0].tag_id == result.entries[1].tag_id == tag.id
        assert result.entries[2].tag_id is None

    def test_existing_tag_is_reused(self, backend):
        """Test a tag created concurrently is reused instead of failing."""
        existing = backend.add_tag(USER_ID, Tag(name="отпуск"))
        committer = BatchCommitter(InMemoryLedgerStorage(backend), InMemoryTagStorage(backend))
        result = asyncio.run(committer.commit(USER_ID, _batch()[:1]))

        assert result.success
        assert result.entries[0].tag_id == existing.id
        assert result.created_tags == []

    def test_failure_rolls_back_everything(self, backend):
        """Test a failing write leaves the ledger as it was."""
        ledger = FlakyLedgerStorage(backend, fail_on=3)
        committer = BatchCommitter(ledger, InMemoryTagStorage(backend))
        result = asyncio.run(committer.commit(USER_ID, _batch()))

        assert not result.success
        assert result.rolled_back
        assert result.issue.kind == IssueKind.COMMIT_FAILED
        assert result.issue.details["failed_index"] == 2
        assert len(result.issue.details["deleted_ids"]) == 2
        assert backend.entries == {}
        assert backend.tags == {}
        assert _balance(backend, "mono", "UAH") == Decimal("1000")
        assert _balance(backend, "privat", "USD") == Decimal("10")

    def test_unknown_account_fails_the_batch(self, backend):
        """Test a storage error on the first write reports index 0."""
        committer = BatchCommitter(InMemoryLedgerStorage(backend), InMemoryTagStorage(backend))
        batch = [candidate("expense", 10, "UAH", account_id="ghost")]
        result = asyncio.run(committer.commit(USER_ID, batch))

        assert not result.success
        assert result.issue.details["failed_index"] == 0
        assert backend.entries == {}

    def test_failed_rollback_is_reported(self, backend):
        """Test entries that could not be deleted are listed."""
        ledger = FlakyLedgerStorage(backend, fail_on=2, fail_deletes=True)
        committer = BatchCommitter(ledger, InMemoryTagStorage(backend))
        result = asyncio.run(committer.commit(USER_ID, _batch()))

        assert not result.success
        assert not result.rolled_back
        assert len(result.issue.details["rollback_failed_ids"]) == 1
        assert len(backend.entries) == 1

    def test_failed_batch_can_be_committed_again(self, backend):
        """Test a rolled-back batch succeeds when confirmed again unchanged."""
        ledger = FlakyLedgerStorage(backend, fail_on=2)
        committer = BatchCommitter(ledger, InMemoryTagStorage(backend))
        batch = _batch()

        first = asyncio.run(committer.commit(USER_ID, batch))
        assert not first.success
        assert backend.tags == {}
        assert all(c.tag_id is None for c in batch)

        second = asyncio.run(committer.commit(USER_ID, batch))
        assert second.success
        assert len(backend.entries) == 3
        assert len(second.created_tags) == 1
        assert backend.tags[second.created_tags[0].id].usage_count == 2

    def test_failed_usage_count_is_reverted(self, backend):
        """Test a failing usage increment reports its step and restores older tags."""
        existing = backend.add_tag(USER_ID, Tag(name="отпуск", usage_count=3))
        tags = FlakyTagStorage(backend, fail_increment_on=2)
        committer = BatchCommitter(InMemoryLedgerStorage(backend), tags)
        batch = [
            candidate("expense", 100, "UAH", account_id="mono", tag_id=existing.id),
            candidate("expense", 50, "UAH", account_id="mono", tag_id=existing.id),
        ]
        result = asyncio.run(committer.commit(USER_ID, batch))

        assert not result.success
        assert result.rolled_back
        assert result.issue.details["failed_step"] == "increment_usage"
        assert result.issue.details["failed_index"] == 1
        assert backend.tags[existing.id].usage_count == 3
        assert backend.entries == {}
        assert _balance(backend, "mono", "UAH") == Decimal("1000")
