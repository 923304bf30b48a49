"""
Batch Committer

Creates one ledger entry per validated candidate, in order.

DESIGN DECISION: Commit-then-compensate instead of a store transaction.
The ledger store is not locked for the duration of a batch; if any write
fails, every entry already created for this batch is deleted again (and
tags created for it are removed), so the ledger ends as it was before the
batch started. The failure is reported as a single COMMIT_FAILED issue.

Usage counts added to tags that existed before the batch are taken back.

Rollback is best-effort: a delete that fails is logged and the remaining
deletes still run.
"""

from typing import Optional

import structlog

from ledger_reconciler.models.candidate import Candidate, IssueKind, ReconciliationIssue
from ledger_reconciler.models.ledger import (
    CommitResult,
    LedgerEntry,
    LedgerEntryCreate,
    ReviewState,
    Tag,
)
from ledger_reconciler.services.storage import (
    DuplicateError,
    LedgerStorageInterface,
    TagStorageInterface,
)
from ledger_reconciler.text.normalize import normalize_tag


logger = structlog.get_logger(__name__)


class BatchCommitter:
    """Writes a validated batch to the ledger."""

    def __init__(
        self,
        ledger_storage: LedgerStorageInterface,
        tag_storage: TagStorageInterface,
    ):
        self._ledger = ledger_storage
        self._tags = tag_storage

    async def _ensure_tag(
        self,
        user_id: str,
        candidate: Candidate,
        created_tags: dict[str, Tag],
    ) -> Optional[str]:
        """Tag id for the candidate, creating a new tag on first use."""
        if candidate.tag_id:
            return candidate.tag_id
        if not (candidate.tag_is_new and candidate.tag_name):
            return None

        key = normalize_tag(candidate.tag_name)
        if key in created_tags:
            return created_tags[key].id
        try:
            tag = await self._tags.create_tag(user_id, candidate.tag_name)
        except DuplicateError:
            # Created concurrently or already present: reuse it
            existing = [
                t for t in await self._tags.list_tags(user_id)
                if normalize_tag(t.name) == key
            ]
            if not existing:
                raise
            return existing[0].id
        created_tags[key] = tag
        return tag.id

    async def commit(self, user_id: str, candidates: list[Candidate]) -> CommitResult:
        """
        Write the batch. The candidates are never modified, so a failed
        batch can be confirmed again as it is.
        """
        created: list[LedgerEntry] = []
        created_tags: dict[str, Tag] = {}
        counted: list[str] = []
        step, index = "create_entry", 0

        try:
            for index, candidate in enumerate(candidates):
                step = "ensure_tag"
                tag_id = await self._ensure_tag(user_id, candidate, created_tags)
                step = "create_entry"
                payload = LedgerEntryCreate.from_candidate(user_id, candidate).model_copy(
                    update={"tag_id": tag_id}
                )
                created.append(await self._ledger.create_entry(payload))
            # Usage counts only once every entry exists
            step = "increment_usage"
            for index, entry in enumerate(created):
                if entry.tag_id:
                    await self._tags.increment_usage(entry.tag_id)
                    counted.append(entry.tag_id)
        except Exception as e:
            logger.warning(
                "commit_failed",
                user_id=user_id,
                step=step,
                failed_index=index,
                created=len(created),
                total=len(candidates),
                error=str(e),
            )
            deleted, failed = await self._rollback(
                created, list(created_tags.values()), counted
            )
            return CommitResult(
                success=False,
                issue=ReconciliationIssue(
                    kind=IssueKind.COMMIT_FAILED,
                    message=f"не удалось сохранить: {e}",
                    details={
                        "failed_index": index,
                        "failed_step": step,
                        "deleted_ids": deleted,
                        "rollback_failed_ids": failed,
                    },
                ),
                rolled_back=not failed,
            )

        logger.info("batch_committed", user_id=user_id, entries=len(created))
        return CommitResult(
            success=True,
            entries=created,
            created_tags=list(created_tags.values()),
            review=ReviewState(entry_ids=[e.id for e in created], current_index=0),
        )

    async def _rollback(
        self,
        entries: list[LedgerEntry],
        tags: list[Tag],
        counted: list[str],
    ) -> tuple[list[str], list[str]]:
        """Undo what this batch did. Returns (deleted entry ids, ids that failed)."""
        deleted: list[str] = []
        failed: list[str] = []
        for entry in reversed(entries):
            try:
                await self._ledger.delete_entry(entry.id)
                deleted.append(entry.id)
            except Exception as e:
                failed.append(entry.id)
                logger.error("commit_rollback_failed", entry_id=entry.id, error=str(e))

        # Tags created by this batch are deleted below; only older ones need un-counting
        new_ids = {tag.id for tag in tags}
        for tag_id in counted:
            if tag_id in new_ids:
                continue
            try:
                await self._tags.decrement_usage(tag_id)
            except Exception as e:
                failed.append(tag_id)
                logger.error("commit_rollback_failed", tag_id=tag_id, error=str(e))

        for tag in tags:
            try:
                await self._tags.delete_tag(tag.id)
            except Exception as e:
                failed.append(tag.id)
                logger.error("commit_rollback_failed", tag_id=tag.id, error=str(e))
        logger.info("commit_rolled_back", deleted=len(deleted), failed=len(failed))
        return deleted, failed
