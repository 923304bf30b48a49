"""
Batch Validation

DESIGN DECISION: Validation is a gate, not a fixer.

missing_fields() is a pure check of one candidate against the ledger
invariants. The batch validator runs it left to right and stops at the
FIRST candidate that cannot be committed; the whole batch is held back
so the user gets one coherent correction prompt instead of a half-saved
batch.

Reasons collected by earlier stages (unsupported currency, no holdings,
missing rate) are reported together with the structural ones.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for the user to correct.
"""

from typing import Optional

from ledger_reconciler.models.candidate import Candidate, IssueKind, ReconciliationIssue
from ledger_reconciler.models.ledger import BatchValidationResult


REASON_AMOUNT = "сумма"
REASON_CURRENCY = "валюта"
REASON_ACCOUNT = "счёт"
REASON_FROM_ACCOUNT = "счёт отправителя"
REASON_TO_ACCOUNT = "счёт получателя"
REASON_BOTH_OUTSIDE = "оба счёта «Вне Wallet»"
REASON_SAME_ACCOUNT = "счета отправителя и получателя совпадают"
REASON_CONVERT_CURRENCY = "валюта конвертации"
REASON_CONVERTED_AMOUNT = "сумма конвертации"


def missing_fields(
    candidate: Candidate,
    sentinel_account_id: Optional[str] = None,
) -> list[str]:
    """
    Human-readable reasons the candidate cannot be committed.

    Empty list means the candidate satisfies every ledger invariant.
    """
    missing: list[str] = []

    if candidate.amount is None or candidate.amount <= 0:
        missing.append(REASON_AMOUNT)
    if not candidate.currency:
        missing.append(REASON_CURRENCY)

    if not candidate.is_transfer:
        if not candidate.account_id or candidate.account_id == sentinel_account_id:
            missing.append(REASON_ACCOUNT)
        return missing

    if not candidate.account_id:
        missing.append(REASON_FROM_ACCOUNT)
    if not candidate.to_account_id:
        missing.append(REASON_TO_ACCOUNT)

    if candidate.account_id and candidate.to_account_id:
        both_outside = (
            sentinel_account_id is not None
            and candidate.account_id == sentinel_account_id
            and candidate.to_account_id == sentinel_account_id
        )
        named_both = candidate.meta.from_outside_explicit and candidate.meta.to_outside_explicit
        if both_outside and not named_both:
            missing.append(REASON_BOTH_OUTSIDE)
        elif (
            not both_outside
            and not candidate.exchange_like
            and candidate.account_id == candidate.to_account_id
        ):
            missing.append(REASON_SAME_ACCOUNT)

    if candidate.exchange_like:
        if not candidate.convert_to_currency or candidate.convert_to_currency == candidate.currency:
            missing.append(REASON_CONVERT_CURRENCY)
        if candidate.converted_amount is None or candidate.converted_amount <= 0:
            missing.append(REASON_CONVERTED_AMOUNT)

    return missing


class CandidateValidator:
    """
    Validates a resolved batch.

    Stateless apart from the sentinel account id of the user.
    """

    def __init__(self, sentinel_account_id: Optional[str] = None):
        self._sentinel_account_id = sentinel_account_id

    def check(self, candidate: Candidate) -> tuple[list[str], list[ReconciliationIssue]]:
        """(reasons, issues) for one candidate, stage issues first."""
        reasons = list(candidate.meta.missing)
        issues = list(candidate.meta.issues)

        structural = [
            reason for reason in missing_fields(candidate, self._sentinel_account_id)
            if reason not in reasons
        ]
        if structural:
            reasons.extend(structural)
            issues.append(ReconciliationIssue(
                kind=IssueKind.MISSING_CRITICAL_FIELDS,
                message="не хватает: " + ", ".join(structural),
                details={"missing": structural},
            ))
        return reasons, issues

    def validate_batch(self, candidates: list[Candidate]) -> BatchValidationResult:
        """
        Stop at the first candidate with missing fields.

        An empty batch is invalid: there is nothing to commit.
        """
        if not candidates:
            return BatchValidationResult(
                is_valid=False,
                missing=[REASON_AMOUNT],
                issues=[ReconciliationIssue(
                    kind=IssueKind.MISSING_CRITICAL_FIELDS,
                    message="не найдено ни одной операции",
                )],
            )

        for index, candidate in enumerate(candidates):
            reasons, issues = self.check(candidate)
            if reasons:
                return BatchValidationResult(
                    is_valid=False,
                    failed_index=index,
                    missing=reasons,
                    issues=issues,
                )

        return BatchValidationResult(is_valid=True)

    def get_user_friendly_summary(
        self,
        result: BatchValidationResult,
        total: Optional[int] = None,
    ) -> str:
        """
        Short prompt telling the user what to add.

        This is what the chat layer shows next to the held draft.
        """
        if result.is_valid:
            return "✅ Всё заполнено, можно сохранять."

        lines = []
        if result.failed_index is not None and total and total > 1:
            lines.append(f"❌ Операция {result.failed_index + 1} из {total}:")
        else:
            lines.append("❌ Не хватает данных:")

        for issue in result.issues:
            lines.append(f"   • {issue.message}")

        lines.append("")
        lines.append("Напишите недостающее одним сообщением, остальное сохранится.")
        return "\n".join(lines)
