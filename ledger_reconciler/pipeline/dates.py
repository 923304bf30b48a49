"""
Date Stabilizer

Picks one transaction date per candidate.

Non-image batches, per candidate:
    explicit date in the text > full date pattern in the text
    > extractor date > today
and a chosen date more than `future_date_tolerance_days` ahead with no
future-intent wording that is also more than `date_clamp_window_days`
away from the batch's dominant date is clamped to the dominant date.

Image batches: the dominant image/caption date wins outright.

Dominant date: the calendar day occurring most often among the batch's
extracted dates, first occurrence wins ties.
"""

from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import structlog

from ledger_reconciler.config import PipelineSettings, get_settings
from ledger_reconciler.models.candidate import BatchContext, Candidate
from ledger_reconciler.pipeline.merger import batch_text, partition_batches
from ledger_reconciler.text.dates import (
    extract_explicit_date,
    extract_full_date,
    has_future_intent,
    local_today,
    noon_utc,
    utc_day,
)


logger = structlog.get_logger(__name__)


def dominant_day(dates: list[Optional[datetime]]) -> Optional[date]:
    """Most frequent UTC calendar day; ties keep the first seen."""
    days = [utc_day(d) for d in dates if d is not None]
    if not days:
        return None
    counts = Counter(days)
    best = max(counts.values())
    return next(day for day in days if counts[day] == best)


class DateStabilizer:
    """Assigns transaction dates batch by batch."""

    def __init__(
        self,
        context: BatchContext,
        settings: Optional[PipelineSettings] = None,
    ):
        self._context = context
        self._settings = settings or get_settings().pipeline

    @property
    def _tz(self) -> str:
        return self._context.timezone or self._settings.default_timezone

    def stabilize(self, candidates: list[Candidate]) -> list[Candidate]:
        result: list[Candidate] = []
        for batch in partition_batches(candidates):
            if self._context.is_image:
                self._stabilize_image(batch)
            else:
                self._stabilize_text(batch)
            result.extend(batch)
        return result

    def _today(self) -> datetime:
        return noon_utc(local_today(self._context.now, self._tz))

    def _is_spurious_future(self, value: datetime, text: str) -> bool:
        now = self._context.now
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        limit = now + timedelta(days=self._settings.future_date_tolerance_days)
        return value > limit and not has_future_intent(text)

    def _stabilize_image(self, batch: list[Candidate]) -> None:
        caption = self._context.text or batch_text(batch)
        chosen = extract_explicit_date(caption, self._context.now, self._tz)
        if chosen is None and self._context.image_date is not None:
            chosen = noon_utc(utc_day(self._context.image_date))
        if chosen is None:
            day = dominant_day([c.transaction_date for c in batch])
            chosen = noon_utc(day) if day else self._today()
        for candidate in batch:
            candidate.transaction_date = chosen

    def _stabilize_text(self, batch: list[Candidate]) -> None:
        text = batch_text(batch)
        if self._context.text and self._context.text not in text:
            text = f"{self._context.text}\n{text}"
        explicit = extract_explicit_date(text, self._context.now, self._tz)
        full = extract_full_date(text)

        day = dominant_day([c.transaction_date for c in batch])
        dominant = noon_utc(day) if day else self._today()
        if self._is_spurious_future(dominant, text):
            dominant = self._today()

        window = timedelta(days=self._settings.date_clamp_window_days)
        for candidate in batch:
            chosen = explicit or full or candidate.transaction_date or self._today()
            if self._is_spurious_future(chosen, text) and abs(chosen - dominant) > window:
                logger.info(
                    "future_date_clamped",
                    chosen=chosen.isoformat(),
                    dominant=dominant.isoformat(),
                )
                chosen = dominant
            candidate.transaction_date = chosen
