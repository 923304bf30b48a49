"""
Category & Tag Resolution

Binds category_id from the category mention (same fuzzy matching as
accounts, "uncategorized" fallback) and resolves the tag mention against
the user's tags.

Tag thresholds (similarity = 1 - distance / longest length; only tags with
similarity >= 0.6 are considered at all):
- best >= 0.75 or confidence >= 0.8  -> existing tag
- best >= 0.6 or 0.5 <= confidence   -> existing tag, as a suggestion
- confidence >= 0.6                  -> new tag (created at commit time)
- otherwise                          -> no tag
"""

from typing import Optional

import structlog

from ledger_reconciler.config import PipelineSettings, get_settings
from ledger_reconciler.models.candidate import Candidate, Direction
from ledger_reconciler.models.ledger import Category, ResolvedTag, Tag
from ledger_reconciler.text.normalize import best_match, fold, normalize_tag, tag_similarity


logger = structlog.get_logger(__name__)


STRONG_TAG_CONFIDENCE = 0.8
WEAK_TAG_CONFIDENCE = 0.5


def resolve_category_id(
    mention: Optional[str],
    categories: list[Category],
    direction: Direction,
    settings: Optional[PipelineSettings] = None,
) -> Optional[str]:
    """Best category id for a mention; categories of the other direction are skipped."""
    settings = settings or get_settings().pipeline
    usable = [c for c in categories if c.direction in (None, direction)]
    return best_match(
        mention,
        ((c.id, c.name, ()) for c in usable),
        max_distance=settings.max_fuzzy_distance,
        max_translit_distance=settings.max_translit_distance,
        short_mention_guard=settings.short_mention_guard,
    )


def find_uncategorized(
    categories: list[Category],
    direction: Direction,
    settings: Optional[PipelineSettings] = None,
) -> Optional[Category]:
    settings = settings or get_settings().pipeline
    target = fold(settings.uncategorized_name)
    matches = [c for c in categories if fold(c.name) == target]
    for category in matches:
        if category.direction == direction:
            return category
    return matches[0] if matches else None


def resolve_tag(
    mention: Optional[str],
    confidence: Optional[float],
    tags: list[Tag],
    settings: Optional[PipelineSettings] = None,
) -> ResolvedTag:
    settings = settings or get_settings().pipeline
    normalized = normalize_tag(mention)
    if not normalized:
        return ResolvedTag(status="none")
    conf = confidence or 0.0

    best: Optional[Tag] = None
    best_score = 0.0
    for tag in tags:
        score = max(
            [tag_similarity(normalized, tag.name)]
            + [tag_similarity(normalized, alias) for alias in tag.aliases]
        )
        if score > best_score:
            best, best_score = tag, score

    # Tags below the suggestion similarity are not candidates at all
    if best_score < settings.tag_suggest_similarity:
        best = None

    if best is not None:
        if best_score >= settings.tag_match_similarity or conf >= STRONG_TAG_CONFIDENCE:
            return ResolvedTag(status="matched", tag_id=best.id, name=best.name, similarity=best_score)
        if best_score >= settings.tag_suggest_similarity or conf >= WEAK_TAG_CONFIDENCE:
            return ResolvedTag(status="suggested", tag_id=best.id, name=best.name, similarity=best_score)

    if conf >= settings.tag_new_confidence:
        return ResolvedTag(
            status="new",
            name=normalized[: settings.max_tag_name_length].strip(),
            similarity=best_score,
        )
    return ResolvedTag(status="none", similarity=best_score)


class CatalogResolver:
    """Resolves categories and tags of a batch in place."""

    def __init__(
        self,
        categories: list[Category],
        tags: list[Tag],
        settings: Optional[PipelineSettings] = None,
    ):
        self._categories = categories
        self._tags = tags
        self._settings = settings or get_settings().pipeline

    def resolve(self, candidates: list[Candidate]) -> list[Candidate]:
        for candidate in candidates:
            self._resolve_category(candidate)
            self._resolve_tag(candidate)
        return candidates

    def _resolve_category(self, candidate: Candidate) -> None:
        if candidate.is_transfer:
            candidate.category = None
            candidate.category_id = None
            return

        known = {c.id: c for c in self._categories}
        if candidate.category_id in known:
            candidate.category = known[candidate.category_id].name
            return

        category_id = resolve_category_id(
            candidate.category, self._categories, candidate.direction, self._settings
        )
        if category_id is None:
            fallback = find_uncategorized(self._categories, candidate.direction, self._settings)
            category_id = fallback.id if fallback else None
        candidate.category_id = category_id
        candidate.category = known[category_id].name if category_id in known else candidate.category

    def _resolve_tag(self, candidate: Candidate) -> None:
        if candidate.tag_id and any(t.id == candidate.tag_id for t in self._tags):
            return
        resolved = resolve_tag(
            candidate.normalized_tag or candidate.tag_text,
            candidate.tag_confidence,
            self._tags,
            self._settings,
        )
        if resolved.status in ("matched", "suggested"):
            candidate.tag_id = resolved.tag_id
            candidate.tag_name = resolved.name
            candidate.tag_is_new = False
        elif resolved.is_new:
            candidate.tag_id = None
            candidate.tag_name = resolved.name
            candidate.tag_is_new = True
        else:
            candidate.tag_id = None
            candidate.tag_name = None
            candidate.tag_is_new = False
        if resolved.status != "none":
            logger.debug("tag_resolved", status=resolved.status, tag=resolved.name)
