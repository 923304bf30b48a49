"""
Text normalization and fuzzy name matching.

Small pure functions shared by the account, category and tag resolvers
and by the mass-edit matcher. Edit distance comes from rapidfuzz.
"""

import re
from typing import Hashable, Iterable, Optional, Sequence

from rapidfuzz.distance import Levenshtein


CYRILLIC_TO_LATIN = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "e",
    "ж": "zh", "з": "z", "и": "i", "й": "i", "к": "k", "л": "l", "м": "m",
    "н": "n", "о": "o", "п": "p", "р": "r", "с": "s", "т": "t", "у": "u",
    "ф": "f", "х": "h", "ц": "ts", "ч": "ch", "ш": "sh", "щ": "sch",
    "ъ": "", "ы": "y", "ь": "", "э": "e", "ю": "yu", "я": "ya",
    "і": "i", "ї": "i", "є": "e", "ґ": "g",
}

_CYRILLIC_RE = re.compile(r"[а-яёіїєґ]", re.IGNORECASE)
_TAG_STRIP_RE = re.compile(r"[^\w\s-]", re.UNICODE)
_SPACES_RE = re.compile(r"\s+")


def fold(text: Optional[str]) -> str:
    """Lower-case, fold ё→е and keep only letters and digits."""
    if not text:
        return ""
    lowered = text.lower().replace("ё", "е")
    return "".join(ch for ch in lowered if ch.isalnum())


def has_cyrillic(text: str) -> bool:
    return bool(_CYRILLIC_RE.search(text or ""))


def transliterate(text: str) -> str:
    """Cyrillic → Latin, everything else unchanged."""
    return "".join(CYRILLIC_TO_LATIN.get(ch, ch) for ch in (text or "").lower())


def levenshtein(a: str, b: str) -> int:
    return Levenshtein.distance(a or "", b or "")


def normalize_tag(text: Optional[str]) -> str:
    """Lower-case, keep letters/digits/spaces/hyphens, collapse spaces."""
    if not text:
        return ""
    cleaned = _TAG_STRIP_RE.sub(" ", text.lower().replace("ё", "е")).replace("_", " ")
    return _SPACES_RE.sub(" ", cleaned).strip()


def tag_similarity(a: str, b: str) -> float:
    """1 - distance / longest length; 0.0 when either side is empty."""
    a = normalize_tag(a)
    b = normalize_tag(b)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return 1.0 - levenshtein(a, b) / max(len(a), len(b))


def allowed_distance(mention: str, limit: int, short_mention_guard: bool = False) -> int:
    """
    Fuzzy budget for a mention.

    The full limit applies unless `short_mention_guard` is set, in which
    case mentions under 5 letters get at most 1 edit and mentions under 3
    get none.
    """
    if not short_mention_guard or len(mention) >= 5:
        return limit
    if len(mention) >= 3:
        return min(1, limit)
    return 0


def match_rank(
    mention: str,
    name: str,
    aliases: Sequence[str] = (),
    max_distance: int = 2,
    max_translit_distance: int = 3,
    short_mention_guard: bool = False,
) -> Optional[tuple[int, int]]:
    """
    Rank how well a free-text mention matches a name.

    Returns (tier, distance) where lower is better, or None when the
    mention does not match at all. Tiers:
        0 exact folded name
        1 containment either direction
        2 alias hit
        3 fuzzy against name/aliases
        4 fuzzy after transliteration
    """
    m = fold(mention)
    n = fold(name)
    if not m or not n:
        return None

    if m == n:
        return (0, 0)

    if len(m) >= 3 and len(n) >= 3 and (m in n or n in m):
        return (1, abs(len(m) - len(n)))

    folded_aliases = [a for a in (fold(alias) for alias in aliases) if a]
    for alias in folded_aliases:
        if alias == m or (len(alias) >= 3 and alias in m):
            return (2, 0)

    budget = allowed_distance(m, max_distance, short_mention_guard)
    best: Optional[int] = None
    for target in [n, *folded_aliases]:
        distance = levenshtein(m, target)
        if distance <= budget and (best is None or distance < best):
            best = distance
    if best is not None:
        return (3, best)

    if has_cyrillic(m) or has_cyrillic(n) or any(has_cyrillic(a) for a in folded_aliases):
        tm = transliterate(m)
        budget = allowed_distance(tm, max_translit_distance, short_mention_guard)
        for target in [n, *folded_aliases]:
            distance = levenshtein(tm, transliterate(target))
            if distance <= budget and (best is None or distance < best):
                best = distance
        if best is not None:
            return (4, best)

    return None


def best_match(
    mention: Optional[str],
    options: Iterable[tuple[Hashable, str, Sequence[str]]],
    max_distance: int = 2,
    max_translit_distance: int = 3,
    short_mention_guard: bool = False,
) -> Optional[Hashable]:
    """
    Pick the best option for a mention.

    `options` yields (key, name, aliases). Ties keep the first option.
    """
    if not mention or not fold(mention):
        return None
    best_key = None
    best_rank = None
    for key, name, aliases in options:
        rank = match_rank(
            mention,
            name,
            aliases,
            max_distance=max_distance,
            max_translit_distance=max_translit_distance,
            short_mention_guard=short_mention_guard,
        )
        if rank is not None and (best_rank is None or rank < best_rank):
            best_key, best_rank = key, rank
    return best_key
