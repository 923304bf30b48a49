"""
Amount and currency mining from free text.

Every helper here is a pure function over a string so the heuristics can
be tuned against literal fixtures.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ConfigDict


CURRENCY_ALIASES: dict[str, str] = {
    # US dollar
    "$": "USD",
    "US$": "USD",
    "USD": "USD",
    "ДОЛ": "USD",
    "ДОЛ.": "USD",
    "ДОЛЛ": "USD",
    "ДОЛЛ.": "USD",
    "ДОЛЛАР": "USD",
    "ДОЛЛАРА": "USD",
    "ДОЛЛАРЫ": "USD",
    "ДОЛЛАРОВ": "USD",
    "БАКС": "USD",
    "БАКСА": "USD",
    "БАКСЫ": "USD",
    "БАКСОВ": "USD",
    "ЮСД": "USD",
    "DOL": "USD",
    "DLL": "USD",
    # Euro
    "€": "EUR",
    "EUR": "EUR",
    "ЕВРО": "EUR",
    "ЕВР": "EUR",
    # Hryvnia
    "₴": "UAH",
    "UAH": "UAH",
    "ГРН": "UAH",
    "ГРИВНА": "UAH",
    "ГРИВНЫ": "UAH",
    "ГРИВЕН": "UAH",
    "ГРИВНУ": "UAH",
    # Rouble
    "₽": "RUB",
    "RUB": "RUB",
    "RUR": "RUB",
    "РУБ": "RUB",
    "РУБЛЬ": "RUB",
    "РУБЛЯ": "RUB",
    "РУБЛЕЙ": "RUB",
    # Pound
    "£": "GBP",
    "GBP": "GBP",
    "ФУНТ": "GBP",
    "ФУНТОВ": "GBP",
    # Zloty
    "ЗЛОТЫЙ": "PLN",
    "ЗЛОТЫХ": "PLN",
    "ЗЛОТЫЕ": "PLN",
    "ЗЛ": "PLN",
    # Crypto
    "USDT": "USDT",
    "ТЕТЕР": "USDT",
    "ТЕЗЕР": "USDT",
    "TON": "TON",
    "ТОН": "TON",
    "BTC": "BTC",
    "БИТКОИН": "BTC",
    "БИТОК": "BTC",
    "ETH": "ETH",
    "ЭФИР": "ETH",
}

_CODE_RE = re.compile(r"^[A-Z][A-Z0-9]{1,9}$")
_MENTION_RE = re.compile(r"[A-Za-zА-Яа-яЁё$€₽₴£]{1,16}")

# "120 грн", "0.5 btc", "1 200,50 eur"
_AMOUNT_THEN_CURRENCY_RE = re.compile(
    r"(?<![\w.,])(\d+(?:[.,]\d+)?)\s*([A-Za-zА-Яа-яЁё$€₴₽£]{1,16}\.?)"
)
# "$120", "€ 15.5"
_SYMBOL_THEN_AMOUNT_RE = re.compile(r"([$€₴₽£])\s*(\d+(?:[.,]\d+)?)")


class AmountPair(BaseModel):
    """An amount+currency pair found in text."""
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str
    precision: int = 0
    position: int = 0


def normalize_currency_token(
    raw: Optional[str],
    supported: Optional[set[str]] = None,
) -> str:
    """
    Map a currency mention ('грн', '$', 'евро', 'usd') to its code.

    Returns '' for tokens that are not currencies. When `supported` is
    given, codes outside it are rejected as well.
    """
    compact = re.sub(r"\s+", "", str(raw or "")).upper().replace("Ё", "Е")
    if not compact:
        return ""

    alias = CURRENCY_ALIASES.get(compact)
    if alias:
        return alias if supported is None or alias in supported else ""

    token = re.sub(r"[^A-ZА-Я0-9]", "", compact)
    if not token:
        return ""
    alias = CURRENCY_ALIASES.get(token)
    if alias:
        return alias if supported is None or alias in supported else ""

    if _CODE_RE.match(token):
        if supported is None:
            return token
        return token if token in supported else ""
    return ""


def detect_currency_mentions(
    text: Optional[str],
    supported: Optional[set[str]] = None,
) -> set[str]:
    """All currency codes explicitly mentioned in the text."""
    found = set()
    for match in _MENTION_RE.finditer(text or ""):
        code = normalize_currency_token(match.group(0), supported)
        if code:
            found.add(code)
    return found


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        value = Decimal(str(raw).replace(" ", "").replace(",", "."))
    except InvalidOperation:
        return None
    return abs(value) if value.is_finite() else None


def decimal_places(value: Optional[Decimal]) -> int:
    """Number of digits after the decimal point (0 for integers)."""
    if value is None:
        return 0
    exponent = value.normalize().as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def extract_amount_pairs(
    text: Optional[str],
    supported: Optional[set[str]] = None,
) -> list[AmountPair]:
    """
    Amount+currency pairs in text order.

    Both "120 грн" and "$120" forms are recognized; amounts followed by
    a word that is not a currency are skipped.
    """
    source = text or ""
    pairs: list[AmountPair] = []
    taken: list[tuple[int, int]] = []

    for match in _SYMBOL_THEN_AMOUNT_RE.finditer(source):
        code = normalize_currency_token(match.group(1), supported)
        amount = parse_amount(match.group(2))
        if not code or amount is None or amount <= 0:
            continue
        pairs.append(AmountPair(
            amount=amount,
            currency=code,
            precision=decimal_places(amount),
            position=match.start(),
        ))
        taken.append(match.span())

    for match in _AMOUNT_THEN_CURRENCY_RE.finditer(source):
        if any(start <= match.start(1) < end for start, end in taken):
            continue
        code = normalize_currency_token(match.group(2), supported)
        amount = parse_amount(match.group(1))
        if not code or amount is None or amount <= 0:
            continue
        pairs.append(AmountPair(
            amount=amount,
            currency=code,
            precision=decimal_places(amount),
            position=match.start(),
        ))

    pairs.sort(key=lambda p: p.position)
    return pairs
