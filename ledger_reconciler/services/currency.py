"""
Currency Support Service

Answers two questions for the pipeline: which currency codes exist at all
(fiat and crypto), and how much one amount is worth in another currency.

DESIGN DECISION: Rates are an external collaborator. A missing rate is a
normal outcome (convert() returns None) and the caller turns it into a
RATE_LOOKUP_FAILED issue; it is never an exception.
"""

from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pydantic import BaseModel, Field


FIAT_CURRENCIES = frozenset({
    "USD", "EUR", "UAH", "RUB", "GBP", "PLN", "SEK", "NOK", "DKK", "CHF",
    "JPY", "CNY", "CAD", "AUD", "CZK", "BRL", "INR", "MXN", "KRW",
})

CRYPTO_CURRENCIES = frozenset({
    "BTC", "ETH", "USDT", "USDC", "TON", "SOL", "BNB", "XRP", "ADA",
    "DOGE", "LINK", "TRX", "LTC", "DOT",
})

FIAT_QUANTUM = Decimal("0.01")
CRYPTO_QUANTUM = Decimal("0.00000001")


class KnownCurrencies(BaseModel):
    """The globally supported currency set."""

    fiat: set[str] = Field(default_factory=set)
    crypto: set[str] = Field(default_factory=set)

    @property
    def all(self) -> set[str]:
        return self.fiat | self.crypto

    def is_supported(self, code: Optional[str]) -> bool:
        return bool(code) and code.upper() in self.all

    def is_crypto(self, code: Optional[str]) -> bool:
        return bool(code) and code.upper() in self.crypto


class CurrencyServiceInterface(ABC):
    """Currency support collaborator."""

    @abstractmethod
    async def get_known_currencies(self) -> KnownCurrencies:
        pass

    @abstractmethod
    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
    ) -> Optional[Decimal]:
        """
        Convert an amount.

        Returns:
            The converted amount, or None when no rate is available
        """
        pass


class StaticCurrencyService(CurrencyServiceInterface):
    """
    Currency service backed by a fixed table of USD rates.

    `usd_rates` maps a code to the price of one unit in USD. Conversion
    goes through USD: amount * rate(from) / rate(to).
    """

    def __init__(
        self,
        usd_rates: Optional[dict[str, Decimal]] = None,
        fiat: Optional[set[str]] = None,
        crypto: Optional[set[str]] = None,
    ):
        self._rates = {k.upper(): Decimal(str(v)) for k, v in (usd_rates or {}).items()}
        self._rates.setdefault("USD", Decimal("1"))
        self._known = KnownCurrencies(
            fiat=set(fiat if fiat is not None else FIAT_CURRENCIES),
            crypto=set(crypto if crypto is not None else CRYPTO_CURRENCIES),
        )

    async def get_known_currencies(self) -> KnownCurrencies:
        return self._known.model_copy(deep=True)

    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
    ) -> Optional[Decimal]:
        source = (from_currency or "").upper()
        target = (to_currency or "").upper()
        if not source or not target:
            return None
        if source == target:
            return amount
        from_rate = self._rates.get(source)
        to_rate = self._rates.get(target)
        if not from_rate or not to_rate:
            return None
        converted = amount * from_rate / to_rate
        quantum = CRYPTO_QUANTUM if self._known.is_crypto(target) else FIAT_QUANTUM
        return converted.quantize(quantum, rounding=ROUND_HALF_UP)
