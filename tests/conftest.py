"""
Shared fixtures for the reconciler tests.

No real API calls: extraction is scripted, storage is in memory and
currency rates come from a static table.
"""

from decimal import Decimal
from typing import Optional

import pytest

from ledger_reconciler.agents import ExtractionClient, ExtractionError
from ledger_reconciler.config import PipelineSettings
from ledger_reconciler.models.candidate import Candidate
from ledger_reconciler.models.ledger import Account, AccountAsset, AccountBook
from ledger_reconciler.models.mass_edit import MassEditInstruction
from ledger_reconciler.services.currency import (
    CRYPTO_CURRENCIES,
    FIAT_CURRENCIES,
    KnownCurrencies,
    StaticCurrencyService,
)


USER_ID = "user-1"
SUPPORTED = set(FIAT_CURRENCIES | CRYPTO_CURRENCIES)


def candidate(direction: str, amount=None, currency=None, batch: str = "b1", **fields) -> Candidate:
    """Raw candidate of one extraction call."""
    text = fields.pop("text", "")
    return Candidate.model_validate({
        "direction": direction,
        "amount": amount,
        "currency": currency,
        "raw_text": f"{text} [[BATCH:{batch}]]".strip(),
        **fields,
    })


def account(account_id: str, name: str, **holdings) -> Account:
    return Account(
        id=account_id,
        name=name,
        assets=[
            AccountAsset(currency=code, amount=Decimal(str(amount)))
            for code, amount in holdings.items()
        ],
    )


class ScriptedExtraction(ExtractionClient):
    """Extraction client that replays prepared answers in order."""

    def __init__(
        self,
        transactions: Optional[list] = None,
        instruction: Optional[MassEditInstruction] = None,
    ):
        self._transactions = list(transactions or [])
        self._instruction = instruction
        self.calls: list[str] = []

    def _next(self) -> list[Candidate]:
        if not self._transactions:
            return []
        answer = self._transactions.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return [c.model_copy(deep=True) for c in answer]

    async def parse_transaction(self, text, category_names, tag_names, account_names, timezone):
        self.calls.append(text)
        return self._next()

    async def parse_transaction_from_image(
        self, image_bytes, mime_type, category_names, tag_names, account_names, timezone, caption=None,
    ):
        self.calls.append(caption or "<image>")
        return self._next()

    async def parse_mass_edit_instruction(self, text, category_names, tag_names, account_names, timezone):
        self.calls.append(text)
        if self._instruction is None:
            raise ExtractionError("no instruction scripted")
        return self._instruction.model_copy(deep=True)


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings()


@pytest.fixture
def known() -> KnownCurrencies:
    return KnownCurrencies(fiat=set(FIAT_CURRENCIES), crypto=set(CRYPTO_CURRENCIES))


@pytest.fixture
def rates() -> StaticCurrencyService:
    return StaticCurrencyService(usd_rates={
        "UAH": Decimal("0.025"),
        "EUR": Decimal("1.1"),
        "USDT": Decimal("1"),
        "BTC": Decimal("60000"),
    })


@pytest.fixture
def book() -> AccountBook:
    """Mono (default, UAH), Privat (UAH+USD), Wise (EUR, empty) and the sentinel."""
    return AccountBook(
        accounts=[
            account("mono", "Monobank", UAH=1000),
            account("privat", "Privat", UAH=50, USD=10),
            account("wise", "Wise", EUR=0),
            Account(id="outside", name="Вне Wallet"),
        ],
        default_account_id="mono",
        sentinel_account_id="outside",
    )
