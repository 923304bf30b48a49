"""Tests for the text helpers: name matching, money, exchange wording and dates."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledger_reconciler.text.dates import (
    extract_explicit_date,
    extract_full_date,
    has_future_intent,
    local_today,
    parse_timezone_offset_minutes,
)
from ledger_reconciler.text.exchange import (
    extract_exchange_intent,
    fee_pairs,
    has_currency_pair_pattern,
    has_exchange_vocabulary,
)
from ledger_reconciler.text.money import (
    decimal_places,
    detect_currency_mentions,
    extract_amount_pairs,
    normalize_currency_token,
)
from ledger_reconciler.text.normalize import (
    best_match,
    fold,
    match_rank,
    normalize_tag,
    tag_similarity,
)


NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


class TestNormalize:
    """Tests for folding and fuzzy matching."""

    def test_fold(self):
        """Test folding lower-cases, maps ё to е and drops punctuation."""
        assert fold("Ёлка Mono-Bank!") == "елкаmonobank"
        assert fold(None) == ""

    def test_match_tiers(self):
        """Test exact beats containment beats fuzzy."""
        assert match_rank("monobank", "Monobank") == (0, 0)
        assert match_rank("mono", "Monobank")[0] == 1
        assert match_rank("monobamk", "Monobank") == (3, 1)

    def test_alias_hit(self):
        """Test an alias counts even when the name is unrelated."""
        assert match_rank("моно", "Black card", aliases=["моно"]) == (2, 0)

    def test_transliterated_match(self):
        """Test Cyrillic mentions match Latin names after transliteration."""
        rank = match_rank("ревалют", "Revolut")
        assert rank is not None
        assert rank[0] == 4

    def test_short_mentions_use_the_full_budget(self):
        """Test short mentions get the same edit distance as long ones."""
        assert match_rank("cadr", "Card") == (3, 2)
        assert match_rank("ab", "ac") == (3, 1)

    def test_short_mention_guard(self):
        """Test the guard shrinks the budget for short mentions."""
        assert match_rank("cadr", "Card", short_mention_guard=True) is None
        assert match_rank("cari", "Card", short_mention_guard=True) == (3, 1)
        assert match_rank("ab", "ac", short_mention_guard=True) is None
        assert match_rank("savinsg", "Savings", short_mention_guard=True) == (3, 2)

    def test_best_match_prefers_lower_rank(self):
        """Test the exact option wins over a fuzzy one."""
        options = [("a", "Savings", ()), ("b", "Saving", ())]
        assert best_match("saving", options) == "b"

    def test_tag_similarity(self):
        """Test tag similarity is one minus normalized distance."""
        assert normalize_tag("  #Отпуск_2026 ") == "отпуск 2026"
        assert tag_similarity("отпуск", "Отпуск") == 1.0
        assert tag_similarity("", "x") == 0.0
        assert abs(tag_similarity("abcd", "abce") - 0.75) < 1e-9


class TestMoney:
    """Tests for amount and currency mining."""

    def test_currency_tokens(self):
        """Test common currency words map to codes."""
        assert normalize_currency_token("грн") == "UAH"
        assert normalize_currency_token("$") == "USD"
        assert normalize_currency_token("Евро") == "EUR"
        assert normalize_currency_token("usdt") == "USDT"
        assert normalize_currency_token("кофе") == ""
        assert normalize_currency_token("XYZ", {"USD"}) == ""

    def test_amount_pairs_in_text_order(self):
        """Test both '120 грн' and '$5.5' forms are found, in order."""
        pairs = extract_amount_pairs("купил кофе за 120 грн и чай за $5.5")
        assert [(p.amount, p.currency) for p in pairs] == [
            (Decimal("120"), "UAH"),
            (Decimal("5.5"), "USD"),
        ]

    def test_amount_followed_by_word_is_skipped(self):
        """Test '2 кофе' is not a money amount."""
        assert extract_amount_pairs("взял 2 кофе") == []

    def test_detect_mentions(self):
        """Test mentions are detected against the supported set."""
        assert detect_currency_mentions("120 грн и 5 евро", {"UAH", "EUR"}) == {"UAH", "EUR"}

    def test_decimal_places(self):
        """Test trailing zeros do not count as precision."""
        assert decimal_places(Decimal("100.00")) == 0
        assert decimal_places(Decimal("0.125")) == 3
        assert decimal_places(None) == 0


class TestExchangeText:
    """Tests for exchange and fee wording."""

    def test_explicit_intent_with_both_amounts(self):
        """Test the direct exchange phrase yields both legs."""
        intent = extract_exchange_intent("обмен 500 usd на 460 eur")
        assert intent is not None
        assert intent.source_amount == Decimal("500")
        assert intent.source_currency == "USD"
        assert intent.target_amount == Decimal("460")
        assert intent.target_currency == "EUR"
        assert intent.explicit_pair is True
        assert intent.has_both_amounts

    def test_explicit_intent_without_target_amount(self):
        """Test a target currency without an amount is still explicit."""
        intent = extract_exchange_intent("обмен 500 юсд на евро")
        assert intent.source_currency == "USD"
        assert intent.target_currency == "EUR"
        assert intent.target_amount is None
        assert intent.explicit_pair is True
        assert not intent.has_both_amounts

    def test_target_found_past_account_names(self):
        """Test account names between connectors do not hide the target currency."""
        intent = extract_exchange_intent("обменял 400 дол на пайпеле на евро на моно банке")
        assert intent.source_amount == Decimal("400")
        assert intent.source_currency == "USD"
        assert intent.target_currency == "EUR"
        assert intent.target_amount is None

    def test_no_currency_words(self):
        """Test text without currencies yields no intent."""
        assert extract_exchange_intent("обмен валюты") is None
        assert extract_exchange_intent("купил кофе за 120 грн") is None
        assert extract_exchange_intent("") is None

    def test_vocabulary_and_pair_pattern(self):
        """Test exchange vocabulary and CCY/CCY patterns are detected."""
        assert has_exchange_vocabulary("Swap completed")
        assert not has_exchange_vocabulary("купил кофе")
        assert has_currency_pair_pattern("USDT/UAH 41.2")
        assert not has_currency_pair_pattern("USDT/USDT")

    def test_fee_pairs_near_keyword(self):
        """Test only amounts next to a fee keyword are fee pairs."""
        pairs = fee_pairs("обмен 100 USDT на гривну по хорошему курсу, комиссия 1 USDT")
        assert [(p.amount, p.currency) for p in pairs] == [(Decimal("1"), "USDT")]


class TestDates:
    """Tests for date mining."""

    def test_timezone_offsets(self):
        """Test the accepted timezone spellings."""
        assert parse_timezone_offset_minutes("UTC+02:00") == 120
        assert parse_timezone_offset_minutes("-0530") == -330
        assert parse_timezone_offset_minutes("3") == 180
        assert parse_timezone_offset_minutes("UTC") == 0
        assert parse_timezone_offset_minutes("garbage") == 120

    def test_local_today_crosses_midnight(self):
        """Test the user's day can differ from the UTC day."""
        late = datetime(2026, 10, 19, 23, 30, tzinfo=timezone.utc)
        assert local_today(late, "UTC+02:00").isoformat() == "2026-10-20"

    def test_relative_words(self):
        """Test today/yesterday/day before yesterday."""
        assert extract_explicit_date("вчера купил", NOW, "UTC+02:00") == datetime(
            2026, 10, 18, 12, tzinfo=timezone.utc
        )
        assert extract_explicit_date("позавчера", NOW, "UTC+02:00").day == 17
        assert extract_explicit_date("сегодня", NOW, "UTC+02:00").day == 19

    def test_numeric_and_month_name(self):
        """Test day.month[.year] and '12 октября'."""
        assert extract_explicit_date("оплатил 12.10.2026", NOW) == datetime(2026, 10, 12, 12, tzinfo=timezone.utc)
        assert extract_explicit_date("12 октября", NOW) == datetime(2026, 10, 12, 12, tzinfo=timezone.utc)

    @pytest.mark.parametrize("text", [
        "купил 11.10 TON",
        "купил кофе за 2.5 гривны",
        "отдал 1.5 бакса",
        "чаевые 12.10 $",
        "хлеб 3.5 злотых",
        "булка 2.5 €",
        "такси $12.10",
    ])
    def test_amount_is_not_a_date(self, text):
        """Test a day.month-shaped number next to a currency is an amount."""
        assert extract_explicit_date(text, NOW) is None

    def test_date_after_an_amount(self):
        """Test an amount does not hide a real date later in the text."""
        assert extract_explicit_date("кофе 2.5 гривны, 12.10 в кафе", NOW) == datetime(
            2026, 10, 12, 12, tzinfo=timezone.utc
        )

    def test_full_date(self):
        """Test ISO and dotted full dates."""
        assert extract_full_date("чек от 2026-09-30").day == 30
        assert extract_full_date("19.10.2026").month == 10
        assert extract_full_date("без даты") is None

    def test_future_intent(self):
        """Test future wording is recognized."""
        assert has_future_intent("оплачу завтра")
        assert has_future_intent("planned payment")
        assert not has_future_intent("купил вчера")
