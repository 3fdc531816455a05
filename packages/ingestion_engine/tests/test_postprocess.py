from datetime import date

import pytest

from packages.ingestion_engine.config import PipelineConfig
from packages.ingestion_engine.header_locator import locate_header
from packages.ingestion_engine.models import DateValue, Direction, Number, RawGrid, Text, Transaction
from packages.ingestion_engine.postprocess import PostProcessor, flag_balance_like, normalize_sign
from packages.ingestion_engine.providers import ExtractedExpense


@pytest.fixture
def grid():
    return RawGrid(
        (
            (Text("Bank of Example"),),
            (Text("Posted Date"), Text("Description"), Text("Amount"), Text("Balance")),
            (Text("15/01/2024"), Text("Coffee"), Text("4.50"), Text("995.50")),
            (DateValue(date(2024, 1, 16)), Text("Books"), Text("20.00"), Text("975.50")),
            (Number(45310), Text("Refund"), Text("-5.00"), Text("980.50")),
        )
    )


@pytest.fixture
def processor(grid):
    return PostProcessor(grid, locate_header(grid), PipelineConfig(default_currency="CAD"))


def item(**kwargs):
    defaults = {"amount": 1.0, "currency": "USD", "occurred_on": "2024-01-15", "line_index": 1}
    defaults.update(kwargs)
    return ExtractedExpense(**defaults)


class TestAmounts:
    def test_string_amounts_are_coerced(self, processor):
        [t] = processor.process([item(amount="$1,234.50")])
        assert t.amount == 1234.5

    def test_unparseable_amount_dropped(self, processor):
        assert processor.process([item(amount="lots")]) == []
        assert processor.process([item(amount=None)]) == []


class TestSign:
    def test_direction_wins(self):
        assert normalize_sign(10.0, Direction.CREDIT) == -10.0
        assert normalize_sign(-10.0, Direction.DEBIT) == 10.0

    @pytest.mark.parametrize(
        "text", ["Amazon refund", "Chargeback 123", "CASHBACK reward", "Interest CR"]
    )
    def test_refund_like_flipped(self, text):
        assert normalize_sign(10.0, None, text) == -10.0

    def test_investment_transfers_not_flipped(self):
        assert normalize_sign(100.0, None, "TFSA deposit credit") == 100.0
        assert normalize_sign(100.0, None, "Transfer to savings deposit") == 100.0

    def test_plain_purchase_unchanged(self):
        assert normalize_sign(10.0, None, "Grocer", "Weekly shop") == 10.0

    def test_description_word_is_not_cr(self):
        assert normalize_sign(10.0, None, "Credit Union ATM") == 10.0

    def test_via_processor(self, processor):
        [t] = processor.process([item(amount=5, merchant="Store", note="refund of jacket")])
        assert t.amount == -5.0


class TestDateRecovery:
    def test_iso_is_trusted(self, processor):
        [t] = processor.process([item(occurred_on="2024-02-01", line_index=1)])
        assert t.occurred_on == date(2024, 2, 1)

    def test_recovered_from_header_date_column(self, processor):
        [t] = processor.process([item(occurred_on="15th of Jan", line_index=1)])
        assert t.occurred_on == date(2024, 1, 15)

    def test_recovered_from_native_and_serial_cells(self, processor):
        recovered = processor.process(
            [item(occurred_on=None, line_index=2), item(occurred_on="??", line_index=3)]
        )
        assert [t.occurred_on for t in recovered] == [date(2024, 1, 16), date(2024, 1, 19)]

    def test_returned_string_is_last_resort(self, processor):
        [t] = processor.process([item(occurred_on="Jan 20, 2024", line_index=99)])
        assert t.occurred_on == date(2024, 1, 20)

    def test_unrecoverable_dropped(self, processor):
        assert processor.process([item(occurred_on="soon", line_index=None)]) == []

    def test_row_scan_without_date_column(self):
        grid = RawGrid(
            (
                (Text("Description"), Text("Amount")),
                (Text("Coffee"), Number(4.5), Text("2024-03-02")),
            )
        )
        processor = PostProcessor(grid, locate_header(grid), PipelineConfig())

        [t] = processor.process([item(occurred_on="yesterday", line_index=1)])
        # The numeric amount is not mistaken for a serial date
        assert t.occurred_on == date(2024, 3, 2)


class TestFilters:
    def test_card_payments_dropped(self, processor):
        kept = processor.process(
            [
                item(amount=-500, merchant="PAYMENT - THANK YOU", note="Payment received"),
                item(amount=12, merchant="Grocer"),
            ]
        )
        assert [t.merchant for t in kept] == ["Grocer"]

    def test_positive_payment_received_is_flipped_then_dropped(self, processor):
        assert processor.process([item(amount=500, merchant="Payment received")]) == []

    def test_currency_fallback_and_normalization(self, processor):
        kept = processor.process([item(currency="eur"), item(currency=None), item(currency="₹")])
        assert [t.currency for t in kept] == ["EUR", "CAD", "INR"]

    def test_optional_fields_carried(self, processor):
        [t] = processor.process(
            [item(merchant="Cafe", note="Coffee", category="Dining", payment_method="Visa")]
        )
        assert t.to_dict() == {
            "amount": 1.0,
            "currency": "USD",
            "occurred_on": "2024-01-15",
            "merchant": "Cafe",
            "payment_method": "Visa",
            "note": "Coffee",
            "category": "Dining",
            "line_index": 1,
        }


class TestBalanceHeuristic:
    def make(self, amount):
        return Transaction(amount=amount, currency="USD", occurred_on=date(2024, 1, 1))

    def test_outliers_flagged_not_dropped(self):
        transactions = [self.make(a) for a in (4.0, 5.0, 6.0, 5000.0)]
        flagged = flag_balance_like(transactions)

        assert [t.amount for t in flagged] == [5000.0]
        assert len(transactions) == 4

    def test_no_positive_amounts(self):
        assert flag_balance_like([self.make(-1.0), self.make(-1000.0)]) == []

    def test_large_negative_flagged_with_few_positives(self):
        transactions = [self.make(5.0), self.make(-7000.0)]

        assert [t.amount for t in flag_balance_like(transactions)] == [-7000.0]

    def test_processor_keeps_outliers(self, processor):
        kept = processor.process([item(amount=a) for a in (4, 5, 6, 9000)])
        assert len(kept) == 4
