from datetime import date
from io import StringIO

import pytest

from envelopes.errors import NotFoundError, ValidationError
from envelopes.services import accounts, ledger
from envelopes.services.categorize import INTEREST_AND_FEES, derive_category
from envelopes.services.import_helpers import build_import_row, normalize_amount, parse_row_date
from envelopes.services.importer import import_transactions
from envelopes.services.statement_import import parse_eu_number, parse_statement
from models import Account, Transaction

from conftest import OTHER_USER, PERIOD, USER, day, money, spend


def _row(external_id, amount, on="2024-03-05", description="", **extra):
    return {"external_id": external_id, "amount": amount, "date": on, "description": description, **extra}


# ---- Pure helpers ----

def test_normalize_amount_per_account_type():
    # cash: aggregator reports outflows positive
    assert normalize_amount("cash", "12.50") == money(-12.50)
    assert normalize_amount("investment", -100) == money(100)
    # debt: aggregator already reports purchases negative
    assert normalize_amount("credit", -30) == money(-30)
    assert normalize_amount("loan", 250) == money(250)


def test_parse_row_date_formats():
    assert parse_row_date("2024-03-05") == date(2024, 3, 5)
    assert parse_row_date("05.03.2024") == date(2024, 3, 5)
    assert parse_row_date("03/05/2024") == date(2024, 3, 5)
    with pytest.raises(ValidationError):
        parse_row_date("yesterday")


def test_build_import_row_requires_id_and_amount():
    with pytest.raises(ValidationError):
        build_import_row({"amount": 5, "date": "2024-03-01"}, "cash")
    with pytest.raises(ValidationError):
        build_import_row({"external_id": "x", "date": "2024-03-01"}, "cash")

    row = build_import_row(_row("x", 5, hints="Food and Drink|Restaurants"), "cash")
    assert row.amount == money(-5)
    assert row.hints == ["Food and Drink", "Restaurants"]


def test_derive_category_rules():
    assert derive_category("STARBUCKS #123", money(-4.75), "cash") == "Eating Out"
    assert derive_category("Something", money(-80), "cash", hints=["Food and Drink", "Groceries"]) == "Groceries"
    assert derive_category("ONLINE PAYMENT THANK YOU", money(200), "credit") == "Credit Card Payments"
    assert derive_category("LATE FEE", money(-25), "credit") == INTEREST_AND_FEES
    assert derive_category("PURCHASE INTEREST CHARGE", money(-3.10), "credit") == INTEREST_AND_FEES
    assert derive_category("XYZ CORP 8812", money(-19), "cash") == "Needs a Category"


def test_parse_eu_number():
    assert parse_eu_number("1.234,56") == pytest.approx(1234.56)
    assert parse_eu_number("1,234.56") == pytest.approx(1234.56)
    assert parse_eu_number("−50,00") == pytest.approx(-50.0)
    assert parse_eu_number("12.50") == pytest.approx(12.5)


# ---- Importing ----

def test_import_creates_categorized_uncleared_review_rows(db, checking):
    summary = import_transactions(
        db, USER, checking.id, [_row("e1", "4.75", description="STARBUCKS #123")]
    )

    assert len(summary.created) == 1
    txn = ledger.get_transaction(db, USER, summary.created[0].id)
    assert txn.category == "Eating Out"
    assert txn.amount == money(-4.75)
    assert txn.cleared is True
    assert txn.approved is False
    assert txn.is_manual is False

    db.expire_all()
    assert db.get(Account, checking.id).balance == money(995.25)
    assert ledger.find_envelope(db, USER, "Eating Out", PERIOD).spent == money(4.75)


def test_import_skips_known_and_repeated_external_ids(db, checking):
    import_transactions(db, USER, checking.id, [_row("e1", 10, description="Kroger")])

    summary = import_transactions(
        db, USER, checking.id,
        [_row("e1", 10, description="Kroger"), _row("e2", 5, description="Kroger"), _row("e2", 5, description="Kroger")],
    )

    assert summary.skipped == ["e1", "e2"]
    assert len(summary.created) == 1
    assert db.query(Transaction).count() == 2
    assert summary.to_dict()["skipped"] == 2


def test_import_matches_pending_manual_entry(db):
    bank = accounts.create_account(db, USER, "Bank", "cash", balance=500, external_id="acc-1")
    manual = spend(db, bank, 40, "Groceries", on=day(10))
    assert manual.cleared is False

    summary = import_transactions(
        db, USER, bank.id, [_row("agg-9", 41, on="2024-03-12", description="KROGER #55")]
    )

    assert summary.created == []
    assert [t.id for t in summary.matched] == [manual.id]
    db.expire_all()
    matched = db.get(Transaction, manual.id)
    assert matched.cleared is True
    assert matched.external_id == "agg-9"
    assert matched.amount == money(-41)
    assert matched.date == date(2024, 3, 12)
    assert matched.category == "Groceries"
    assert db.get(Account, bank.id).balance == money(459)
    assert ledger.find_envelope(db, USER, "Groceries", PERIOD).spent == money(41)


def test_import_does_not_match_outside_window_or_tolerance(db):
    bank = accounts.create_account(db, USER, "Bank", "cash", balance=500, external_id="acc-1")
    spend(db, bank, 40, "Groceries", on=day(1))

    summary = import_transactions(
        db, USER, bank.id,
        [
            _row("far", 40, on="2024-03-09", description="KROGER"),  # 8 days later
            _row("big", 60, on="2024-03-02", description="KROGER"),  # 50% off
        ],
    )

    assert summary.matched == []
    assert len(summary.created) == 2


def test_card_import_payment_and_fee(db, visa):
    summary = import_transactions(
        db, USER, visa.id,
        [
            _row("v1", 200, description="ONLINE PAYMENT THANK YOU"),
            _row("v2", -25, description="LATE FEE"),
        ],
    )

    by_id = {t.external_id: t for t in summary.created}
    assert by_id["v1"].category == "Credit Card Payments"
    assert by_id["v1"].envelope_id is None
    assert by_id["v2"].category == INTEREST_AND_FEES

    db.expire_all()
    assert db.get(Account, visa.id).balance == money(175)


def test_unknown_merchant_lands_in_default_envelope(db, checking):
    summary = import_transactions(db, USER, checking.id, [_row("u1", 19, description="XYZ CORP 8812")])
    assert summary.created[0].category == "Needs a Category"
    assert ledger.find_envelope(db, USER, "Needs a Category", PERIOD) is not None


def test_bad_row_rolls_back_whole_batch(db, checking):
    with pytest.raises(ValidationError):
        import_transactions(
            db, USER, checking.id,
            [_row("ok", 10, description="Kroger"), _row("bad", 10, on="not a date")],
        )
    assert db.query(Transaction).count() == 0


def test_import_into_foreign_account_is_not_found(db, checking):
    with pytest.raises(NotFoundError):
        import_transactions(db, OTHER_USER, checking.id, [_row("e1", 10)])


# ---- Statements ----

def test_parse_statement_with_amount_column():
    csv = StringIO(
        "Date,Description,Amount,Category\n"
        "2024-03-04,STARBUCKS #123,\"4,75\",Food and Drink\n"
        "2024-03-05,Paycheck,-1500.00,\n"
        "2024-03-06,Nothing,0,\n"
    )

    rows = parse_statement(csv)

    assert len(rows) == 2
    assert rows[0]["date"] == date(2024, 3, 4)
    assert rows[0]["amount"] == pytest.approx(4.75)
    assert rows[0]["hints"] == "Food and Drink"
    assert rows[0]["external_id"].startswith("stmt-")
    assert rows[0]["external_id"] != rows[1]["external_id"]


def test_parse_statement_with_debit_and_credit_columns():
    csv = StringIO(
        "Transaction ID,Posted Date,Merchant,Debit,Credit\n"
        "t1,2024-03-04,KROGER,25.10,\n"
        "t2,2024-03-05,REFUND,,7.00\n"
    )

    rows = parse_statement(csv)

    assert [r["external_id"] for r in rows] == ["t1", "t2"]
    assert rows[0]["amount"] == pytest.approx(25.10)
    assert rows[1]["amount"] == pytest.approx(-7.0)


def test_parse_statement_requires_columns():
    with pytest.raises(ValidationError):
        parse_statement(StringIO("Description,Amount\nx,1\n"))
    with pytest.raises(ValidationError):
        parse_statement(StringIO("Date,Description\n2024-03-01,x\n"))


def test_statement_rows_import_with_stable_ids(db, checking):
    text = "Date,Description,Amount\n2024-03-04,KROGER,25.10\n2024-03-04,KROGER,25.10\n"

    first = import_transactions(db, USER, checking.id, parse_statement(StringIO(text)))
    again = import_transactions(db, USER, checking.id, parse_statement(StringIO(text)))

    assert len(first.created) == 2
    assert again.created == []
    assert len(again.skipped) == 2


def test_parse_statement_debit_and_credit_on_card_account():
    csv = StringIO(
        "Transaction ID,Posted Date,Merchant,Debit,Credit\n"
        "t1,2024-03-05,Pizza Place,25.00,\n"
        "t2,2024-03-06,Payment,,100.00\n"
    )

    rows = parse_statement(csv, "credit")

    # card statements are read in the aggregator's debt convention
    assert rows[0]["amount"] == pytest.approx(-25.0)
    assert rows[1]["amount"] == pytest.approx(100.0)


def test_card_statement_import_records_purchase_as_outflow(db, visa):
    csv = StringIO(
        "Transaction ID,Posted Date,Merchant,Debit,Credit\n"
        "t1,2024-03-05,Pizza Place,25.00,\n"
        "t2,2024-03-06,Payment,,100.00\n"
    )

    summary = import_transactions(db, USER, visa.id, parse_statement(csv, visa.type))

    by_id = {t.external_id: t for t in summary.created}
    assert by_id["t1"].amount == money(-25)
    assert by_id["t1"].category == "Eating Out"
    assert by_id["t2"].amount == money(100)
    assert by_id["t2"].category == "Credit Card Payments"

    db.expire_all()
    assert db.get(Account, visa.id).balance == money(75)
    assert ledger.find_envelope(db, USER, "Eating Out", PERIOD).spent == money(25)


def test_external_ids_are_scoped_per_user(db, checking):
    import_transactions(db, USER, checking.id, [_row("ext-1", 10, description="Kroger")])
    theirs = accounts.create_account(db, OTHER_USER, "Checking", "cash", balance=500)

    summary = import_transactions(
        db, OTHER_USER, theirs.id,
        [_row("ext-1", 10, description="Kroger"), _row("ext-2", 5, description="Kroger")],
    )

    assert len(summary.created) == 2
    assert summary.skipped == []
    assert db.query(Transaction).filter(Transaction.external_id == "ext-1").count() == 2


def test_two_users_can_link_the_same_external_account(db):
    mine = accounts.create_account(db, USER, "Bank", "cash", balance=100, external_id="acc-1")
    theirs = accounts.create_account(db, OTHER_USER, "Bank", "cash", balance=200, external_id="acc-1")

    assert mine.id != theirs.id
    assert theirs.external_id == "acc-1"
