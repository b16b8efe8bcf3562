from decimal import Decimal

from envelopes.services import automation, ledger
from envelopes.services.credit_coverage import net_coverage_by_transaction
from envelopes.services.overspend import cover_overspending
from envelopes.services.transfers import list_transfers
from models import AutomationTask, Transfer

from conftest import PERIOD, USER, money, spend


def _dining_with_card_purchase(db, visa, amount=120):
    purchase = spend(db, visa, amount, "Dining")
    dining = ledger.find_envelope(db, USER, "Dining", PERIOD)
    return purchase, dining


def test_assignment_covers_card_purchase_then_frees_the_rest(db, checking, visa):
    purchase, dining = _dining_with_card_purchase(db, visa)

    dining = ledger.allocate(db, USER, dining.id, 50)
    transfers = list_transfers(db, USER, PERIOD)
    assert len(transfers) == 1
    first = transfers[0]
    assert first.automated is True
    assert first.kind == "coverage"
    assert first.amount == money(50)
    assert first.transaction_id == purchase.id

    payment = ledger.find_envelope(db, USER, "Visa Payment", PERIOD)
    assert payment.category == "Credit Card Payments"
    assert payment.allocated == money(50)
    assert dining.allocated == money(0)

    dining = ledger.allocate(db, USER, dining.id, 100)
    db.expire_all()
    payment = ledger.find_envelope(db, USER, "Visa Payment", PERIOD)
    assert payment.allocated == money(120)
    assert ledger.find_envelope(db, USER, "Dining", PERIOD).allocated == money(30)


def test_coverage_never_exceeds_purchase(db, checking, visa):
    purchase, dining = _dining_with_card_purchase(db, visa, amount=40)

    for amount in (25, 60, 200):
        dining = ledger.allocate(db, USER, dining.id, amount)

    db.expire_all()
    covered = net_coverage_by_transaction(db, [purchase.id])
    assert covered[purchase.id] == money(40)
    automated = sum(
        (t.amount for t in db.query(Transfer).filter(Transfer.transaction_id == purchase.id)),
        Decimal("0"),
    )
    assert automated <= abs(purchase.amount)


def test_allocation_before_purchase_counts_as_coverage(db, checking, visa):
    dining = ledger.create_envelope(db, USER, "Dining", None, PERIOD, allocated=100)
    spend(db, visa, 80, "Dining")

    # 100 already assigned exceeds the 80 exposure: nothing more to move
    ledger.allocate(db, USER, dining.id, 150)
    assert [t for t in list_transfers(db, USER, PERIOD) if t.kind == "coverage"] == []


def test_unassignment_releases_coverage_to_to_be_assigned(db, checking, visa):
    purchase, dining = _dining_with_card_purchase(db, visa, amount=60)
    dining = ledger.allocate(db, USER, dining.id, 60)

    db.expire_all()
    assert ledger.find_envelope(db, USER, "Visa Payment", PERIOD).allocated == money(60)

    # assign 20 more, then unassign it again
    dining = ledger.allocate(db, USER, dining.id, 20)
    ledger.allocate(db, USER, dining.id, 0)

    db.expire_all()
    reversals = [t for t in list_transfers(db, USER, PERIOD) if t.kind == "coverage_reversal"]
    assert sum((t.amount for t in reversals), Decimal("0")) == money(20)
    assert all(t.reversal_of_id is not None for t in reversals)
    assert ledger.find_envelope(db, USER, "Visa Payment", PERIOD).allocated == money(40)
    assert net_coverage_by_transaction(db, [purchase.id])[purchase.id] == money(40)


def test_cash_purchases_are_not_covered(db, checking):
    spend(db, checking, 50, "Dining")
    dining = ledger.find_envelope(db, USER, "Dining", PERIOD)
    ledger.allocate(db, USER, dining.id, 50)
    assert list_transfers(db, USER, PERIOD) == []


def test_coverage_failure_keeps_allocation_and_is_retried(db, checking, visa, monkeypatch):
    _, dining = _dining_with_card_purchase(db, visa, amount=30)

    def boom(*args, **kwargs):
        raise RuntimeError("coverage exploded")

    monkeypatch.setattr(automation, "apply_coverage", boom)
    dining = ledger.allocate(db, USER, dining.id, 30)

    # the allocation itself committed
    assert dining.allocated == money(30)
    task = db.query(AutomationTask).one()
    assert task.status == automation.FAILED
    assert "coverage exploded" in task.last_error

    monkeypatch.undo()
    run = automation.retry_failed_tasks(db, USER)
    assert not run.degraded

    db.expire_all()
    assert db.query(AutomationTask).one().status == automation.DONE
    assert ledger.find_envelope(db, USER, "Visa Payment", PERIOD).allocated == money(30)
    assert ledger.find_envelope(db, USER, "Dining", PERIOD).allocated == money(0)


def test_degraded_run_reports_error(db, checking, visa, monkeypatch):
    _, dining = _dining_with_card_purchase(db, visa, amount=30)

    def boom(*args, **kwargs):
        raise RuntimeError("still broken")

    monkeypatch.setattr(automation, "apply_coverage", boom)
    ledger.allocate(db, USER, dining.id, 30)
    run = automation.retry_failed_tasks(db, USER)

    assert run.degraded
    assert run.errors[0].kind == "automation_degraded"
    assert run.errors[0].detail["envelope_id"] == dining.id


def test_moving_money_out_releases_coverage(db, checking, visa):
    purchase, dining = _dining_with_card_purchase(db, visa, amount=60)
    dining = ledger.allocate(db, USER, dining.id, 200)
    groceries = ledger.create_envelope(db, USER, "Groceries", None, PERIOD)

    db.expire_all()
    assert ledger.find_envelope(db, USER, "Visa Payment", PERIOD).allocated == money(60)

    ledger.move_money(db, USER, dining.id, groceries.id, 20)

    db.expire_all()
    reversals = [t for t in list_transfers(db, USER, PERIOD) if t.kind == "coverage_reversal"]
    assert sum((t.amount for t in reversals), Decimal("0")) == money(20)
    assert ledger.find_envelope(db, USER, "Visa Payment", PERIOD).allocated == money(40)
    assert ledger.find_envelope(db, USER, "Dining", PERIOD).allocated == money(120)
    assert ledger.find_envelope(db, USER, "Groceries", PERIOD).allocated == money(20)


def test_covering_overspending_pays_for_card_purchases(db, checking, visa):
    spend(db, checking, 10, "Dining")
    spend(db, visa, 40, "Dining")
    vacation = ledger.create_envelope(db, USER, "Vacation", None, PERIOD, allocated=100)
    dining = ledger.find_envelope(db, USER, "Dining", PERIOD)

    cover_overspending(db, USER, vacation.id, money(50), [dining.id])

    db.expire_all()
    coverage = [t for t in list_transfers(db, USER, PERIOD) if t.kind == "coverage"]
    assert sum((t.amount for t in coverage), Decimal("0")) == money(40)
    assert ledger.find_envelope(db, USER, "Visa Payment", PERIOD).allocated == money(40)
    assert ledger.find_envelope(db, USER, "Dining", PERIOD).allocated == money(10)
    assert ledger.get_envelope(db, USER, vacation.id).allocated == money(50)
