from decimal import Decimal

import pytest

from envelopes.errors import NotFoundError, ValidationError
from envelopes.services import ledger
from envelopes.services.invariant import find_to_be_assigned
from envelopes.services.overspend import cover_overspending, split_proportionally

from conftest import OTHER_USER, PERIOD, USER, money, spend


def test_split_assigns_remainder_to_last():
    shares = split_proportionally(1000, [1000, 2000, 333])
    assert shares == [300, 600, 100]
    assert sum(shares) == 1000


def test_split_never_gives_more_than_deficit_before_last():
    shares = split_proportionally(500, [100, 100])
    assert shares == [100, 400]


def test_split_requires_deficit():
    with pytest.raises(ValueError):
        split_proportionally(100, [0, 0])


@pytest.fixture()
def overspent(db, checking):
    savings = ledger.create_envelope(db, USER, "Vacation", None, PERIOD, allocated=100)
    spend(db, checking, 10, "Groceries")
    spend(db, checking, 20, "Eating Out")
    spend(db, checking, "3.33", "Gifts")
    targets = [ledger.find_envelope(db, USER, n, PERIOD) for n in ("Groceries", "Eating Out", "Gifts")]
    return savings, targets


def test_cover_overspending_is_exact(db, overspent):
    savings, targets = overspent
    before = {t.id: t.allocated for t in targets}

    result = cover_overspending(db, USER, savings.id, money(10), [t.id for t in targets])

    db.expire_all()
    after = {t.id: ledger.get_envelope(db, USER, t.id).allocated for t in targets}
    gained = sum((after[i] - before[i] for i in after), Decimal("0"))
    assert gained == money(10)
    assert ledger.get_envelope(db, USER, savings.id).allocated == money(90)
    assert result.shares == {targets[0].id: money(3), targets[1].id: money(6), targets[2].id: money(1)}
    assert len(result.transfers) == 3
    assert all(t.kind == "overspend" and t.automated is False for t in result.transfers)


def test_cover_overspending_keeps_to_be_assigned(db, overspent):
    savings, targets = overspent
    tba_before = find_to_be_assigned(db, USER, PERIOD).allocated

    cover_overspending(db, USER, savings.id, money(25), [t.id for t in targets])

    db.expire_all()
    assert find_to_be_assigned(db, USER, PERIOD).allocated == tba_before


def test_insufficient_funds_changes_nothing(db, overspent):
    savings, targets = overspent
    with pytest.raises(ValidationError):
        cover_overspending(db, USER, savings.id, money(150), [t.id for t in targets])

    db.expire_all()
    assert ledger.get_envelope(db, USER, savings.id).allocated == money(100)


def test_target_must_be_overspent(db, overspent):
    savings, targets = overspent
    rent = ledger.create_envelope(db, USER, "Rent", None, PERIOD, allocated=50)
    with pytest.raises(ValidationError):
        cover_overspending(db, USER, savings.id, money(5), [targets[0].id, rent.id])


def test_rejects_bad_input(db, overspent):
    savings, targets = overspent
    with pytest.raises(ValidationError):
        cover_overspending(db, USER, savings.id, money(0), [targets[0].id])
    with pytest.raises(ValidationError):
        cover_overspending(db, USER, savings.id, money(5), [])
    with pytest.raises(ValidationError):
        cover_overspending(db, USER, savings.id, money(5), [savings.id])
    with pytest.raises(NotFoundError):
        cover_overspending(db, OTHER_USER, savings.id, money(5), [targets[0].id])
