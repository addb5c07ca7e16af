import asyncio

import pytest

from studio.errors import InsufficientCredits, PersistenceError, ValidationError
from studio.ledger import CreditLedger
from conftest import USER_ID


def test_debit_persists_and_rounds(store, ledger):
    balance = asyncio.run(ledger.debit(65.6))
    assert balance == pytest.approx(34.4)
    assert store.balance() == pytest.approx(34.4)
    assert ledger.persisted_balance == pytest.approx(34.4)


def test_debit_never_goes_negative(store):
    ledger = CreditLedger(store, USER_ID, 10)
    store.profiles[USER_ID] = store.profiles[USER_ID].model_copy(update={"credits": 10})

    assert asyncio.run(ledger.debit(25)) == 0
    assert store.balance() == 0


def test_balance_is_monotonic_under_debits(ledger):
    seen = [ledger.balance]
    for amount in (15, 0.6, 5, 25, 25):
        seen.append(asyncio.run(ledger.debit(amount)))
    assert seen == sorted(seen, reverse=True)


def test_negative_debit_is_rejected(ledger):
    with pytest.raises(ValidationError):
        asyncio.run(ledger.debit(-1))


def test_failed_write_reverts_to_persisted_balance(store, ledger):
    store.fail_credit_writes = True

    with pytest.raises(PersistenceError):
        asyncio.run(ledger.debit(15))

    assert ledger.balance == 100
    assert store.balance() == 100


def test_stale_ledger_reloads_and_charges_the_stored_balance(store, ledger):
    # another session spent credits since this ledger loaded
    store.profiles[USER_ID] = store.profiles[USER_ID].model_copy(update={"credits": 40})

    assert asyncio.run(ledger.debit(15)) == 25
    assert store.balance() == 25
    assert ledger.persisted_balance == 25


def test_stale_ledger_keeps_working_after_one_lost_race(store, ledger):
    store.profiles[USER_ID] = store.profiles[USER_ID].model_copy(update={"credits": 90})

    for _ in range(3):
        asyncio.run(ledger.debit(5))

    assert store.balance() == 75
    assert ledger.balance == 75
    assert not ledger.can_afford(80)


def test_failed_write_reloads_the_stored_balance(store, ledger):
    store.profiles[USER_ID] = store.profiles[USER_ID].model_copy(update={"credits": 30})
    store.fail_credit_writes = True

    with pytest.raises(PersistenceError):
        asyncio.run(ledger.debit(15))

    assert ledger.balance == 30
    assert not ledger.can_afford(35.6)


def test_overlapping_debits_are_both_applied(store, ledger):
    async def both():
        return await asyncio.gather(ledger.debit(15), ledger.debit(35.6))

    asyncio.run(both())

    assert store.balance() == pytest.approx(49.4)
    assert ledger.balance == pytest.approx(49.4)
    assert len(store.credit_writes) == 2


def test_require_raises_with_amounts(ledger):
    with pytest.raises(InsufficientCredits) as err:
        ledger.require(150, "Not enough credits.")
    assert err.value.required == 150
    assert err.value.available == 100
    ledger.require(100, "exactly enough")


def test_credit_tops_up(store, ledger):
    assert asyncio.run(ledger.credit(50)) == 150
    assert store.balance() == 150

    with pytest.raises(ValidationError):
        asyncio.run(ledger.credit(0))


def test_load_requires_profile(store):
    ledger = asyncio.run(CreditLedger.load(store, USER_ID))
    assert ledger.balance == 100

    with pytest.raises(ValidationError):
        asyncio.run(CreditLedger.load(store, "nobody"))
