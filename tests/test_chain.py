import pytest

from zpr.chain import GENESIS_TIME, Chain
from zpr.core import (
    SCALE,
    AlreadyActive,
    ZERO_ADDRESS,
    EventLog,
    Event,
    NotAuthorized,
    Ownership,
    ReentrancyGuard,
    InsufficientBalance,
    ReentrantCall,
    TokenError,
    TransferFailed,
    ZeroAddress,
)
from zpr.factory import PoolRegistry
from zpr.pool import PoolInstance
from zpr.token import FungibleToken

from conftest import DAY


def test_clock_is_monotonic():
    chain = Chain()
    assert chain.now == GENESIS_TIME
    assert chain.advance(60) == GENESIS_TIME + 60
    with pytest.raises(ValueError):
        chain.advance(-1)
    with pytest.raises(ValueError):
        chain.set_time(GENESIS_TIME)

def test_addresses_are_unique_and_nonzero(chain):
    accounts = {chain.new_account() for _ in range(5)}
    assert len(accounts) == 5
    assert ZERO_ADDRESS not in accounts

def test_msg_sender_follows_call_stack(chain, admin, alice, token):
    assert chain.msg_sender == ZERO_ADDRESS
    chain.transact(admin, token.address, "mint", alice, 10)
    chain.transact(alice, token.address, "transfer", admin, 4)
    assert token.balance_of(alice) == 6
    assert token.balance_of(admin) == 4

def test_failed_transaction_rolls_back_everything(chain, admin, alice, bob, token):
    chain.transact(admin, token.address, "mint", alice, 10)
    events_before = len(chain.log)
    with pytest.raises(InsufficientBalance):
        chain.transact(alice, token.address, "transfer", bob, 11)
    assert token.balance_of(alice) == 10
    assert token.balance_of(bob) == 0
    assert len(chain.log) == events_before

def test_handle_sends_transactions(chain, admin, alice, token):
    as_admin = chain.at(token.address, admin)
    as_admin.mint(alice, 5)
    assert chain.at(token.address, alice).balance_of(alice) == 5
    with pytest.raises(AttributeError):
        as_admin._move

def test_handle_reads_properties_without_a_transaction(chain, admin, alice, registry, make_pool):
    pool = make_pool()
    events_before = len(chain.log)
    assert chain.at(pool.address, alice).active is True
    assert chain.at(registry.address, alice).owner == admin
    assert len(chain.log) == events_before
    handle = chain.at(pool.address, alice)
    for name in ("state", "State", "missing"):
        with pytest.raises(AttributeError):
            getattr(handle, name)

def test_non_callable_attribute_is_not_an_entry_point(chain, alice, make_pool):
    pool = make_pool()
    with pytest.raises(AttributeError):
        chain.transact(alice, pool.address, "active")

def test_private_methods_are_not_entry_points(chain, admin, alice, token):
    with pytest.raises(AttributeError):
        chain.transact(admin, token.address, "_credit", alice, 100)

def test_unknown_contract(chain, admin):
    with pytest.raises(LookupError):
        chain.transact(admin, "0xdead", "anything")

def test_only_minter_mints(chain, alice, token):
    with pytest.raises(TokenError) as info:
        chain.transact(alice, token.address, "mint", alice, 1)
    assert "minter" in str(info.value)

def test_revert_on_bounded_log_keeps_committed_events():
    chain = Chain(event_log_maxlen=4)
    admin, treasury, owner = (chain.new_account() for _ in range(3))
    token = chain.deploy(FungibleToken, admin, "ZPR")
    template = chain.deploy(PoolInstance, admin)
    registry = chain.deploy(PoolRegistry, admin, template.address, treasury, 1000)
    pool = chain.transact(admin, registry.address, "create_pool",
                          token.address, token.address, DAY, SCALE, owner, 0)
    chain.transact(admin, token.address, "mint", owner, 2000)
    chain.transact(owner, token.address, "approve", registry.address, 2000)
    chain.transact(owner, registry.address, "activate_pool", pool)

    before = [(e.seq, e.event_type) for e in chain.log]
    assert len(before) == 4
    with pytest.raises(AlreadyActive):
        chain.transact(owner, registry.address, "activate_pool", pool)
    assert [(e.seq, e.event_type) for e in chain.log] == before
    assert chain.log.seq == before[-1][0]
    assert token.balance_of(owner) == 1000


# -----------------------------
# primitives
# -----------------------------
def test_event_log_rollback_and_tail():
    log = EventLog()
    for i in range(5):
        log.add(Event(i, "X", amount=i))
    mark = log.mark()
    log.add(Event(5, "Y"))
    log.add(Event(6, "Y"))
    log.rollback(mark)
    assert [e.amount for e in log.tail(2)] == [3, 4]
    assert not log.of_type("Y")
    log.add(Event(7, "Z"))
    assert log.tail(1)[0].seq == mark + 1
    assert log.tail(0) == []

def test_bounded_event_log_rollback_keeps_old_events():
    log = EventLog(maxlen=2)
    log.add(Event(0, "X", amount=0))
    log.add(Event(1, "X", amount=1))
    mark = log.mark()
    for i in range(3):
        log.add(Event(2 + i, "Y"))
    assert len(log) == 5
    log.rollback(mark)
    assert [e.amount for e in log] == [0, 1]

    mark = log.mark()
    log.add(Event(5, "Z"))
    assert [e.event_type for e in log.of_type("Z")] == ["Z"]
    log.commit()
    assert [e.event_type for e in log] == ["X", "Z"]
    assert log.pending == []

def test_ownership():
    ownership = Ownership("a")
    ownership.require("a")
    with pytest.raises(NotAuthorized):
        ownership.require("b")
    with pytest.raises(ZeroAddress):
        ownership.transfer("a", ZERO_ADDRESS)
    assert ownership.transfer("a", "b") == "a"
    assert ownership.owner == "b"

def test_unowned_rejects_everyone():
    with pytest.raises(NotAuthorized):
        Ownership().require(ZERO_ADDRESS)

def test_reentrancy_guard_releases_on_error():
    guard = ReentrancyGuard()
    with pytest.raises(RuntimeError):
        with guard:
            with pytest.raises(ReentrantCall):
                with guard:
                    pass
            raise RuntimeError("boom")
    assert not guard.entered

def test_pull_from_missing_ledger_fails(chain, make_pool, alice):
    pool = make_pool(activate=False)
    pool.state.staking_asset = chain.new_account()
    pool.state.active = True
    with pytest.raises(TransferFailed):
        chain.transact(alice, pool.address, "stake", 1)
