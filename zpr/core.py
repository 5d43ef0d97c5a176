from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional
from collections import deque
import logging

logger = logging.getLogger(__name__)

SCALE = 10**18
SETTLEMENT_INTERVAL = 60 * 60  # seconds of ledger time between settlements
BOND_SHARE_PCT = 45
REWARD_SHARE_PCT = 45
ZERO_ADDRESS = "0x" + "0" * 40


def is_zero_address(address: Optional[str]) -> bool:
    return not address or address == ZERO_ADDRESS


# -----------------------------
# Errors
# -----------------------------
class ContractError(Exception):
    """Aborts the whole top-level transaction."""

class NotAuthorized(ContractError):
    pass

class NotPoolOwner(NotAuthorized):
    pass

class AlreadyInitialized(ContractError):
    pass

class AlreadyActive(ContractError):
    pass

class PoolNotActive(ContractError):
    pass

class InvalidParameter(ContractError):
    pass

class ZeroAddress(InvalidParameter):
    pass

class ZeroAmount(InvalidParameter):
    pass

class UnknownPool(InvalidParameter):
    pass

class StillLocked(ContractError):
    pass

class NoStake(ContractError):
    pass

class TransferFailed(ContractError):
    pass

class TokenMismatch(ContractError):
    pass

class ActivationFeeNotSet(ContractError):
    pass

class ReentrantCall(ContractError):
    pass

class TokenError(Exception):
    """Raised by token ledgers; converted to TransferFailed by the safe helpers."""

class InsufficientBalance(TokenError):
    pass

class InsufficientAllowance(TokenError):
    pass


# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    timestamp: int
    event_type: str
    emitter: Optional[str] = None
    actor: Optional[str] = None
    amount: Optional[int] = None
    meta: dict = field(default_factory=dict)
    seq: int = 0

class EventLog:
    """Notification log. Events emitted inside an open transaction are held
    back and only reach the (possibly bounded) deque on commit."""

    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.events = deque(maxlen=maxlen)
        self.pending: List[Event] = []
        self._marks: List[int] = []
        self.seq = 0

    def add(self, e: Event) -> None:
        self.seq += 1
        e.seq = self.seq
        if self._marks:
            self.pending.append(e)
        else:
            self.events.append(e)

    def mark(self) -> int:
        self._marks.append(self.seq)
        return self.seq

    def commit(self) -> None:
        self._marks.pop()
        if not self._marks:
            self.events.extend(self.pending)
            self.pending.clear()

    def rollback(self, mark: int) -> None:
        if self._marks:
            self._marks.pop()
        self.pending = [e for e in self.pending if e.seq <= mark]
        while self.events and self.events[-1].seq > mark:
            self.events.pop()
        self.seq = mark
        if not self._marks:
            self.events.extend(self.pending)
            self.pending.clear()

    def _visible(self) -> List[Event]:
        return list(self.events) + self.pending

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        return self._visible()[-n:]

    def of_type(self, event_type: str, emitter: Optional[str] = None) -> List[Event]:
        return [
            e for e in self._visible()
            if e.event_type == event_type and (emitter is None or e.emitter == emitter)
        ]

    def __iter__(self) -> Iterator[Event]:
        return iter(self._visible())

    def __len__(self) -> int:
        return len(self.events) + len(self.pending)


# -----------------------------
# Capabilities embedded in contract state
# -----------------------------
@dataclass
class Ownership:
    owner: str = ZERO_ADDRESS

    def require(self, sender: str) -> None:
        if is_zero_address(self.owner) or sender != self.owner:
            raise NotAuthorized(f"caller {sender} is not the owner")

    def transfer(self, sender: str, new_owner: str) -> str:
        self.require(sender)
        if is_zero_address(new_owner):
            raise ZeroAddress("new owner is the zero address")
        previous, self.owner = self.owner, new_owner
        return previous

@dataclass
class ReentrancyGuard:
    entered: bool = False

    def __enter__(self) -> "ReentrancyGuard":
        if self.entered:
            raise ReentrantCall("reentrant call")
        self.entered = True
        return self

    def __exit__(self, *exc: Any) -> None:
        self.entered = False


# -----------------------------
# Safe transfer helpers
# -----------------------------
def _checked_call(contract, token: str, method: str, *args: Any) -> None:
    try:
        ok = contract.invoke(token, method, *args)
    except TokenError as exc:
        raise TransferFailed(f"{method} on {token} failed: {exc}") from exc
    # assets that return nothing on success are accepted
    if ok is False:
        raise TransferFailed(f"{method} on {token} returned false")

def balance_of(contract, token: str, account: str) -> int:
    try:
        ledger = contract.chain.contract(token)
    except LookupError as exc:
        raise TransferFailed(f"{token} is not a token ledger") from exc
    return int(ledger.balance_of(account))

def pull_tokens(contract, token: str, sender: str, amount: int) -> int:
    """Pull `amount` of `token` from `sender` into `contract`.

    Returns what actually arrived, measured as the contract's own balance
    delta, so assets that skim a fee on transfer are accounted correctly.
    """
    before = balance_of(contract, token, contract.address)
    _checked_call(contract, token, "transfer_from", sender, contract.address, amount)
    received = balance_of(contract, token, contract.address) - before
    if received <= 0:
        raise TransferFailed(f"no {token} received from {sender}")
    logger.debug("pull %s: %s requested=%d received=%d", contract.address, token, amount, received)
    return received

def push_tokens(contract, token: str, to: str, amount: int) -> None:
    if amount <= 0:
        return
    _checked_call(contract, token, "transfer", to, amount)
    logger.debug("push %s -> %s: %s amount=%d", contract.address, to, token, amount)
