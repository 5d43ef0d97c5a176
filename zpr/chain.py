from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar
import copy
import logging

from .core import Event, EventLog, ZERO_ADDRESS

logger = logging.getLogger(__name__)

GENESIS_TIME = 1_700_000_000

C = TypeVar("C", bound="Contract")


class Contract:
    """Code shared by every instance deployed or cloned from it.

    All mutable data lives in ``self.state``; the host snapshots and restores
    that object around each top-level transaction.
    """

    @dataclass
    class State:
        pass

    def __init__(self, chain: "Chain", address: str, state: Any) -> None:
        self.chain = chain
        self.address = address
        self.state = state

    @classmethod
    def new_state(cls) -> Any:
        return cls.State()

    def constructor(self, *args: Any) -> None:
        pass

    @property
    def msg_sender(self) -> str:
        return self.chain.msg_sender

    @property
    def now(self) -> int:
        return self.chain.now

    def invoke(self, target: str, method: str, *args: Any) -> Any:
        return self.chain.call(self.address, target, method, *args)

    def emit(self, event_type: str, actor: Optional[str] = None, amount: Optional[int] = None, **meta: Any) -> None:
        self.chain.log.add(Event(self.chain.now, event_type, emitter=self.address,
                                 actor=actor, amount=amount, meta=meta))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"


class Handle:
    """Sends every method call as a top-level transaction from ``sender``.

    Properties are read directly without a transaction.
    """

    def __init__(self, chain: "Chain", address: str, sender: str) -> None:
        self._chain = chain
        self._address = address
        self._sender = sender

    @property
    def address(self) -> str:
        return self._address

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        contract = self._chain.contract(self._address)
        attr = getattr(type(contract), name, None)
        if isinstance(attr, property):
            return getattr(contract, name)
        if attr is None or isinstance(attr, type) or not callable(attr):
            raise AttributeError(f"{type(contract).__name__} has no entry point {name}")

        def send(*args: Any) -> Any:
            return self._chain.transact(self._sender, self._address, name, *args)
        return send


class Chain:
    def __init__(self, genesis_time: int = GENESIS_TIME, event_log_maxlen: Optional[int] = None) -> None:
        self.now: int = int(genesis_time)
        self.contracts: Dict[str, Contract] = {}
        self.log = EventLog(maxlen=event_log_maxlen)
        self._nonce = 0
        self._callers: List[str] = []

    # -----------------------------
    # Clock
    # -----------------------------
    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("ledger time cannot move backwards")
        self.now += int(seconds)
        return self.now

    def set_time(self, timestamp: int) -> int:
        return self.advance(int(timestamp) - self.now)

    # -----------------------------
    # Addresses / instances
    # -----------------------------
    def _new_address(self) -> str:
        self._nonce += 1
        return f"0x{self._nonce:040x}"

    def new_account(self) -> str:
        return self._new_address()

    def contract(self, address: str) -> Contract:
        try:
            return self.contracts[address]
        except KeyError:
            raise LookupError(f"no contract at {address}") from None

    def deploy(self, code: Type[C], deployer: str, *args: Any) -> C:
        def run() -> C:
            address = self._new_address()
            instance = code(self, address, code.new_state())
            self.contracts[address] = instance
            self._callers.append(deployer)
            try:
                instance.constructor(*args)
            finally:
                self._callers.pop()
            logger.debug("deployed %s at %s by %s", code.__name__, address, deployer)
            return instance
        return self._atomic(run, f"deploy {code.__name__}")

    def clone(self, template: str) -> Contract:
        """Create a new instance running the template's code with fresh state."""
        code = type(self.contract(template))
        address = self._new_address()
        instance = code(self, address, code.new_state())
        if hasattr(instance.state, "implementation"):
            instance.state.implementation = template
        self.contracts[address] = instance
        logger.debug("cloned %s from %s at %s", code.__name__, template, address)
        return instance

    # -----------------------------
    # Calls
    # -----------------------------
    @property
    def msg_sender(self) -> str:
        if not self._callers:
            return ZERO_ADDRESS
        return self._callers[-1]

    def call(self, sender: str, address: str, method: str, *args: Any) -> Any:
        if method.startswith("_"):
            raise AttributeError(f"{method} is not an entry point")
        fn = getattr(self.contract(address), method)
        if not callable(fn) or isinstance(fn, type):
            raise AttributeError(f"{method} is not an entry point")
        self._callers.append(sender)
        try:
            return fn(*args)
        finally:
            self._callers.pop()

    def transact(self, sender: str, address: str, method: str, *args: Any) -> Any:
        if self._callers:
            raise RuntimeError("transact() cannot be nested, use call()")
        return self._atomic(lambda: self.call(sender, address, method, *args), f"{method} on {address}")

    def at(self, address: str, sender: str) -> Handle:
        return Handle(self, address, sender)

    def _atomic(self, fn: Callable[[], Any], label: str) -> Any:
        saved_states = {addr: copy.deepcopy(c.state) for addr, c in self.contracts.items()}
        saved_contracts = dict(self.contracts)
        saved_nonce = self._nonce
        mark = self.log.mark()
        try:
            result = fn()
        except Exception as exc:
            for addr, state in saved_states.items():
                saved_contracts[addr].state = state
            self.contracts = saved_contracts
            self._nonce = saved_nonce
            self.log.rollback(mark)
            logger.warning("reverted %s: %s: %s", label, type(exc).__name__, exc)
            raise
        self.log.commit()
        return result
