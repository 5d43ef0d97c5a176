from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import logging

from .chain import Contract
from .core import InsufficientAllowance, InsufficientBalance, TokenError, is_zero_address

logger = logging.getLogger(__name__)


class FungibleToken(Contract):
    """Reference fungible asset ledger used by the simulations and tests."""

    @dataclass
    class State:
        symbol: str = ""
        minter: str = ""
        total_supply: int = 0
        balances: Dict[str, int] = field(default_factory=dict)
        allowances: Dict[Tuple[str, str], int] = field(default_factory=dict)

    def constructor(self, symbol: str = "TKN") -> None:
        self.state.symbol = symbol
        self.state.minter = self.msg_sender

    # views
    def balance_of(self, account: str) -> int:
        return self.state.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.state.allowances.get((owner, spender), 0)

    def mint(self, to: str, amount: int) -> bool:
        if self.msg_sender != self.state.minter:
            raise TokenError("only the minter can mint")
        if is_zero_address(to) or amount < 0:
            raise TokenError("invalid mint")
        self.state.balances[to] = self.balance_of(to) + amount
        self.state.total_supply += amount
        logger.debug("mint %s: %d to %s", self.state.symbol, amount, to)
        self.emit("TRANSFER", actor=to, amount=amount, sender=None)
        return True

    def approve(self, spender: str, amount: int) -> bool:
        if amount < 0:
            raise TokenError("negative allowance")
        self.state.allowances[(self.msg_sender, spender)] = amount
        self.emit("APPROVAL", actor=self.msg_sender, amount=amount, spender=spender)
        return True

    def transfer(self, to: str, amount: int) -> Optional[bool]:
        self._move(self.msg_sender, to, amount)
        return True

    def transfer_from(self, owner: str, to: str, amount: int) -> Optional[bool]:
        spender = self.msg_sender
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise InsufficientAllowance(f"{spender} may spend {allowed} of {owner}, needs {amount}")
        self.state.allowances[(owner, spender)] = allowed - amount
        self._move(owner, to, amount)
        return True

    def _debit(self, owner: str, amount: int) -> None:
        balance = self.balance_of(owner)
        if amount < 0:
            raise TokenError("negative amount")
        if balance < amount:
            raise InsufficientBalance(f"{owner} holds {balance}, needs {amount}")
        self.state.balances[owner] = balance - amount

    def _credit(self, to: str, amount: int) -> None:
        if is_zero_address(to):
            raise TokenError("transfer to the zero address")
        self.state.balances[to] = self.balance_of(to) + amount

    def _move(self, owner: str, to: str, amount: int) -> None:
        self._debit(owner, amount)
        self._credit(to, amount)
        self.emit("TRANSFER", actor=to, amount=amount, sender=owner)


class FeeOnTransferToken(FungibleToken):
    """Burns ``fee_bps`` of every transfer before crediting the receiver."""

    @dataclass
    class State(FungibleToken.State):
        fee_bps: int = 0

    def constructor(self, symbol: str = "FOT", fee_bps: int = 100) -> None:
        super().constructor(symbol)
        if not 0 <= fee_bps <= 10_000:
            raise TokenError("fee_bps out of range")
        self.state.fee_bps = fee_bps

    def _move(self, owner: str, to: str, amount: int) -> None:
        fee = amount * self.state.fee_bps // 10_000
        self._debit(owner, amount)
        self._credit(to, amount - fee)
        self.state.total_supply -= fee
        self.emit("TRANSFER", actor=to, amount=amount - fee, sender=owner, burned=fee)


class SilentToken(FungibleToken):
    """Signals success by returning nothing, like some older assets do."""

    def transfer(self, to: str, amount: int) -> Optional[bool]:
        self._move(self.msg_sender, to, amount)
        return None

    def transfer_from(self, owner: str, to: str, amount: int) -> Optional[bool]:
        super().transfer_from(owner, to, amount)
        return None
