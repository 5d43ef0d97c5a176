from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict
import logging

from .chain import Contract
from .core import (
    SCALE,
    SETTLEMENT_INTERVAL,
    AlreadyActive,
    AlreadyInitialized,
    InvalidParameter,
    NoStake,
    NotAuthorized,
    Ownership,
    PoolNotActive,
    ReentrancyGuard,
    StillLocked,
    TokenMismatch,
    ZeroAddress,
    ZeroAmount,
    is_zero_address,
    pull_tokens,
    push_tokens,
)

logger = logging.getLogger(__name__)


@dataclass
class UserInfo:
    amount: int = 0
    reward_debt: int = 0
    last_settled_at: int = 0  # 0 = never settled
    unlock_at: int = 0

@dataclass
class PoolState:
    initialized: bool = False
    implementation: str = ""
    staking_asset: str = ""
    reward_asset: str = ""
    lock_duration: int = 0
    k: int = 0
    ownership: Ownership = field(default_factory=Ownership)
    registry: str = ""
    active: bool = False

    bond_amount: int = 0
    total_rewards_deposited: int = 0
    total_rewards_distributed: int = 0
    total_staked: int = 0

    users: Dict[str, UserInfo] = field(default_factory=dict)
    guard: ReentrancyGuard = field(default_factory=ReentrancyGuard)


class PoolInstance(Contract):
    """Single-asset staking pool whose reward rate (ZPR) floats with its reserves.

    Deployed once as a template and then cloned by the registry; the template
    itself is marked initialized at deploy time and can never hold a pool.
    """

    State = PoolState

    def constructor(self) -> None:
        self.state.initialized = True

    def initialize(self, staking_asset: str, reward_asset: str, lock_duration: int, k: int,
                   owner: str, registry: str) -> None:
        s = self.state
        if s.initialized:
            raise AlreadyInitialized(f"{self.address} already initialized")
        for name, addr in (("staking_asset", staking_asset), ("reward_asset", reward_asset),
                           ("owner", owner), ("registry", registry)):
            if is_zero_address(addr):
                raise ZeroAddress(f"{name} is the zero address")
        if int(k) <= 0:
            raise InvalidParameter("rate constant k must be positive")
        if int(lock_duration) < 0:
            raise InvalidParameter("lock duration must not be negative")

        s.initialized = True
        s.staking_asset = staking_asset
        s.reward_asset = reward_asset
        s.lock_duration = int(lock_duration)
        s.k = int(k)
        s.ownership = Ownership(owner)
        s.registry = registry
        s.active = False
        s.bond_amount = 0
        s.total_rewards_deposited = 0
        s.total_rewards_distributed = 0
        s.total_staked = 0
        logger.debug("pool %s initialized owner=%s k=%d lock=%ds", self.address, owner, s.k, s.lock_duration)

    # -----------------------------
    # Views
    # -----------------------------
    @property
    def owner(self) -> str:
        return self.state.ownership.owner

    @property
    def registry(self) -> str:
        return self.state.registry

    @property
    def staking_asset(self) -> str:
        return self.state.staking_asset

    @property
    def reward_asset(self) -> str:
        return self.state.reward_asset

    @property
    def active(self) -> bool:
        return self.state.active

    def user_info(self, account: str) -> UserInfo:
        return self.state.users.get(account, UserInfo())

    def remaining_rewards(self) -> int:
        s = self.state
        if s.total_rewards_deposited <= s.total_rewards_distributed:
            return 0
        return s.total_rewards_deposited - s.total_rewards_distributed

    def current_rate(self) -> int:
        s = self.state
        base = s.bond_amount + s.total_staked
        remaining = self.remaining_rewards()
        if base == 0 or remaining == 0:
            return 0
        denom = (s.k * base) // SCALE
        if denom == 0:
            return 0
        return (remaining * SCALE) // denom

    def _accrued(self, user: UserInfo, now: int) -> int:
        elapsed = now - user.last_settled_at
        if user.amount == 0 or user.last_settled_at == 0 or elapsed <= 0:
            return 0
        reward = (user.amount * self.current_rate() * elapsed) // SCALE
        return min(reward, self.remaining_rewards())

    def pending_reward(self, account: str) -> int:
        """Accrued debt plus what the next settlement would add for the span so far."""
        user = self.user_info(account)
        return user.reward_debt + self._accrued(user, self.now)

    # -----------------------------
    # Settlement
    # -----------------------------
    def _update_user(self, account: str) -> None:
        user = self.state.users.get(account)
        if user is None or user.amount == 0:
            return
        now = self.now
        if user.last_settled_at == 0:
            user.last_settled_at = now
            return
        if now - user.last_settled_at < SETTLEMENT_INTERVAL:
            return
        reward = self._accrued(user, now)
        user.reward_debt += reward
        self.state.total_rewards_distributed += reward
        user.last_settled_at = now
        self.emit("USER_REWARD_UPDATED", actor=account, amount=reward, reward_debt=user.reward_debt)
        logger.debug("settled %s on %s: +%d (debt=%d)", account, self.address, reward, user.reward_debt)

    # -----------------------------
    # Registry entry points
    # -----------------------------
    def on_activation(self, bond_amount: int, reward_amount: int) -> None:
        s = self.state
        with s.guard:
            if self.msg_sender != s.registry:
                raise NotAuthorized(f"{self.msg_sender} is not the registry")
            if s.active:
                raise AlreadyActive(f"{self.address} is already active")
            if bond_amount <= 0 or reward_amount <= 0:
                raise ZeroAmount("bond and reward must be positive")
            if s.staking_asset != s.reward_asset:
                raise TokenMismatch("staking and reward assets differ")
            s.bond_amount += bond_amount
            s.total_rewards_deposited += reward_amount
            s.active = True
            self.emit("ACTIVATED", bond_amount=bond_amount, reward_amount=reward_amount)
            logger.info("pool %s activated bond=%d reward=%d", self.address, bond_amount, reward_amount)

    def set_bond(self, new_bond: int) -> None:
        s = self.state
        if self.msg_sender not in (s.ownership.owner, s.registry):
            raise NotAuthorized(f"{self.msg_sender} may not set the bond")
        if new_bond < 0:
            raise InvalidParameter("bond must not be negative")
        old, s.bond_amount = s.bond_amount, int(new_bond)
        self.emit("BOND_UPDATED", actor=self.msg_sender, amount=s.bond_amount, previous=old)

    # -----------------------------
    # Owner operations
    # -----------------------------
    def add_reward(self, amount: int) -> int:
        s = self.state
        with s.guard:
            s.ownership.require(self.msg_sender)
            if amount <= 0:
                raise ZeroAmount("reward amount must be positive")
            received = pull_tokens(self, s.reward_asset, self.msg_sender, amount)
            s.total_rewards_deposited += received
            self.emit("REWARD_ADDED", actor=self.msg_sender, amount=received, requested=amount)
            return received

    def force_deactivate(self) -> None:
        self.state.ownership.require(self.msg_sender)
        self.state.active = False
        self.emit("FORCE_DEACTIVATED", actor=self.msg_sender)
        logger.info("pool %s force-deactivated", self.address)

    def transfer_ownership(self, new_owner: str) -> None:
        previous = self.state.ownership.transfer(self.msg_sender, new_owner)
        self.emit("OWNERSHIP_TRANSFERRED", actor=new_owner, previous=previous)

    # -----------------------------
    # User operations
    # -----------------------------
    def stake(self, amount: int) -> int:
        s = self.state
        with s.guard:
            if not s.active:
                raise PoolNotActive(f"{self.address} is not active")
            if amount <= 0:
                raise ZeroAmount("stake amount must be positive")
            account = self.msg_sender
            self._update_user(account)

            received = pull_tokens(self, s.staking_asset, account, amount)
            user = s.users.setdefault(account, UserInfo())
            if user.amount == 0:
                user.last_settled_at = self.now
            user.amount += received
            user.unlock_at = self.now + s.lock_duration
            s.total_staked += received
            self.emit("STAKED", actor=account, amount=received, requested=amount, unlock_at=user.unlock_at)
            logger.debug("stake %s on %s: %d (principal=%d)", account, self.address, received, user.amount)
            return received

    def withdraw(self) -> int:
        s = self.state
        with s.guard:
            if not s.active:
                raise PoolNotActive(f"{self.address} is not active")
            account = self.msg_sender
            self._update_user(account)

            user = s.users.get(account)
            if user is None or user.amount == 0:
                raise NoStake(f"{account} has nothing staked")
            if self.now < user.unlock_at:
                raise StillLocked(f"{account} is locked until {user.unlock_at}")

            principal, reward = user.amount, user.reward_debt
            del s.users[account]
            s.total_staked -= principal

            push_tokens(self, s.staking_asset, account, principal)
            push_tokens(self, s.reward_asset, account, reward)
            self.emit("WITHDRAWN", actor=account, amount=principal)
            if reward > 0:
                self.emit("REWARD_PAID", actor=account, amount=reward)
            logger.debug("withdraw %s on %s: principal=%d reward=%d", account, self.address, principal, reward)
            return principal + reward
