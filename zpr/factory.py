from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Tuple
import logging

from .chain import Contract
from .core import (
    BOND_SHARE_PCT,
    REWARD_SHARE_PCT,
    ActivationFeeNotSet,
    InvalidParameter,
    NotPoolOwner,
    Ownership,
    ReentrancyGuard,
    TokenMismatch,
    UnknownPool,
    ZeroAddress,
    ZeroAmount,
    balance_of,
    is_zero_address,
    pull_tokens,
    push_tokens,
)
from .pool import PoolInstance

logger = logging.getLogger(__name__)


def split_fee(fee: int) -> Tuple[int, int, int]:
    """Split an activation fee into (bond, reward, treasury) shares.

    The treasury share absorbs the truncation remainder so the three always
    add up to ``fee``.
    """
    bond_share = fee * BOND_SHARE_PCT // 100
    reward_share = fee * REWARD_SHARE_PCT // 100
    return bond_share, reward_share, fee - bond_share - reward_share


@dataclass
class RegistryState:
    template: str = ""
    treasury: str = ""
    default_activation_fee: int = 0
    pool_activation_fee: Dict[str, int] = field(default_factory=dict)
    all_pools: List[str] = field(default_factory=list)
    ownership: Ownership = field(default_factory=Ownership)
    guard: ReentrancyGuard = field(default_factory=ReentrancyGuard)


class PoolRegistry(Contract):
    """Creates pool instances from one template and runs their paid activation."""

    State = RegistryState

    def constructor(self, template: str, treasury: str, default_activation_fee: int = 0) -> None:
        if is_zero_address(treasury):
            raise ZeroAddress("treasury is the zero address")
        if default_activation_fee < 0:
            raise InvalidParameter("activation fee must not be negative")
        s = self.state
        s.template = template or ""
        s.treasury = treasury
        s.default_activation_fee = int(default_activation_fee)
        s.ownership = Ownership(self.msg_sender)

    # -----------------------------
    # Views
    # -----------------------------
    @property
    def owner(self) -> str:
        return self.state.ownership.owner

    @property
    def treasury(self) -> str:
        return self.state.treasury

    @property
    def template(self) -> str:
        return self.state.template

    def all_pools_length(self) -> int:
        return len(self.state.all_pools)

    def pool_at(self, index: int) -> str:
        if not 0 <= index < len(self.state.all_pools):
            raise InvalidParameter(f"no pool at index {index}")
        return self.state.all_pools[index]

    def all_pools(self) -> List[str]:
        return list(self.state.all_pools)

    def activation_fee_for(self, pool: str) -> int:
        return self.state.pool_activation_fee.get(pool, 0) or self.state.default_activation_fee

    def _pool(self, pool: str) -> PoolInstance:
        if pool not in self.state.pool_activation_fee:
            raise UnknownPool(f"{pool} was not created by this registry")
        return self.chain.contract(pool)

    # -----------------------------
    # Creation
    # -----------------------------
    def create_pool(self, staking_asset: str, reward_asset: str, lock_duration: int, k: int,
                    pool_owner: str, activation_fee: int = 0) -> str:
        s = self.state
        s.ownership.require(self.msg_sender)
        if is_zero_address(pool_owner):
            raise ZeroAddress("pool owner is the zero address")
        if is_zero_address(s.template):
            raise ZeroAddress("no pool template configured")
        if activation_fee < 0:
            raise InvalidParameter("activation fee must not be negative")

        pool = self.chain.clone(s.template)
        self.invoke(pool.address, "initialize", staking_asset, reward_asset, lock_duration, k,
                    pool_owner, self.address)
        fee = int(activation_fee) or s.default_activation_fee
        s.pool_activation_fee[pool.address] = fee
        s.all_pools.append(pool.address)
        self.emit("POOL_CREATED", actor=pool_owner, amount=fee, pool=pool.address,
                  staking_asset=staking_asset, reward_asset=reward_asset,
                  lock_duration=int(lock_duration), k=int(k), index=len(s.all_pools) - 1)
        logger.info("created pool %s (#%d) owner=%s fee=%d", pool.address, len(s.all_pools) - 1, pool_owner, fee)
        return pool.address

    # -----------------------------
    # Activation
    # -----------------------------
    def activate_pool(self, pool: str) -> Tuple[int, int, int]:
        s = self.state
        with s.guard:
            instance = self._pool(pool)
            fee = self.activation_fee_for(pool)
            if fee == 0:
                raise ActivationFeeNotSet(f"no activation fee for {pool}")
            caller = self.msg_sender
            if caller != instance.owner:
                raise NotPoolOwner(f"{caller} does not own {pool}")
            asset = instance.staking_asset
            if asset != instance.reward_asset:
                raise TokenMismatch("cross-asset pools cannot be activated")

            received = pull_tokens(self, asset, caller, fee)
            bond_share, reward_share, treasury_share = split_fee(received)
            push_tokens(self, asset, s.treasury, treasury_share)
            push_tokens(self, asset, pool, bond_share + reward_share)
            self.invoke(pool, "on_activation", bond_share, reward_share)

            self.emit("POOL_ACTIVATED", actor=caller, amount=received, pool=pool,
                      bond_share=bond_share, reward_share=reward_share, treasury_share=treasury_share)
            logger.info("activated pool %s fee=%d bond=%d reward=%d treasury=%d",
                        pool, received, bond_share, reward_share, treasury_share)
            return bond_share, reward_share, treasury_share

    # -----------------------------
    # Administration
    # -----------------------------
    def set_default_activation_fee(self, fee: int) -> None:
        self.state.ownership.require(self.msg_sender)
        if fee < 0:
            raise InvalidParameter("activation fee must not be negative")
        self.state.default_activation_fee = int(fee)
        self.emit("DEFAULT_FEE_UPDATED", amount=int(fee))

    def set_pool_activation_fee(self, pool: str, fee: int) -> None:
        self.state.ownership.require(self.msg_sender)
        self._pool(pool)
        if fee < 0:
            raise InvalidParameter("activation fee must not be negative")
        self.state.pool_activation_fee[pool] = int(fee)
        self.emit("POOL_FEE_UPDATED", amount=int(fee), pool=pool)

    def set_treasury(self, treasury: str) -> None:
        self.state.ownership.require(self.msg_sender)
        if is_zero_address(treasury):
            raise ZeroAddress("treasury is the zero address")
        previous, self.state.treasury = self.state.treasury, treasury
        self.emit("TREASURY_UPDATED", actor=treasury, previous=previous)
        logger.info("treasury %s -> %s", previous, treasury)

    def set_implementation_template(self, template: str) -> None:
        self.state.ownership.require(self.msg_sender)
        if is_zero_address(template):
            raise ZeroAddress("template is the zero address")
        previous, self.state.template = self.state.template, template
        self.emit("IMPLEMENTATION_UPDATED", actor=template, previous=previous)
        logger.info("pool template %s -> %s", previous, template)

    def set_pool_bond(self, pool: str, new_bond: int) -> None:
        self.state.ownership.require(self.msg_sender)
        self._pool(pool)
        self.invoke(pool, "set_bond", new_bond)

    def withdraw_factory_token(self, asset: str) -> int:
        s = self.state
        with s.guard:
            s.ownership.require(self.msg_sender)
            amount = balance_of(self, asset, self.address)
            if amount == 0:
                raise ZeroAmount(f"registry holds no {asset}")
            push_tokens(self, asset, s.treasury, amount)
            self.emit("FACTORY_TOKEN_WITHDRAWN", actor=s.treasury, amount=amount, asset=asset)
            return amount

    def transfer_ownership(self, new_owner: str) -> None:
        previous = self.state.ownership.transfer(self.msg_sender, new_owner)
        self.emit("OWNERSHIP_TRANSFERRED", actor=new_owner, previous=previous)
        logger.info("registry owner %s -> %s", previous, new_owner)
