from __future__ import annotations
from typing import Dict, List, Tuple, Any
import logging
import numpy as np
import random

from .chain import Chain
from .config import ScenarioConfig
from .core import SCALE, ContractError, Event
from .factory import PoolRegistry
from .metrics import MetricsStore
from .pool import PoolInstance
from .token import FeeOnTransferToken, FungibleToken

logger = logging.getLogger(__name__)

MAX_ALLOWANCE = 2**255


class SimulationEngine:
    """Drives a registry, its pools and a population of stakers through time."""

    def __init__(self, cfg: ScenarioConfig, seed: int = 1) -> None:
        self.cfg = cfg
        self.rng = random.Random(seed)
        np.random.seed(seed)

        self.tick: int = 0
        self.chain = Chain(genesis_time=cfg.genesis_time, event_log_maxlen=cfg.event_log_maxlen)
        self.log = self.chain.log
        self.metrics = MetricsStore()

        self.admin = self.chain.new_account()
        self.treasury = self.chain.new_account()
        self.pool_owners: Dict[str, str] = {}
        self.users: List[str] = []
        self.violations: List[Tuple[int, str]] = []
        self.failures: Dict[str, int] = {}

        self._bootstrap()

    def _bootstrap(self) -> None:
        cfg = self.cfg
        if cfg.token_fee_bps > 0:
            self.token = self.chain.deploy(FeeOnTransferToken, self.admin, cfg.token_symbol, cfg.token_fee_bps)
        else:
            self.token = self.chain.deploy(FungibleToken, self.admin, cfg.token_symbol)
        self.template = self.chain.deploy(PoolInstance, self.admin)
        self.registry = self.chain.deploy(PoolRegistry, self.admin, self.template.address,
                                          self.treasury, cfg.default_activation_fee)

        for idx in range(cfg.initial_pools):
            overrides = cfg.activation_fee_overrides or []
            fee = overrides[idx] if idx < len(overrides) else 0
            self.add_pool(activation_fee=fee)

        for _ in range(cfg.initial_users):
            self.add_user()

        self.snapshot_metrics()

    # -----------------------------
    # Helpers
    # -----------------------------
    @property
    def pools(self) -> Dict[str, PoolInstance]:
        return {addr: self.chain.contract(addr) for addr in self.registry.all_pools()}

    def balance(self, account: str) -> int:
        return self.token.balance_of(account)

    def _mint(self, to: str, amount: int) -> None:
        self.chain.transact(self.admin, self.token.address, "mint", to, amount)

    def _approve(self, owner: str, spender: str) -> None:
        self.chain.transact(owner, self.token.address, "approve", spender, MAX_ALLOWANCE)

    def _try(self, sender: str, address: str, method: str, *args: Any) -> Tuple[bool, Any]:
        try:
            return True, self.chain.transact(sender, address, method, *args)
        except ContractError as exc:
            reason = type(exc).__name__
            self.failures[reason] = self.failures.get(reason, 0) + 1
            self.log.add(Event(self.chain.now, "ACTION_FAILED", emitter=address, actor=sender,
                               meta={"action": method, "reason": reason, "tick": self.tick}))
            return False, None

    # -----------------------------
    # Population
    # -----------------------------
    def add_pool(self, activation_fee: int = 0, activate: bool = True) -> str:
        cfg = self.cfg
        owner = self.chain.new_account()
        self._mint(owner, cfg.owner_initial_balance)
        pool = self.chain.transact(
            self.admin, self.registry.address, "create_pool",
            self.token.address, self.token.address,
            cfg.lock_duration_seconds, cfg.rate_constant_k, owner, activation_fee,
        )
        self.pool_owners[pool] = owner
        self._approve(owner, self.registry.address)
        self._approve(owner, pool)
        for user in self.users:
            self._approve(user, pool)
        if activate:
            self._try(owner, self.registry.address, "activate_pool", pool)
        return pool

    def add_user(self) -> str:
        user = self.chain.new_account()
        self._mint(user, self.cfg.user_initial_balance)
        for pool in self.registry.all_pools():
            self._approve(user, pool)
        self.users.append(user)
        return user

    # -----------------------------
    # Simulation
    # -----------------------------
    def _sample_stake(self, balance: int) -> int:
        amount = int(np.random.exponential(self.cfg.stake_size_mean))
        return max(1, min(amount, balance))

    def _owner_actions(self) -> None:
        for pool_addr, pool in self.pools.items():
            if not pool.active:
                continue
            if self.rng.random() < self.cfg.p_owner_add_reward:
                self._try(self.pool_owners[pool_addr], pool_addr, "add_reward", self.cfg.owner_reward_topup)

    def _user_actions(self) -> None:
        pools = [p for p in self.pools.values() if p.active]
        if not pools:
            return
        users = list(self.users)
        self.rng.shuffle(users)
        now = self.chain.now
        for user in users:
            staked = [p for p in pools if p.user_info(user).amount > 0]
            unlocked = [p for p in staked if p.user_info(user).unlock_at <= now]
            if unlocked and self.rng.random() < self.cfg.p_withdraw:
                pool = self.rng.choice(unlocked)
                self._try(user, pool.address, "withdraw")
                continue
            if self.rng.random() < self.cfg.p_stake:
                balance = self.balance(user)
                if balance <= 0:
                    continue
                pool = self.rng.choice(pools)
                self._try(user, pool.address, "stake", self._sample_stake(balance))

    def step(self, n_ticks: int = 1) -> None:
        for _ in range(n_ticks):
            self.tick += 1
            self.chain.advance(self.cfg.tick_seconds)
            self._owner_actions()
            self._user_actions()
            for problem in self.check_invariants():
                self.violations.append((self.tick, problem))
            self.snapshot_metrics()

    def check_invariants(self) -> List[str]:
        problems: List[str] = []
        for addr, pool in self.pools.items():
            s = pool.state
            if s.total_rewards_distributed > s.total_rewards_deposited:
                problems.append(f"{addr}: distributed {s.total_rewards_distributed} > deposited {s.total_rewards_deposited}")
            principal = sum(u.amount for u in s.users.values() if u.amount > 0)
            if principal != s.total_staked:
                problems.append(f"{addr}: total_staked {s.total_staked} != sum of principal {principal}")
            for account, u in s.users.items():
                if u.amount > 0 and u.unlock_at == 0:
                    problems.append(f"{addr}: {account} staked without a lock")
        for problem in problems:
            logger.warning("tick %d invariant violated: %s", self.tick, problem)
        return problems

    # -----------------------------
    # Metrics
    # -----------------------------
    def snapshot_metrics(self, force_network: bool = False, force_pool: bool = False) -> None:
        cfg = self.cfg
        metrics_stride = int(cfg.metrics_stride or 0)
        pool_stride = int(cfg.pool_metrics_stride or 0)
        do_network = force_network or (metrics_stride > 0 and self.tick % metrics_stride == 0)
        do_pool = force_pool or (pool_stride > 0 and self.tick % pool_stride == 0)
        if not do_network and not do_pool:
            return

        pools = self.pools
        if do_pool:
            pool_rows = []
            for addr, p in pools.items():
                s = p.state
                pool_rows.append({
                    "tick": self.tick,
                    "timestamp": self.chain.now,
                    "pool": addr,
                    "active": bool(s.active),
                    "bond": s.bond_amount,
                    "total_staked": s.total_staked,
                    "rewards_deposited": s.total_rewards_deposited,
                    "rewards_distributed": s.total_rewards_distributed,
                    "rewards_remaining": p.remaining_rewards(),
                    "rate": p.current_rate() / SCALE,
                    "stakers": sum(1 for u in s.users.values() if u.amount > 0),
                })
            self.metrics.add_pool_rows(pool_rows)

        if do_network:
            stakes = withdrawals = failed = 0
            reward_paid = 0
            now = self.chain.now
            for e in reversed(self.log.events):
                if e.timestamp != now:
                    if e.timestamp < now:
                        break
                    continue
                if e.event_type == "STAKED":
                    stakes += 1
                elif e.event_type == "WITHDRAWN":
                    withdrawals += 1
                elif e.event_type == "REWARD_PAID":
                    reward_paid += int(e.amount or 0)
                elif e.event_type == "ACTION_FAILED":
                    failed += 1

            self.metrics.add_network({
                "tick": self.tick,
                "timestamp": now,
                "num_pools": len(pools),
                "num_active_pools": sum(1 for p in pools.values() if p.active),
                "total_staked": sum(p.state.total_staked for p in pools.values()),
                "total_bond": sum(p.state.bond_amount for p in pools.values()),
                "rewards_deposited": sum(p.state.total_rewards_deposited for p in pools.values()),
                "rewards_distributed": sum(p.state.total_rewards_distributed for p in pools.values()),
                "treasury_balance": self.balance(self.treasury),
                "registry_balance": self.balance(self.registry.address),
                "stakes_tick": stakes,
                "withdrawals_tick": withdrawals,
                "reward_paid_tick": reward_paid,
                "failed_actions_tick": failed,
                "invariant_violations_total": len(self.violations),
            })
