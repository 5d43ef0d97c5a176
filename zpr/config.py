from dataclasses import dataclass

from .chain import GENESIS_TIME
from .core import SCALE

@dataclass
class ScenarioConfig:
    # Ledger
    genesis_time: int = GENESIS_TIME
    tick_seconds: int = 30 * 60      # 2 ticks = 1 settlement interval
    event_log_maxlen: int | None = None

    # Asset
    token_symbol: str = "ZPR"
    token_fee_bps: int = 0           # >0 deploys a fee-on-transfer asset
    user_initial_balance: int = 1_000_000
    owner_initial_balance: int = 1_000_000

    # Registry / pools
    initial_pools: int = 3
    default_activation_fee: int = 10_000
    activation_fee_overrides: list[int] | None = None  # per pool, 0 = default
    rate_constant_k: int = SCALE
    lock_duration_seconds: int = 24 * 60 * 60

    # Users
    initial_users: int = 20
    stake_size_mean: float = 5_000.0
    p_stake: float = 0.10            # per user per tick
    p_withdraw: float = 0.05         # per unlocked staker per tick
    p_owner_add_reward: float = 0.02 # per pool per tick
    owner_reward_topup: int = 2_000

    # Metrics
    metrics_stride: int = 1
    pool_metrics_stride: int = 4

    def __post_init__(self) -> None:
        if self.tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        if not 0 <= self.token_fee_bps <= 10_000:
            raise ValueError("token_fee_bps must be within [0, 10000]")
        if self.rate_constant_k <= 0:
            raise ValueError("rate_constant_k must be positive")
        if self.activation_fee_overrides is None:
            self.activation_fee_overrides = []
        for name in ("p_stake", "p_withdraw", "p_owner_add_reward"):
            value = getattr(self, name)
            setattr(self, name, min(1.0, max(0.0, float(value))))
