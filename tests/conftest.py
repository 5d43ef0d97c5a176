from dataclasses import dataclass

import pytest

from zpr.chain import Chain
from zpr.core import SCALE
from zpr.factory import PoolRegistry
from zpr.pool import PoolInstance
from zpr.token import FungibleToken

HOUR = 60 * 60
DAY = 24 * HOUR
MAX_ALLOWANCE = 2**255
DEFAULT_FEE = 1000


class ReentrantToken(FungibleToken):
    """Calls back into ``reenter`` with stake() from inside transfer_from."""

    @dataclass
    class State(FungibleToken.State):
        reenter: str = ""

    def arm(self, target: str) -> None:
        self.state.reenter = target

    def transfer_from(self, owner, to, amount):
        if self.state.reenter:
            self.invoke(self.state.reenter, "stake", amount)
        return super().transfer_from(owner, to, amount)


@pytest.fixture
def chain():
    return Chain()

@pytest.fixture
def admin(chain):
    return chain.new_account()

@pytest.fixture
def treasury(chain):
    return chain.new_account()

@pytest.fixture
def owner(chain):
    return chain.new_account()

@pytest.fixture
def alice(chain):
    return chain.new_account()

@pytest.fixture
def bob(chain):
    return chain.new_account()

@pytest.fixture
def token(chain, admin):
    return chain.deploy(FungibleToken, admin, "ZPR")

@pytest.fixture
def template(chain, admin):
    return chain.deploy(PoolInstance, admin)

@pytest.fixture
def registry(chain, admin, template, treasury):
    return chain.deploy(PoolRegistry, admin, template.address, treasury, DEFAULT_FEE)

@pytest.fixture
def fund(chain, admin):
    """Mint ``amount`` of ``asset`` to ``account`` and approve each spender."""
    def _fund(asset, account, amount, *spenders):
        chain.transact(admin, asset.address, "mint", account, amount)
        for spender in spenders:
            chain.transact(account, asset.address, "approve", spender, MAX_ALLOWANCE)
    return _fund

@pytest.fixture
def make_pool(chain, admin, registry, token, owner, fund):
    def _make(fee=0, lock=DAY, k=SCALE, activate=True, asset=None, reward_asset=None):
        asset = asset or token
        reward_asset = reward_asset or asset
        addr = chain.transact(admin, registry.address, "create_pool",
                              asset.address, reward_asset.address, lock, k, owner, fee)
        if activate:
            fund(asset, owner, registry.activation_fee_for(addr), registry.address)
            chain.transact(owner, registry.address, "activate_pool", addr)
        return chain.contract(addr)
    return _make
