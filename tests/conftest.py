import pytest

from offsetsim.config import ScenarioConfig
from offsetsim.factory import DeploymentFactory


@pytest.fixture
def cfg():
    return ScenarioConfig(network="polygon", seed=7, users=0)


@pytest.fixture
def factory(cfg):
    return DeploymentFactory(cfg)


@pytest.fixture
def world(factory):
    return factory.build()


@pytest.fixture
def chain(world):
    return world.chain


@pytest.fixture
def helper(world):
    return world.helper


@pytest.fixture
def alice(factory, world):
    return factory.fund_user(world, label="alice")


@pytest.fixture
def bob(factory, world):
    return factory.fund_user(world, label="bob")


@pytest.fixture
def usdc(world):
    return world.token("USDC")


@pytest.fixture
def weth(world):
    return world.token("WETH")


@pytest.fixture
def bct(world):
    return world.pools["BCT"]


@pytest.fixture
def nct(world):
    return world.pools["NCT"]
