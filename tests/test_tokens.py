import pytest

from offsetsim.core import AccessDenied, Chain, InsufficientFundsError, Revert, parse_ether
from offsetsim.tokens import ERC20, MAX_UINT256, PoolToken, ProjectToken, VintageData, WrappedNative


@pytest.fixture
def chain():
    return Chain()


@pytest.fixture
def deployer(chain):
    return chain.new_account(label="deployer")


@pytest.fixture
def holder(chain):
    return chain.new_account(native_balance=parse_ether(10), label="holder")


@pytest.fixture
def token(chain, deployer, holder):
    t = chain.deploy(ERC20("Test", "TST", 18, owner=deployer))
    t.mint(deployer, holder, 1000)
    return t


def _vintage(chain, deployer, year, project="VCS-1"):
    start = 1_000_000 * (year - 2000)
    data = VintageData(name=str(year), project_id=project, start_time=start, end_time=start + 999_999)
    return chain.deploy(ProjectToken(data, owner=deployer))


@pytest.fixture
def pool_with_vintages(chain, deployer, holder):
    """A pool holding 2012, 2010 and 2011 vintages (deposited in that order)."""
    pool = chain.deploy(PoolToken("Base Carbon Tonne", "BCT", owner=deployer))
    lots = {}
    for year, amount in ((2012, 300), (2010, 100), (2011, 200)):
        tco2 = _vintage(chain, deployer, year)
        tco2.mint(deployer, holder, amount)
        tco2.approve(holder, pool.address, amount)
        pool.deposit(holder, tco2.address, amount)
        lots[year] = tco2
    return pool, lots


# -----------------------------
# ERC20
# -----------------------------
def test_transfer_exceeding_balance_reverts(token, holder, deployer):
    with pytest.raises(InsufficientFundsError, match="ERC20: transfer amount exceeds balance"):
        token.transfer(holder, deployer, 1001)
    assert token.balance_of(holder) == 1000


def test_transfer_from_needs_allowance(token, holder, deployer):
    with pytest.raises(InsufficientFundsError, match="ERC20: insufficient allowance"):
        token.transfer_from(deployer, holder, deployer, 1)

    token.approve(holder, deployer, 10)
    token.transfer_from(deployer, holder, deployer, 4)
    assert token.allowance(holder, deployer) == 6
    assert token.balance_of(deployer) == 4


def test_infinite_allowance_is_not_spent(token, holder, deployer):
    token.approve(holder, deployer, MAX_UINT256)
    token.transfer_from(deployer, holder, deployer, 500)
    assert token.allowance(holder, deployer) == MAX_UINT256


def test_only_owner_mints(token, holder):
    with pytest.raises(AccessDenied, match="Ownable: caller is not the owner"):
        token.mint(holder, holder, 1)
    assert token.total_supply() == 1000


def test_wrapped_native_round_trip(chain, deployer, holder):
    wnative = chain.deploy(WrappedNative("Wrapped Matic", "WMATIC", owner=deployer))
    wnative.deposit(holder, value=parse_ether(3))
    assert wnative.balance_of(holder) == parse_ether(3)
    assert chain.balance(holder) == parse_ether(7)

    wnative.withdraw(holder, parse_ether(1))
    assert chain.balance(holder) == parse_ether(8)
    assert chain.balance(wnative.address) == parse_ether(2)
    with pytest.raises(InsufficientFundsError):
        wnative.deposit(holder, value=parse_ether(100))


# -----------------------------
# Carbon tokens
# -----------------------------
def test_deposit_mints_pool_tokens_one_to_one(pool_with_vintages, holder):
    pool, _ = pool_with_vintages
    assert pool.balance_of(holder) == 600
    assert pool.total_supply() == pool.tco2_supply() == 600


def test_scored_tco2s_are_oldest_first(pool_with_vintages):
    pool, lots = pool_with_vintages
    assert pool.scored_tco2s() == [lots[2010].address, lots[2011].address, lots[2012].address]


def test_redeem_spills_from_oldest_into_next(pool_with_vintages, holder):
    pool, lots = pool_with_vintages

    tco2s, amounts = pool.redeem_auto(holder, 250)

    assert tco2s == [lots[2010].address, lots[2011].address]
    assert amounts == [100, 150]
    assert pool.total_supply() == 350
    assert lots[2010].balance_of(holder) == 100
    assert lots[2011].balance_of(pool.address) == 50


def test_redeem_skips_emptied_vintages(pool_with_vintages, holder):
    pool, lots = pool_with_vintages
    pool.redeem_auto(holder, 100)

    tco2s, amounts = pool.redeem_auto(holder, 10)

    assert tco2s == [lots[2011].address]
    assert amounts == [10]


def test_redeem_more_than_pool_holds_reverts(pool_with_vintages, holder):
    pool, _ = pool_with_vintages
    with pytest.raises(Revert, match="Insufficient TCO2 in pool"):
        pool.redeem_auto(holder, 601)
    assert pool.total_supply() == 600


def test_pool_rejects_non_project_tokens(chain, deployer, holder, token):
    pool = chain.deploy(PoolToken("Nature Carbon Tonne", "NCT", owner=deployer))
    token.approve(holder, pool.address, 10)
    with pytest.raises(Revert, match="Token rejected"):
        pool.deposit(holder, token.address, 10)


def test_retire_burns_and_records(chain, deployer, holder):
    tco2 = _vintage(chain, deployer, 2015)
    tco2.mint(deployer, holder, 40)

    tco2.retire(holder, 15)

    assert tco2.balance_of(holder) == 25
    assert tco2.total_supply() == 25
    assert tco2.retired_amount(holder) == 15
    assert tco2.state.total_retired == 15
    with pytest.raises(InsufficientFundsError, match="ERC20: burn amount exceeds balance"):
        tco2.retire(holder, 26)
