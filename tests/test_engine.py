import pandas as pd
import pytest

from offsetsim.config import NetworkConfig, ScenarioConfig
from offsetsim.core import parse_ether
from offsetsim.engine import OffsetSimulation


@pytest.fixture
def sim():
    return OffsetSimulation(ScenarioConfig(network="polygon", seed=3, users=2))


def test_initial_snapshot(sim):
    pools = sim.metrics.pools_df()
    assert sorted(pools["pool"]) == ["BCT", "NCT"]
    assert (pools["tonnes_retired"] == 0).all()
    assert len(sim.users) == 2


def test_exact_out_token_flow(sim):
    user = sim.users[0]
    receipt = sim.offset_exact_out_token(user, "WETH", "NCT", parse_ether(2))

    assert receipt.status == "executed"
    assert receipt.retired == parse_ether(2)
    assert receipt.spent > 0
    assert [tx.method for tx in receipt.txs] == ["approve", "auto_offset_exact_out_token"]
    row = sim.metrics.offsets_df().iloc[-1]
    assert row["flow"] == "exact_out_token"
    assert row["tonnes_retired"] == pytest.approx(2.0)


def test_exact_out_eth_flow_spends_only_the_quote(sim):
    user = sim.users[1]
    pool = sim.world.pools["BCT"]
    needed = sim.helper.calculate_needed_eth_amount(pool.address, parse_ether(1))

    receipt = sim.offset_exact_out_eth(user, "BCT", parse_ether(1), surplus_bps=200)

    assert receipt.status == "executed"
    assert receipt.spent == needed
    assert sim.chain.balance(sim.helper.address) == 0


def test_each_flow_records_a_row(sim):
    user = sim.users[0]
    sim.offset_exact_in_token(user, "USDC", "BCT", 10 * 10 ** 6)
    sim.offset_exact_in_eth(user, "NCT", parse_ether(5))
    sim.offset_pool_token(user, "NCT", parse_ether(1))
    sim.offset_stepwise(user, "USDC", "BCT", parse_ether(1))

    df = sim.metrics.offsets_df()
    assert list(df["flow"]) == ["exact_in_token", "exact_in_eth", "pool_token", "stepwise"]
    assert (df["status"] == "executed").all()
    assert len(sim.receipts[-1].txs) == 4


def test_failed_quote_is_recorded(sim):
    user = sim.users[0]
    too_much = parse_ether(10 ** 9)

    receipt = sim.offset_exact_out_token(user, "USDC", "BCT", too_much)

    assert receipt.status == "failed"
    assert receipt.fail_reason == "UniswapV2Library: INSUFFICIENT_LIQUIDITY"
    assert sim.metrics.offsets_df().iloc[-1]["status"] == "failed"


def test_failed_transaction_is_recorded(sim):
    user = sim.users[0]
    receipt = sim.offset_pool_token(user, "BCT", parse_ether(10 ** 7))

    assert receipt.status == "failed"
    assert receipt.fail_reason == "ERC20: transfer amount exceeds balance"
    assert receipt.retired == 0


def test_step_produces_receipts_and_snapshots(sim):
    rows_before = len(sim.metrics.pools_df())
    receipts = sim.step(4)

    assert len(receipts) == 4 * sim.cfg.offsets_per_step
    assert len(sim.metrics.pools_df()) == rows_before + 4 * len(sim.world.pools)
    by_flow = sim.metrics.retired_by_flow()
    assert set(by_flow.columns) == {"flow", "offsets", "tonnes_retired"}
    executed = sum(1 for r in receipts if r.status == "executed")
    assert by_flow["offsets"].sum() == executed


def test_retired_totals_match_pool_burns(sim):
    supply_before = {s: p.total_supply() for s, p in sim.world.pools.items()}
    sim.step(5)
    retired = sim.retired_by_pool()
    for symbol, pool in sim.world.pools.items():
        assert supply_before[symbol] - pool.total_supply() == retired[symbol]


def test_runs_are_reproducible_for_a_seed():
    a = OffsetSimulation(ScenarioConfig(seed=11, users=3))
    b = OffsetSimulation(ScenarioConfig(seed=11, users=3))
    a.step(3)
    b.step(3)
    pd.testing.assert_frame_equal(a.metrics.offsets_df(), b.metrics.offsets_df())


def test_celo_fork_routes_through_mcusd():
    sim = OffsetSimulation(ScenarioConfig(network="celo", users=1))
    net = sim.world.network
    assert net.stable_symbol == "mcUSD"
    assert sim.world.wrapped_native.symbol == "CELO"

    receipt = sim.offset_exact_out_token(sim.users[0], "USDC", "NCT", parse_ether(1))
    assert receipt.status == "executed"
    assert receipt.retired == parse_ether(1)

    receipt = sim.offset_exact_in_eth(sim.users[0], "BCT", parse_ether(10))
    assert receipt.status == "executed"


def test_unknown_network_is_rejected():
    with pytest.raises(ValueError, match="unknown network"):
        NetworkConfig.for_network("goerli")
    with pytest.raises(ValueError):
        ScenarioConfig(vintage_supply_tonnes=(10.0, 1.0))
