import json
import time
import streamlit as st
import pandas as pd

from offsetsim.config import ADDRESSES, ScenarioConfig
from offsetsim.core import format_units, parse_units
from offsetsim.engine import OffsetSimulation

st.set_page_config(page_title="Offset Helper Simulator", layout="wide")


def get_sim() -> OffsetSimulation:
    if "sim" not in st.session_state:
        cfg = ScenarioConfig()
        st.session_state.cfg = cfg
        st.session_state.sim = OffsetSimulation(cfg=cfg)
    return st.session_state.sim


def reset_sim(network: str, seed: int) -> None:
    cfg = ScenarioConfig(network=network, seed=int(seed))
    st.session_state.cfg = cfg
    st.session_state.sim = OffsetSimulation(cfg=cfg)
    st.session_state.last_receipt = None


sim = get_sim()
world = sim.world

st.title("Offset Helper Simulator")
st.caption(
    f"Local {world.network.name} fork, chain id {world.network.chain_id}, routing through "
    f"{world.network.stable_symbol}. 1 step = 1 batch of random offsets."
)

def _fmt_duration(seconds: float) -> str:
    if seconds < 0:
        seconds = 0.0
    mins = int(seconds // 60)
    secs = seconds - (mins * 60)
    return f"{mins}m {secs:0.1f}s"

def _fmt(value: float) -> str:
    return f"{float(value):,.2f}"

def _render_kpi_grid(kpis, columns: int = 4) -> None:
    for idx in range(0, len(kpis), columns):
        row = kpis[idx: idx + columns]
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, row):
            col.metric(label, value)

def _format_event_args(args) -> str:
    if not args:
        return ""
    try:
        return json.dumps(args, sort_keys=True, default=str)
    except TypeError:
        return str(args)

def _show_receipt(receipt) -> None:
    if receipt is None:
        return
    if receipt.status == "executed":
        st.success(f"{receipt.flow}: retired {format_units(receipt.retired, 18)} t across {len(receipt.tco2s)} vintages")
        rows = [
            {"tco2": world.symbol_of(a), "tonnes": format_units(amt, 18)}
            for a, amt in zip(receipt.tco2s, receipt.amounts)
        ]
        st.dataframe(pd.DataFrame(rows), use_container_width=True)
    else:
        st.error(f"{receipt.flow} failed: {receipt.fail_reason}")
    st.dataframe(pd.DataFrame([tx.to_dict() for tx in receipt.txs]), use_container_width=True)

with st.sidebar:
    st.header("Sim Controls")

    st.subheader("Fork")
    networks = sorted(ADDRESSES)
    network = st.selectbox("Network", networks, index=networks.index(st.session_state.cfg.network))
    seed = st.number_input("Random seed", min_value=1, max_value=100000, value=int(st.session_state.cfg.seed))
    if st.button("Restart simulation"):
        reset_sim(network, seed)
        sim = st.session_state.sim
        world = sim.world
    st.caption("Restart redeploys every contract and reseeds vintages and liquidity.")

    st.subheader("Run")
    run_steps = st.slider("Steps to run", min_value=1, max_value=200, value=10)
    c1, c2 = st.columns(2)
    run_one = c1.button("Step 1")
    run_many = c2.button("Run N steps")
    progress_bar = st.progress(0.0, text="Idle")
    if run_one or run_many:
        total = 1 if run_one else int(run_steps)
        start_ts = time.time()
        for idx in range(total):
            sim.step(1)
            progress = (idx + 1) / total
            progress_bar.progress(progress, text=f"Run progress: {progress:.0%}")
        elapsed = time.time() - start_ts
        progress_bar.progress(1.0, text=f"Run progress: 100% ({_fmt_duration(elapsed)})")
    st.caption(f"Current block: {sim.chain.block_number}")

    st.subheader("Users")
    if st.button("Add funded user"):
        sim.factory.fund_user(world, label=f"user_{len(sim.users):04d}")
    st.caption(f"{len(sim.users)} funded users")

tab_overview, tab_offset, tab_pools, tab_events = st.tabs(["Overview", "Offset", "Pools", "Event Log"])

with tab_overview:
    offsets = sim.metrics.offsets_df()
    executed = offsets[offsets["status"] == "executed"] if not offsets.empty else offsets
    retired = sim.retired_by_pool()
    kpis = [
        ("Offsets attempted", str(len(offsets))),
        ("Offsets executed", str(len(executed))),
        ("Tonnes retired", _fmt(sum(retired.values()) / 10 ** 18)),
        ("Block", str(sim.chain.block_number)),
    ]
    for symbol, amount in sorted(retired.items()):
        kpis.append((f"{symbol} retired (t)", _fmt(amount / 10 ** 18)))
    _render_kpi_grid(kpis)

    st.subheader("Retired by flow")
    st.dataframe(sim.metrics.retired_by_flow(), use_container_width=True)

    st.subheader("Offsets")
    if offsets.empty:
        st.info("No offsets yet.")
    else:
        st.dataframe(offsets.iloc[::-1], use_container_width=True)

with tab_offset:
    st.subheader("Offset as a user")
    user = st.selectbox("User", sim.users)
    flow = st.radio(
        "Flow",
        ["exact_in_token", "exact_out_token", "exact_in_eth", "exact_out_eth", "pool_token", "stepwise"],
        horizontal=True,
    )
    pool_symbol = st.selectbox("Pool", sorted(world.pools))
    from_symbol = None
    if flow in ("exact_in_token", "exact_out_token", "stepwise"):
        from_symbol = st.selectbox("Pay with", world.network.swappable_symbols)
    amount_text = st.text_input("Amount", value="1.0")

    if flow in ("exact_in_token", "stepwise", "exact_out_token") and from_symbol:
        st.caption(f"Wallet: {format_units(world.token(from_symbol).balance_of(user), world.token(from_symbol).decimals)} {from_symbol}")
    elif flow in ("exact_in_eth", "exact_out_eth"):
        st.caption(f"Wallet: {format_units(sim.chain.balance(user), 18)} {world.network.native_symbol}")
    else:
        st.caption(f"Wallet: {format_units(world.pools[pool_symbol].balance_of(user), 18)} {pool_symbol}")

    if st.button("Offset"):
        try:
            if flow == "exact_in_token":
                amount = parse_units(amount_text, world.token(from_symbol).decimals)
                receipt = sim.offset_exact_in_token(user, from_symbol, pool_symbol, amount)
            elif flow == "exact_out_token":
                receipt = sim.offset_exact_out_token(user, from_symbol, pool_symbol, parse_units(amount_text, 18))
            elif flow == "stepwise":
                receipt = sim.offset_stepwise(user, from_symbol, pool_symbol, parse_units(amount_text, 18))
            elif flow == "exact_in_eth":
                receipt = sim.offset_exact_in_eth(user, pool_symbol, parse_units(amount_text, 18))
            elif flow == "exact_out_eth":
                receipt = sim.offset_exact_out_eth(user, pool_symbol, parse_units(amount_text, 18), surplus_bps=100)
            else:
                receipt = sim.offset_pool_token(user, pool_symbol, parse_units(amount_text, 18))
            st.session_state.last_receipt = receipt
        except ValueError as exc:
            st.error(f"Invalid amount: {exc}")
    _show_receipt(st.session_state.get("last_receipt"))

    st.subheader("Helper ledger")
    ledger = sim.helper.ledger_of(user)
    if not ledger:
        st.info("Nothing staged in the helper for this user.")
    else:
        st.dataframe(pd.DataFrame([
            {"asset": world.symbol_of(a), "amount": format_units(amt, 18)} for a, amt in ledger.items()
        ]), use_container_width=True)

with tab_pools:
    pools = sim.metrics.pools_df()
    if not pools.empty:
        st.subheader("Pool supply (t)")
        st.line_chart(pools.pivot_table(index="block", columns="pool", values="total_supply"))
        st.subheader("Retired (t)")
        st.line_chart(pools.pivot_table(index="block", columns="pool", values="tonnes_retired"))

    sel = st.selectbox("Select pool", sorted(world.pools))
    pool = world.pools[sel]
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Supply", _fmt(pool.total_supply() / 10 ** 18))
    c2.metric("TCO2 held", _fmt(pool.tco2_supply() / 10 ** 18))
    c3.metric("Vintages", str(len(pool.scored_tco2s())))
    c4.metric("Staged in helper", _fmt(sim.helper.ledger_total(pool.address) / 10 ** 18))

    inv = pd.DataFrame([
        {
            "vintage": t.vintage.name,
            "symbol": t.symbol,
            "in_pool": t.balance_of(pool.address) / 10 ** 18,
            "retired": t.state.total_retired / 10 ** 18,
        }
        for t in world.vintages[sel]
    ])
    st.write("**Vintages (oldest first)**")
    st.dataframe(inv, use_container_width=True)

with tab_events:
    st.subheader("Event Log (latest 300)")
    names = sorted({e.name for e in sim.chain.log.tail(len(sim.chain.log))})
    name = st.selectbox("Event", ["(all)"] + names)
    tail = sim.chain.log.tail(300) if name == "(all)" else sim.chain.log.where(name=name)[-300:]
    if not tail:
        st.info("No events yet.")
    else:
        df = pd.DataFrame([e.to_dict() for e in tail])
        df["emitter"] = df["emitter"].map(world.symbol_of)
        df["_order"] = range(len(df))
        df = df.sort_values(["block", "_order"], ascending=False).drop(columns="_order")
        df["args"] = df["args"].apply(_format_event_args)
        st.dataframe(df, use_container_width=True)
