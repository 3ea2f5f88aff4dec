from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Literal, Optional
import logging
import random

from .config import ScenarioConfig
from .core import Revert, TxReceipt, format_ether
from .factory import DeploymentFactory, World
from .metrics import MetricsStore

logger = logging.getLogger(__name__)

TONNE = 10 ** 18

Flow = Literal[
    "exact_in_token", "exact_in_eth", "exact_out_token", "exact_out_eth", "pool_token", "stepwise",
]


@dataclass
class OffsetReceipt:
    block: int
    user: str
    flow: Flow
    pool: str
    from_symbol: Optional[str]
    status: Literal["executed", "failed"]
    spent: int = 0
    tco2s: List[str] = field(default_factory=list)
    amounts: List[int] = field(default_factory=list)
    fail_reason: Optional[str] = None
    txs: List[TxReceipt] = field(default_factory=list)

    @property
    def retired(self) -> int:
        return sum(self.amounts)

    def to_dict(self) -> dict:
        return {
            "block": self.block,
            "user": self.user,
            "flow": self.flow,
            "pool": self.pool,
            "from_symbol": self.from_symbol,
            "status": self.status,
            "spent": int(self.spent),
            "retired": int(self.retired),
            "tonnes_retired": self.retired / TONNE,
            "vintages": len(self.tco2s),
            "fail_reason": self.fail_reason,
        }


class OffsetSimulation:
    """
    Drives a deployed fork the way a wallet front-end would: quote, approve, then
    call one of the helper's offset entry points. Every attempt becomes an
    ``OffsetReceipt`` and a metrics row.
    """
    def __init__(self, cfg: ScenarioConfig, seed: Optional[int] = None) -> None:
        self.cfg = cfg
        self.rng = random.Random(cfg.seed if seed is None else seed)

        self.factory = DeploymentFactory(cfg)
        self.world: World = self.factory.build()
        self.metrics = MetricsStore()
        self.receipts: List[OffsetReceipt] = []

        for idx in range(cfg.users):
            self.factory.fund_user(self.world, label=f"user_{idx:04d}")
        self.snapshot_metrics()

    # shortcuts
    @property
    def chain(self):
        return self.world.chain

    @property
    def helper(self):
        return self.world.helper

    @property
    def users(self) -> List[str]:
        return self.world.users

    def _finish(self, user: str, flow: Flow, pool_symbol: str, from_symbol: Optional[str],
                txs: List[TxReceipt], spent: int = 0) -> OffsetReceipt:
        last = txs[-1]
        failed = next((tx for tx in txs if not tx.ok), None)
        if failed is not None:
            receipt = OffsetReceipt(
                block=last.block, user=user, flow=flow, pool=pool_symbol, from_symbol=from_symbol,
                status="failed", fail_reason=failed.revert_reason, txs=txs,
            )
        else:
            redeemed = next((tx.event("Redeemed") for tx in reversed(txs) if tx.event("Redeemed")), None)
            tco2s = list(redeemed.args["tco2s"]) if redeemed else []
            amounts = list(redeemed.args["amounts"]) if redeemed else []
            receipt = OffsetReceipt(
                block=last.block, user=user, flow=flow, pool=pool_symbol, from_symbol=from_symbol,
                status="executed", spent=spent, tco2s=tco2s, amounts=amounts, txs=txs,
            )
            logger.info("offset %s user=%s pool=%s retired=%s tonnes", flow, user, pool_symbol,
                        format_ether(receipt.retired))
        self.receipts.append(receipt)
        self.metrics.add_offset(receipt.to_dict())
        return receipt

    def _quote_failed(self, user: str, flow: Flow, pool_symbol: str, from_symbol: Optional[str],
                      exc: Revert) -> OffsetReceipt:
        logger.warning("quote failed flow=%s user=%s pool=%s reason=%s", flow, user, pool_symbol, exc.reason)
        tx = TxReceipt(self.chain.block_number, user, "quote", "failed", revert_reason=exc.reason)
        return self._finish(user, flow, pool_symbol, from_symbol, [tx])

    # -----------------------------
    # User flows
    # -----------------------------
    def offset_exact_in_token(self, user: str, from_symbol: str, pool_symbol: str, amount: int) -> OffsetReceipt:
        token = self.world.token(from_symbol)
        pool = self.world.pools[pool_symbol]
        before = token.balance_of(user)
        txs = [self.chain.transact(user, token.approve, self.helper.address, amount)]
        txs.append(self.chain.transact(user, self.helper.auto_offset_exact_in_token, token.address, pool.address, amount))
        return self._finish(user, "exact_in_token", pool_symbol, from_symbol, txs, before - token.balance_of(user))

    def offset_exact_in_eth(self, user: str, pool_symbol: str, value: int) -> OffsetReceipt:
        pool = self.world.pools[pool_symbol]
        before = self.chain.balance(user)
        txs = [self.chain.transact(user, self.helper.auto_offset_exact_in_eth, pool.address, value=value)]
        native = self.world.network.native_symbol
        return self._finish(user, "exact_in_eth", pool_symbol, native, txs, before - self.chain.balance(user))

    def offset_exact_out_token(self, user: str, from_symbol: str, pool_symbol: str, amount: int) -> OffsetReceipt:
        token = self.world.token(from_symbol)
        pool = self.world.pools[pool_symbol]
        try:
            needed = self.helper.calculate_needed_token_amount(token.address, pool.address, amount)
        except Revert as exc:
            return self._quote_failed(user, "exact_out_token", pool_symbol, from_symbol, exc)
        before = token.balance_of(user)
        txs = [self.chain.transact(user, token.approve, self.helper.address, needed)]
        txs.append(self.chain.transact(user, self.helper.auto_offset_exact_out_token, token.address, pool.address, amount))
        return self._finish(user, "exact_out_token", pool_symbol, from_symbol, txs, before - token.balance_of(user))

    def offset_exact_out_eth(self, user: str, pool_symbol: str, amount: int, surplus_bps: int = 0) -> OffsetReceipt:
        """Sends the quoted native amount plus ``surplus_bps``; the helper refunds the surplus."""
        pool = self.world.pools[pool_symbol]
        native = self.world.network.native_symbol
        try:
            needed = self.helper.calculate_needed_eth_amount(pool.address, amount)
        except Revert as exc:
            return self._quote_failed(user, "exact_out_eth", pool_symbol, native, exc)
        value = needed + needed * surplus_bps // 10_000
        before = self.chain.balance(user)
        txs = [self.chain.transact(user, self.helper.auto_offset_exact_out_eth, pool.address, amount, value=value)]
        return self._finish(user, "exact_out_eth", pool_symbol, native, txs, before - self.chain.balance(user))

    def offset_pool_token(self, user: str, pool_symbol: str, amount: int) -> OffsetReceipt:
        pool = self.world.pools[pool_symbol]
        before = pool.balance_of(user)
        txs = [self.chain.transact(user, pool.approve, self.helper.address, amount)]
        txs.append(self.chain.transact(user, self.helper.auto_offset_pool_token, pool.address, amount))
        return self._finish(user, "pool_token", pool_symbol, pool_symbol, txs, before - pool.balance_of(user))

    def offset_stepwise(self, user: str, from_symbol: str, pool_symbol: str, amount: int) -> OffsetReceipt:
        """Swap, redeem and retire as three separate transactions, staged in the helper's ledger."""
        token = self.world.token(from_symbol)
        pool = self.world.pools[pool_symbol]
        try:
            needed = self.helper.calculate_needed_token_amount(token.address, pool.address, amount)
        except Revert as exc:
            return self._quote_failed(user, "stepwise", pool_symbol, from_symbol, exc)
        before = token.balance_of(user)
        steps: List[Callable[[], TxReceipt]] = [
            lambda: self.chain.transact(user, token.approve, self.helper.address, needed),
            lambda: self.chain.transact(user, self.helper.swap_exact_out_token, token.address, pool.address, amount),
            lambda: self.chain.transact(user, self.helper.auto_redeem, pool.address, amount),
        ]
        txs: List[TxReceipt] = []
        for step in steps:
            txs.append(step())
            if not txs[-1].ok:
                return self._finish(user, "stepwise", pool_symbol, from_symbol, txs)
        tco2s, amounts = txs[-1].result
        txs.append(self.chain.transact(user, self.helper.auto_retire, tco2s, amounts))
        return self._finish(user, "stepwise", pool_symbol, from_symbol, txs, before - token.balance_of(user))

    # -----------------------------
    # Random traffic
    # -----------------------------
    def _random_offset(self) -> OffsetReceipt:
        cfg = self.cfg
        user = self.rng.choice(self.users)
        pool_symbol = self.rng.choice(sorted(self.world.pools))
        usd = self.rng.uniform(*cfg.offset_size_usd)
        to_units = self.factory.usd_to_units

        if self.rng.random() < cfg.pool_token_share:
            return self.offset_pool_token(user, pool_symbol, to_units(pool_symbol, usd))
        exact_out = self.rng.random() < cfg.exact_out_share
        if self.rng.random() < cfg.eth_share:
            if exact_out:
                return self.offset_exact_out_eth(user, pool_symbol, to_units(pool_symbol, usd), surplus_bps=50)
            return self.offset_exact_in_eth(user, pool_symbol, to_units(self.world.network.wrapped_native_symbol, usd))
        from_symbol = self.rng.choice(self.world.network.swappable_symbols)
        if exact_out:
            return self.offset_exact_out_token(user, from_symbol, pool_symbol, to_units(pool_symbol, usd))
        return self.offset_exact_in_token(user, from_symbol, pool_symbol, to_units(from_symbol, usd))

    def step(self, n_steps: int = 1) -> List[OffsetReceipt]:
        out: List[OffsetReceipt] = []
        for _ in range(max(0, n_steps)):
            for _ in range(self.cfg.offsets_per_step):
                out.append(self._random_offset())
            self.snapshot_metrics()
        return out

    # -----------------------------
    # Metrics
    # -----------------------------
    def retired_by_pool(self) -> Dict[str, int]:
        return {
            symbol: sum(t.state.total_retired for t in tco2s)
            for symbol, tco2s in self.world.vintages.items()
        }

    def snapshot_metrics(self) -> None:
        rows = []
        retired = self.retired_by_pool()
        for symbol, pool in self.world.pools.items():
            scored = pool.scored_tco2s()
            oldest = next(
                (self.chain.get(a) for a in scored if self.chain.get(a).balance_of(pool.address) > 0), None)
            rows.append({
                "block": self.chain.block_number,
                "pool": symbol,
                "total_supply": pool.total_supply() / TONNE,
                "tco2_in_pool": pool.tco2_supply() / TONNE,
                "helper_balance": pool.balance_of(self.helper.address) / TONNE,
                "tonnes_retired": retired[symbol] / TONNE,
                "oldest_vintage": oldest.vintage.name if oldest else None,
            })
        self.metrics.add_pool_rows(rows)
