from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence, Tuple
import logging

from .core import (
    Contract, IneligibleRouteError, InsufficientLedgerBalanceError, external, format_ledger,
    non_reentrant, require, to_address,
)
from .registry import PathRegistry, PoolRegistry, check_owner
from .router import Router
from .tokens import ERC20, PoolToken, ProjectToken

logger = logging.getLogger(__name__)

Redemption = Tuple[List[str], List[int]]


@dataclass
class HelperState:
    owner: str
    paths: PathRegistry
    pools: PoolRegistry
    balances: Dict[Tuple[str, str], int] = field(default_factory=dict)
    entered: bool = False


class OffsetHelper(Contract):
    """
    Swaps an input asset into a carbon pool token, redeems the pool token for the
    oldest project tokens and retires them, either in one transaction (the
    ``auto_offset_*`` entry points) or step by step through the internal ledger.

    Every public method takes the calling account as ``sender``; payable ones take
    the attached native coin as ``value``.
    """

    def __init__(self, owner: str, router: str, wrapped_native: str,
                 pool_addresses: Mapping[str, str], paths: Mapping[str, Sequence[str]],
                 debug_ledger: bool = False) -> None:
        super().__init__(HelperState(
            owner=to_address(owner),
            paths=PathRegistry.from_table(paths),
            pools=PoolRegistry.from_table(pool_addresses),
        ))
        self.router_address = to_address(router)
        self.wrapped_native = to_address(wrapped_native)
        self.debug_ledger = debug_ledger

    @property
    def router(self) -> Router:
        return self.chain.get(self.router_address)

    @property
    def owner(self) -> str:
        return self.state.owner

    # -----------------------------
    # Ledger
    # -----------------------------
    def balances(self, user: str, asset: str) -> int:
        return self.state.balances.get((to_address(user), to_address(asset)), 0)

    def ledger_of(self, user: str) -> Dict[str, int]:
        user = to_address(user)
        return {asset: amt for (owner, asset), amt in self.state.balances.items() if owner == user}

    def ledger_total(self, asset: str) -> int:
        asset = to_address(asset)
        return sum(amt for (_, a), amt in self.state.balances.items() if a == asset)

    def _debug_ledger_change(self, user: str, action: str, asset: str, amount: int, before: Dict[str, int]) -> None:
        if not self.debug_ledger or not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug(
            "[LEDGER] user=%s action=%s asset=%s amount=%s before={ %s } after={ %s }",
            user,
            action,
            asset,
            amount,
            format_ledger(before),
            format_ledger(self.ledger_of(user)),
        )

    def _credit(self, user: str, asset: str, amount: int, action: str) -> None:
        if amount == 0:
            return
        before = self.ledger_of(user) if self.debug_ledger else {}
        key = (user, asset)
        self.state.balances[key] = self.state.balances.get(key, 0) + amount
        self._debug_ledger_change(user, action, asset, amount, before)

    def _debit(self, user: str, asset: str, amount: int, reason: str, action: str) -> None:
        key = (user, asset)
        have = self.state.balances.get(key, 0)
        require(have >= amount, reason, InsufficientLedgerBalanceError)
        before = self.ledger_of(user) if self.debug_ledger else {}
        if have == amount:
            self.state.balances.pop(key, None)
        else:
            self.state.balances[key] = have - amount
        self._debug_ledger_change(user, action, asset, amount, before)

    # -----------------------------
    # Registries
    # -----------------------------
    def is_erc20_address_eligible(self, address: str) -> List[str]:
        return self.state.paths.lookup(address)

    def is_pool_address_eligible(self, address: str) -> bool:
        return self.state.pools.is_eligible(address)

    @external
    def add_path(self, sender: str, symbol: str, path: Sequence[str]) -> None:
        check_owner(self.state.owner, sender)
        self.state.paths.add(symbol, path)
        self.emit("PathAdded", symbol=symbol, path=[to_address(a) for a in path])

    @external
    def remove_path(self, sender: str, symbol: str) -> None:
        check_owner(self.state.owner, sender)
        self.state.paths.remove(symbol)
        self.emit("PathRemoved", symbol=symbol)

    def _only_redeemable(self, pool_token: str) -> str:
        pool_token = to_address(pool_token)
        require(self.is_pool_address_eligible(pool_token), "Token not redeemable", IneligibleRouteError)
        return pool_token

    def _generate_path(self, from_token: str, pool_token: str) -> List[str]:
        hops = self.is_erc20_address_eligible(from_token)
        require(len(hops) > 0, "Token not swappable", IneligibleRouteError)
        return hops + [pool_token]

    # -----------------------------
    # Amount calculator
    # -----------------------------
    def _calculate_exact_out_swap(self, from_token: str, pool_token: str, to_amount: int) -> Tuple[List[str], List[int]]:
        pool_token = self._only_redeemable(pool_token)
        path = self._generate_path(from_token, pool_token)
        amounts = self.router.get_amounts_in(to_amount, path)
        require(len(amounts) == len(path), "Arrays unequal")
        require(amounts[-1] == to_amount, "Output amount mismatch")
        return path, amounts

    def _calculate_exact_in_swap(self, from_token: str, pool_token: str, from_amount: int) -> Tuple[List[str], List[int]]:
        pool_token = self._only_redeemable(pool_token)
        path = self._generate_path(from_token, pool_token)
        amounts = self.router.get_amounts_out(from_amount, path)
        require(len(amounts) == len(path), "Arrays unequal")
        require(amounts[0] == from_amount, "Input amount mismatch")
        return path, amounts

    def calculate_needed_token_amount(self, from_token: str, pool_token: str, to_amount: int) -> int:
        """How much ``from_token`` buys exactly ``to_amount`` of the pool token."""
        _, amounts = self._calculate_exact_out_swap(from_token, pool_token, to_amount)
        return amounts[0]

    def calculate_needed_eth_amount(self, pool_token: str, to_amount: int) -> int:
        _, amounts = self._calculate_exact_out_swap(self.wrapped_native, pool_token, to_amount)
        return amounts[0]

    def calculate_expected_pool_token_for_token(self, from_token: str, pool_token: str, from_amount: int) -> int:
        """How much pool token ``from_amount`` of ``from_token`` buys."""
        _, amounts = self._calculate_exact_in_swap(from_token, pool_token, from_amount)
        return amounts[-1]

    def calculate_expected_pool_token_for_eth(self, pool_token: str, from_amount: int) -> int:
        _, amounts = self._calculate_exact_in_swap(self.wrapped_native, pool_token, from_amount)
        return amounts[-1]

    # -----------------------------
    # Swap engine
    # -----------------------------
    def _pull(self, sender: str, token_address: str, amount: int) -> ERC20:
        token: ERC20 = self.chain.get(token_address)
        token.transfer_from(self.address, sender, self.address, amount)
        return token

    def _swap_exact_out_token(self, sender: str, from_token: str, pool_token: str, to_amount: int) -> int:
        from_token, pool_token = to_address(from_token), to_address(pool_token)
        path, expected = self._calculate_exact_out_swap(from_token, pool_token, to_amount)
        amount_in = expected[0]

        token = self._pull(sender, from_token, amount_in)
        token.approve(self.address, self.router_address, amount_in)
        amounts = self.router.swap_tokens_for_exact_tokens(
            self.address, to_amount, amount_in, path, self.address, self.chain.timestamp)
        leftover = amount_in - amounts[0]
        if leftover > 0:
            token.transfer(self.address, sender, leftover)

        self._credit(sender, pool_token, to_amount, "swap_exact_out")
        logger.debug("swap exact-out sender=%s from=%s spent=%s pool=%s received=%s",
                     sender, from_token, amounts[0], pool_token, to_amount)
        return amounts[0]

    def _swap_exact_out_eth(self, sender: str, pool_token: str, to_amount: int, value: int) -> int:
        pool_token = to_address(pool_token)
        path, _ = self._calculate_exact_out_swap(self.wrapped_native, pool_token, to_amount)
        amounts = self.router.swap_eth_for_exact_tokens(
            self.address, to_amount, path, self.address, self.chain.timestamp, value=value)
        surplus = value - amounts[0]
        if surplus > 0:
            # the router hands unused value back to us; pass it on to the caller
            self.chain.transfer_native(self.address, sender, surplus)

        self._credit(sender, pool_token, to_amount, "swap_exact_out_eth")
        logger.debug("swap exact-out native sender=%s sent=%s spent=%s refunded=%s pool=%s received=%s",
                     sender, value, amounts[0], surplus, pool_token, to_amount)
        return amounts[0]

    def _swap_exact_in_token(self, sender: str, from_token: str, pool_token: str, from_amount: int) -> int:
        from_token, pool_token = to_address(from_token), to_address(pool_token)
        path, _ = self._calculate_exact_in_swap(from_token, pool_token, from_amount)

        token = self._pull(sender, from_token, from_amount)
        token.approve(self.address, self.router_address, from_amount)
        amounts = self.router.swap_exact_tokens_for_tokens(
            self.address, from_amount, 0, path, self.address, self.chain.timestamp)

        self._credit(sender, pool_token, amounts[-1], "swap_exact_in")
        logger.debug("swap exact-in sender=%s from=%s spent=%s pool=%s received=%s",
                     sender, from_token, from_amount, pool_token, amounts[-1])
        return amounts[-1]

    def _swap_exact_in_eth(self, sender: str, pool_token: str, value: int) -> int:
        pool_token = to_address(pool_token)
        path, _ = self._calculate_exact_in_swap(self.wrapped_native, pool_token, value)
        amounts = self.router.swap_exact_eth_for_tokens(
            self.address, 0, path, self.address, self.chain.timestamp, value=value)

        self._credit(sender, pool_token, amounts[-1], "swap_exact_in_eth")
        logger.debug("swap exact-in native sender=%s spent=%s pool=%s received=%s",
                     sender, value, pool_token, amounts[-1])
        return amounts[-1]

    @external
    @non_reentrant
    def swap_exact_out_token(self, sender: str, from_token: str, pool_token: str, to_amount: int) -> int:
        return self._swap_exact_out_token(to_address(sender), from_token, pool_token, to_amount)

    @external
    @non_reentrant
    def swap_exact_out_eth(self, sender: str, pool_token: str, to_amount: int, value: int = 0) -> int:
        sender = to_address(sender)
        self.receive_value(sender, value)
        return self._swap_exact_out_eth(sender, pool_token, to_amount, value)

    @external
    @non_reentrant
    def swap_exact_in_token(self, sender: str, from_token: str, pool_token: str, from_amount: int) -> int:
        return self._swap_exact_in_token(to_address(sender), from_token, pool_token, from_amount)

    @external
    @non_reentrant
    def swap_exact_in_eth(self, sender: str, pool_token: str, value: int = 0) -> int:
        sender = to_address(sender)
        self.receive_value(sender, value)
        return self._swap_exact_in_eth(sender, pool_token, value)

    # -----------------------------
    # Redemption / retirement
    # -----------------------------
    def _auto_redeem(self, sender: str, pool_token: str, amount: int) -> Redemption:
        pool_token = self._only_redeemable(pool_token)
        self._debit(sender, pool_token, amount, "Insufficient NCT/BCT balance", "redeem")

        pool: PoolToken = self.chain.get(pool_token)
        tco2s, amounts = pool.redeem_auto(self.address, amount)
        for tco2, redeemed in zip(tco2s, amounts):
            self._credit(sender, tco2, redeemed, "redeem_receive")

        self.emit("Redeemed", who=sender, pool_token=pool_token, tco2s=list(tco2s), amounts=list(amounts))
        return tco2s, amounts

    def _auto_retire(self, sender: str, tco2s: Sequence[str], amounts: Sequence[int]) -> None:
        require(len(tco2s) == len(amounts), "Arrays unequal")
        for tco2, amount in zip(tco2s, amounts):
            if amount == 0:
                continue
            tco2 = to_address(tco2)
            self._debit(sender, tco2, amount, "Insufficient TCO2 balance", "retire")
            token: ProjectToken = self.chain.get(tco2)
            token.retire(self.address, amount)
        logger.debug("retired sender=%s tco2s=%s amounts=%s", sender, list(tco2s), list(amounts))

    @external
    @non_reentrant
    def auto_redeem(self, sender: str, pool_token: str, amount: int) -> Redemption:
        return self._auto_redeem(to_address(sender), pool_token, amount)

    @external
    @non_reentrant
    def auto_retire(self, sender: str, tco2s: Sequence[str], amounts: Sequence[int]) -> None:
        self._auto_retire(to_address(sender), tco2s, amounts)

    # -----------------------------
    # Auto-offset entry points
    # -----------------------------
    def _redeem_and_retire(self, sender: str, pool_token: str, amount: int) -> Redemption:
        tco2s, amounts = self._auto_redeem(sender, pool_token, amount)
        self._auto_retire(sender, tco2s, amounts)
        logger.info("offset sender=%s pool=%s retired=%s across %d vintages",
                    sender, pool_token, amount, len(tco2s))
        return tco2s, amounts

    @external
    @non_reentrant
    def auto_offset_exact_in_token(self, sender: str, from_token: str, pool_token: str, from_amount: int) -> Redemption:
        sender = to_address(sender)
        pool_amount = self._swap_exact_in_token(sender, from_token, pool_token, from_amount)
        return self._redeem_and_retire(sender, pool_token, pool_amount)

    @external
    @non_reentrant
    def auto_offset_exact_in_eth(self, sender: str, pool_token: str, value: int = 0) -> Redemption:
        sender = to_address(sender)
        self.receive_value(sender, value)
        pool_amount = self._swap_exact_in_eth(sender, pool_token, value)
        return self._redeem_and_retire(sender, pool_token, pool_amount)

    @external
    @non_reentrant
    def auto_offset_exact_out_token(self, sender: str, from_token: str, pool_token: str, amount: int) -> Redemption:
        sender = to_address(sender)
        self._swap_exact_out_token(sender, from_token, pool_token, amount)
        return self._redeem_and_retire(sender, pool_token, amount)

    @external
    @non_reentrant
    def auto_offset_exact_out_eth(self, sender: str, pool_token: str, amount: int, value: int = 0) -> Redemption:
        sender = to_address(sender)
        self.receive_value(sender, value)
        self._swap_exact_out_eth(sender, pool_token, amount, value)
        return self._redeem_and_retire(sender, pool_token, amount)

    @external
    @non_reentrant
    def auto_offset_pool_token(self, sender: str, pool_token: str, amount: int) -> Redemption:
        sender = to_address(sender)
        self._deposit(sender, pool_token, amount)
        return self._redeem_and_retire(sender, pool_token, amount)

    # -----------------------------
    # Deposit / withdraw
    # -----------------------------
    def _deposit(self, sender: str, asset: str, amount: int) -> None:
        asset = to_address(asset)
        accepted = self.is_pool_address_eligible(asset) or bool(self.is_erc20_address_eligible(asset))
        require(accepted, "Token not accepted", IneligibleRouteError)
        self._pull(sender, asset, amount)
        self._credit(sender, asset, amount, "deposit")
        self.emit("Deposited", who=sender, erc20=asset, amount=amount)

    @external
    @non_reentrant
    def deposit(self, sender: str, asset: str, amount: int) -> None:
        self._deposit(to_address(sender), asset, amount)

    @external
    @non_reentrant
    def withdraw(self, sender: str, asset: str, amount: int) -> None:
        sender, asset = to_address(sender), to_address(asset)
        self._debit(sender, asset, amount, "Insufficient balance", "withdraw")
        token: ERC20 = self.chain.get(asset)
        token.transfer(self.address, sender, amount)
        self.emit("Withdrawn", who=sender, erc20=asset, amount=amount)
