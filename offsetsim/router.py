from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Tuple
import logging

from .core import Contract, RouterError, external, require, to_address
from .tokens import ERC20, WrappedNative

logger = logging.getLogger(__name__)

FEE_NUMERATOR = 997
FEE_DENOMINATOR = 1000


def sort_tokens(a: str, b: str) -> Tuple[str, str]:
    require(a != b, "UniswapV2Library: IDENTICAL_ADDRESSES", RouterError)
    return (a, b) if a < b else (b, a)


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    require(amount_in > 0, "UniswapV2Library: INSUFFICIENT_INPUT_AMOUNT", RouterError)
    require(reserve_in > 0 and reserve_out > 0, "UniswapV2Library: INSUFFICIENT_LIQUIDITY", RouterError)
    amount_in_with_fee = amount_in * FEE_NUMERATOR
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * FEE_DENOMINATOR + amount_in_with_fee
    return numerator // denominator


def get_amount_in(amount_out: int, reserve_in: int, reserve_out: int) -> int:
    require(amount_out > 0, "UniswapV2Library: INSUFFICIENT_OUTPUT_AMOUNT", RouterError)
    require(reserve_in > 0 and reserve_out > amount_out, "UniswapV2Library: INSUFFICIENT_LIQUIDITY", RouterError)
    numerator = reserve_in * amount_out * FEE_DENOMINATOR
    denominator = (reserve_out - amount_out) * FEE_NUMERATOR
    return numerator // denominator + 1


# -----------------------------
# Pair
# -----------------------------
@dataclass
class PairState:
    reserve0: int = 0
    reserve1: int = 0


class Pair(Contract):
    """Constant-product pool between two tokens; holds its reserves as ordinary token balances."""

    def __init__(self, token0: str, token1: str) -> None:
        super().__init__(PairState())
        self.token0, self.token1 = sort_tokens(to_address(token0), to_address(token1))

    def _token(self, address: str) -> ERC20:
        return self.chain.get(address)

    def get_reserves(self) -> Tuple[int, int]:
        return self.state.reserve0, self.state.reserve1

    def reserves_for(self, token_in: str) -> Tuple[int, int]:
        if token_in == self.token0:
            return self.state.reserve0, self.state.reserve1
        return self.state.reserve1, self.state.reserve0

    @external
    def sync(self, sender: str) -> None:
        self.state.reserve0 = self._token(self.token0).balance_of(self.address)
        self.state.reserve1 = self._token(self.token1).balance_of(self.address)
        self.emit("Sync", reserve0=self.state.reserve0, reserve1=self.state.reserve1)

    @external
    def swap(self, sender: str, amount0_out: int, amount1_out: int, to: str) -> None:
        to = to_address(to)
        require(amount0_out > 0 or amount1_out > 0, "UniswapV2: INSUFFICIENT_OUTPUT_AMOUNT", RouterError)
        reserve0, reserve1 = self.get_reserves()
        require(amount0_out < reserve0 and amount1_out < reserve1, "UniswapV2: INSUFFICIENT_LIQUIDITY", RouterError)
        require(to not in (self.token0, self.token1), "UniswapV2: INVALID_TO", RouterError)

        if amount0_out > 0:
            self._token(self.token0).transfer(self.address, to, amount0_out)
        if amount1_out > 0:
            self._token(self.token1).transfer(self.address, to, amount1_out)
        balance0 = self._token(self.token0).balance_of(self.address)
        balance1 = self._token(self.token1).balance_of(self.address)

        amount0_in = balance0 - (reserve0 - amount0_out) if balance0 > reserve0 - amount0_out else 0
        amount1_in = balance1 - (reserve1 - amount1_out) if balance1 > reserve1 - amount1_out else 0
        require(amount0_in > 0 or amount1_in > 0, "UniswapV2: INSUFFICIENT_INPUT_AMOUNT", RouterError)
        balance0_adjusted = balance0 * 1000 - amount0_in * 3
        balance1_adjusted = balance1 * 1000 - amount1_in * 3
        require(balance0_adjusted * balance1_adjusted >= reserve0 * reserve1 * 1000 ** 2, "UniswapV2: K", RouterError)

        self.state.reserve0, self.state.reserve1 = balance0, balance1
        logger.debug("pair %s swap in=(%s,%s) out=(%s,%s) to=%s",
                     self.address, amount0_in, amount1_in, amount0_out, amount1_out, to)
        self.emit("Swap", sender=sender, amount0_in=amount0_in, amount1_in=amount1_in,
                  amount0_out=amount0_out, amount1_out=amount1_out, to=to)


# -----------------------------
# Router
# -----------------------------
@dataclass
class RouterState:
    pairs: Dict[Tuple[str, str], str]


class Router(Contract):
    """
    Uniswap-V2-style router (SushiSwap on Polygon, Ubeswap on Celo): quotes along a
    path of token addresses and executes the hop swaps through the pairs.
    """
    def __init__(self, wrapped_native: str) -> None:
        super().__init__(RouterState(pairs={}))
        self.wrapped_native = to_address(wrapped_native)

    def create_pair(self, token_a: str, token_b: str) -> Pair:
        key = sort_tokens(to_address(token_a), to_address(token_b))
        require(key not in self.state.pairs, "UniswapV2: PAIR_EXISTS", RouterError)
        pair = self.chain.deploy(Pair(*key))
        self.state.pairs[key] = pair.address
        self.emit("PairCreated", token0=key[0], token1=key[1], pair=pair.address)
        return pair

    def pair_for(self, token_a: str, token_b: str) -> Pair:
        key = sort_tokens(to_address(token_a), to_address(token_b))
        addr = self.state.pairs.get(key)
        require(addr is not None, "UniswapV2Library: PAIR_NOT_FOUND", RouterError)
        return self.chain.get(addr)

    def has_pair(self, token_a: str, token_b: str) -> bool:
        return sort_tokens(to_address(token_a), to_address(token_b)) in self.state.pairs

    # quotes
    def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        require(len(path) >= 2, "UniswapV2Library: INVALID_PATH", RouterError)
        amounts = [amount_in]
        for i in range(len(path) - 1):
            reserve_in, reserve_out = self.pair_for(path[i], path[i + 1]).reserves_for(to_address(path[i]))
            amounts.append(get_amount_out(amounts[i], reserve_in, reserve_out))
        return amounts

    def get_amounts_in(self, amount_out: int, path: List[str]) -> List[int]:
        require(len(path) >= 2, "UniswapV2Library: INVALID_PATH", RouterError)
        amounts = [0] * len(path)
        amounts[-1] = amount_out
        for i in range(len(path) - 1, 0, -1):
            reserve_in, reserve_out = self.pair_for(path[i - 1], path[i]).reserves_for(to_address(path[i - 1]))
            amounts[i - 1] = get_amount_in(amounts[i], reserve_in, reserve_out)
        return amounts

    # swaps
    def _ensure(self, deadline: int) -> None:
        require(deadline >= self.chain.timestamp, "UniswapV2Router: EXPIRED", RouterError)

    def _swap(self, amounts: List[int], path: List[str], to: str) -> None:
        for i in range(len(path) - 1):
            token_in, token_out = to_address(path[i]), to_address(path[i + 1])
            pair = self.pair_for(token_in, token_out)
            amount_out = amounts[i + 1]
            if token_in == pair.token0:
                amount0_out, amount1_out = 0, amount_out
            else:
                amount0_out, amount1_out = amount_out, 0
            recipient = self.pair_for(token_out, path[i + 2]).address if i < len(path) - 2 else to
            pair.swap(self.address, amount0_out, amount1_out, recipient)

    def _pull_first_hop(self, sender: str, path: List[str], amount: int) -> None:
        token: ERC20 = self.chain.get(path[0])
        token.transfer_from(self.address, sender, self.pair_for(path[0], path[1]).address, amount)

    def _wrap_first_hop(self, path: List[str], amount: int) -> None:
        require(to_address(path[0]) == self.wrapped_native, "UniswapV2Router: INVALID_PATH", RouterError)
        weth: WrappedNative = self.chain.get(self.wrapped_native)
        weth.deposit(self.address, value=amount)
        weth.transfer(self.address, self.pair_for(path[0], path[1]).address, amount)

    @external
    def swap_exact_tokens_for_tokens(self, sender: str, amount_in: int, amount_out_min: int,
                                     path: List[str], to: str, deadline: int) -> List[int]:
        self._ensure(deadline)
        amounts = self.get_amounts_out(amount_in, path)
        require(amounts[-1] >= amount_out_min, "UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT", RouterError)
        self._pull_first_hop(to_address(sender), path, amounts[0])
        self._swap(amounts, path, to_address(to))
        return amounts

    @external
    def swap_tokens_for_exact_tokens(self, sender: str, amount_out: int, amount_in_max: int,
                                     path: List[str], to: str, deadline: int) -> List[int]:
        self._ensure(deadline)
        amounts = self.get_amounts_in(amount_out, path)
        require(amounts[0] <= amount_in_max, "UniswapV2Router: EXCESSIVE_INPUT_AMOUNT", RouterError)
        self._pull_first_hop(to_address(sender), path, amounts[0])
        self._swap(amounts, path, to_address(to))
        return amounts

    @external
    def swap_exact_eth_for_tokens(self, sender: str, amount_out_min: int, path: List[str], to: str,
                                  deadline: int, value: int = 0) -> List[int]:
        self.receive_value(to_address(sender), value)
        self._ensure(deadline)
        amounts = self.get_amounts_out(value, path)
        require(amounts[-1] >= amount_out_min, "UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT", RouterError)
        self._wrap_first_hop(path, amounts[0])
        self._swap(amounts, path, to_address(to))
        return amounts

    @external
    def swap_eth_for_exact_tokens(self, sender: str, amount_out: int, path: List[str], to: str,
                                  deadline: int, value: int = 0) -> List[int]:
        sender = to_address(sender)
        self.receive_value(sender, value)
        self._ensure(deadline)
        amounts = self.get_amounts_in(amount_out, path)
        require(amounts[0] <= value, "UniswapV2Router: EXCESSIVE_INPUT_AMOUNT", RouterError)
        self._wrap_first_hop(path, amounts[0])
        self._swap(amounts, path, to_address(to))
        if value > amounts[0]:
            self.chain.transfer_native(self.address, sender, value - amounts[0])
        return amounts
