from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Tuple
import logging

from .core import (
    AccessDenied, Contract, InsufficientFundsError, Revert, ZERO_ADDRESS, external, require, to_address,
)

logger = logging.getLogger(__name__)

MAX_UINT256 = 2 ** 256 - 1


# -----------------------------
# ERC20
# -----------------------------
@dataclass
class ERC20State:
    owner: str
    total_supply: int = 0
    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[Tuple[str, str], int] = field(default_factory=dict)


class ERC20(Contract):
    """Fungible token with OpenZeppelin 4.x balance/allowance semantics and revert reasons."""

    def __init__(self, name: str, symbol: str, decimals: int = 18, owner: str = ZERO_ADDRESS) -> None:
        super().__init__(ERC20State(owner=to_address(owner)))
        self.name = name
        self.symbol = symbol
        self.decimals = decimals

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.symbol}@{self.address})"

    # views
    def total_supply(self) -> int:
        return self.state.total_supply

    def balance_of(self, account: str) -> int:
        return self.state.balances.get(to_address(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.state.allowances.get((to_address(owner), to_address(spender)), 0)

    # mutations
    @external
    def approve(self, sender: str, spender: str, amount: int) -> bool:
        sender, spender = to_address(sender), to_address(spender)
        require(spender != ZERO_ADDRESS, "ERC20: approve to the zero address")
        self.state.allowances[(sender, spender)] = amount
        self.emit("Approval", owner=sender, spender=spender, value=amount)
        return True

    @external
    def transfer(self, sender: str, to: str, amount: int) -> bool:
        self._transfer(to_address(sender), to_address(to), amount)
        return True

    @external
    def transfer_from(self, sender: str, owner: str, to: str, amount: int) -> bool:
        owner = to_address(owner)
        self._spend_allowance(owner, to_address(sender), amount)
        self._transfer(owner, to_address(to), amount)
        return True

    @external
    def mint(self, sender: str, to: str, amount: int) -> None:
        require(to_address(sender) == self.state.owner, "Ownable: caller is not the owner", AccessDenied)
        self._mint(to_address(to), amount)

    # internals
    def _before_token_transfer(self, frm: str, to: str, amount: int) -> None:
        """Hook run before every balance change."""

    def _spend_allowance(self, owner: str, spender: str, amount: int) -> None:
        current = self.state.allowances.get((owner, spender), 0)
        if current == MAX_UINT256:
            return
        require(current >= amount, "ERC20: insufficient allowance", InsufficientFundsError)
        self.state.allowances[(owner, spender)] = current - amount

    def _transfer(self, frm: str, to: str, amount: int) -> None:
        require(amount >= 0, "ERC20: negative amount")
        require(to != ZERO_ADDRESS, "ERC20: transfer to the zero address")
        self._before_token_transfer(frm, to, amount)
        balances = self.state.balances
        have = balances.get(frm, 0)
        require(have >= amount, "ERC20: transfer amount exceeds balance", InsufficientFundsError)
        self._set(frm, have - amount)
        self._set(to, balances.get(to, 0) + amount)
        logger.debug("%s transfer %s -> %s amount=%s", self.symbol, frm, to, amount)
        self.emit("Transfer", frm=frm, to=to, value=amount)

    def _mint(self, to: str, amount: int) -> None:
        require(to != ZERO_ADDRESS, "ERC20: mint to the zero address")
        self._before_token_transfer(ZERO_ADDRESS, to, amount)
        self.state.total_supply += amount
        self._set(to, self.state.balances.get(to, 0) + amount)
        self.emit("Transfer", frm=ZERO_ADDRESS, to=to, value=amount)

    def _burn(self, frm: str, amount: int) -> None:
        self._before_token_transfer(frm, ZERO_ADDRESS, amount)
        have = self.state.balances.get(frm, 0)
        require(have >= amount, "ERC20: burn amount exceeds balance", InsufficientFundsError)
        self._set(frm, have - amount)
        self.state.total_supply -= amount
        self.emit("Transfer", frm=frm, to=ZERO_ADDRESS, value=amount)

    def _set(self, account: str, amount: int) -> None:
        if amount:
            self.state.balances[account] = amount
        else:
            self.state.balances.pop(account, None)


class WrappedNative(ERC20):
    """WETH-style wrapper around the chain's native coin (WMATIC, CELO)."""

    @external
    def deposit(self, sender: str, value: int = 0) -> None:
        sender = to_address(sender)
        self.receive_value(sender, value)
        self._mint(sender, value)
        self.emit("Deposit", dst=sender, wad=value)

    @external
    def withdraw(self, sender: str, amount: int) -> None:
        sender = to_address(sender)
        self._burn(sender, amount)
        self.chain.transfer_native(self.address, sender, amount)
        self.emit("Withdrawal", src=sender, wad=amount)


# -----------------------------
# Carbon tokens
# -----------------------------
@dataclass(frozen=True)
class VintageData:
    name: str
    project_id: str
    start_time: int
    end_time: int
    total_vintage_quantity: int = 0


@dataclass
class ProjectTokenState(ERC20State):
    retired: Dict[str, int] = field(default_factory=dict)
    total_retired: int = 0


class ProjectToken(ERC20):
    """A TCO2: one vintage of one carbon project. Retiring burns it for good."""

    def __init__(self, vintage: VintageData, owner: str = ZERO_ADDRESS) -> None:
        symbol = f"TCO2-{vintage.project_id}-{vintage.name}"
        Contract.__init__(self, ProjectTokenState(owner=to_address(owner)))
        self.name = f"Toucan Protocol: {symbol}"
        self.symbol = symbol
        self.decimals = 18
        self.vintage = vintage

    def retired_amount(self, account: str) -> int:
        return self.state.retired.get(to_address(account), 0)

    @external
    def retire(self, sender: str, amount: int) -> None:
        sender = to_address(sender)
        require(amount > 0, "Amount must be greater than zero")
        self._burn(sender, amount)
        self.state.retired[sender] = self.state.retired.get(sender, 0) + amount
        self.state.total_retired += amount
        logger.debug("%s retired by %s amount=%s", self.symbol, sender, amount)
        self.emit("Retired", sender=sender, amount=amount)


@dataclass
class PoolTokenState(ERC20State):
    scored_tco2s: List[str] = field(default_factory=list)


class PoolToken(ERC20):
    """
    Carbon pool (BCT, NCT): TCO2s deposited 1:1 mint pool tokens; auto-redemption
    hands the oldest vintages back first.
    """

    def __init__(self, name: str, symbol: str, owner: str = ZERO_ADDRESS) -> None:
        Contract.__init__(self, PoolTokenState(owner=to_address(owner)))
        self.name = name
        self.symbol = symbol
        self.decimals = 18

    def _tco2(self, address: str) -> ProjectToken:
        token = self.chain.get(address)
        require(isinstance(token, ProjectToken), "Token rejected")
        return token

    def scored_tco2s(self) -> List[str]:
        """Accepted TCO2s, oldest vintage first (start time, then address)."""
        def key(addr: str) -> tuple:
            return (self._tco2(addr).vintage.start_time, addr)
        return sorted(self.state.scored_tco2s, key=key)

    def tco2_supply(self) -> int:
        return sum(self._tco2(a).balance_of(self.address) for a in self.state.scored_tco2s)

    @external
    def deposit(self, sender: str, tco2: str, amount: int) -> None:
        sender, tco2 = to_address(sender), to_address(tco2)
        token = self._tco2(tco2)
        require(amount > 0, "Amount must be greater than zero")
        token.transfer_from(self.address, sender, self.address, amount)
        if tco2 not in self.state.scored_tco2s:
            self.state.scored_tco2s.append(tco2)
        self._mint(sender, amount)
        self.emit("Deposited", erc20=tco2, amount=amount)

    @external
    def redeem_auto(self, sender: str, amount: int) -> Tuple[List[str], List[int]]:
        sender = to_address(sender)
        require(amount > 0, "Amount must be greater than zero")
        require(self.tco2_supply() >= amount, "Insufficient TCO2 in pool")
        self._burn(sender, amount)

        tco2s: List[str] = []
        amounts: List[int] = []
        remaining = amount
        for addr in self.scored_tco2s():
            if remaining == 0:
                break
            token = self._tco2(addr)
            available = token.balance_of(self.address)
            if available == 0:
                continue
            take = min(available, remaining)
            token.transfer(self.address, sender, take)
            tco2s.append(addr)
            amounts.append(take)
            remaining -= take
            self.emit("Redeemed", account=sender, erc20=addr, amount=take)
        if remaining:
            raise Revert("Insufficient TCO2 in pool")
        return tco2s, amounts
