from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Literal
from collections import deque
import copy
import functools
import hashlib
import logging
import re

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def format_ledger(entries: Dict[str, int]) -> str:
    if not entries:
        return "(empty)"
    items = sorted(entries.items(), key=lambda kv: kv[0])
    return ", ".join(f"{asset}:{amount}" for asset, amount in items)


# -----------------------------
# Errors
# -----------------------------
class Revert(Exception):
    """A contract call failed; the enclosing transaction is rolled back."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class IneligibleRouteError(Revert):
    pass


class InsufficientFundsError(Revert):
    pass


class InsufficientLedgerBalanceError(Revert):
    pass


class RouterError(Revert):
    pass


class AccessDenied(Revert):
    pass


class ReentrancyError(Revert):
    pass


class InvalidAddress(Revert, ValueError):
    pass


def require(condition: bool, reason: str, error: type = Revert) -> None:
    if not condition:
        raise error(reason)


# -----------------------------
# Addresses / units
# -----------------------------
def to_address(value: str) -> str:
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise InvalidAddress(f"not an address: {value!r}")
    return value.lower()


def parse_units(value: str | int | Decimal, decimals: int) -> int:
    scaled = Decimal(str(value)) * (Decimal(10) ** decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{value} has more than {decimals} decimals")
    return int(scaled)


def parse_ether(value: str | int | Decimal) -> int:
    return parse_units(value, 18)


def format_units(amount: int, decimals: int) -> str:
    """Exact decimal string, always with at least one fractional digit ("1.0")."""
    text = format(Decimal(amount).scaleb(-decimals), "f")
    if "." not in text:
        return text + ".0"
    text = text.rstrip("0")
    return text + "0" if text.endswith(".") else text


def format_ether(amount: int) -> str:
    return format_units(amount, 18)


# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    block: int
    name: str
    emitter: str
    args: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "block": self.block,
            "name": self.name,
            "emitter": self.emitter,
            "args": dict(self.args),
        }


class EventLog:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.events = deque(maxlen=maxlen)
        self.added: int = 0

    def add(self, e: Event) -> None:
        self.events.append(e)
        self.added += 1

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        if n >= len(self.events):
            return list(self.events)
        return list(self.events)[-n:]

    def where(self, name: Optional[str] = None, emitter: Optional[str] = None) -> List[Event]:
        return [
            e for e in self.events
            if (name is None or e.name == name) and (emitter is None or e.emitter == emitter)
        ]

    def since(self, mark: int) -> List[Event]:
        """Events added after ``mark`` (a previous value of ``added``) that are still held."""
        return self.tail(self.added - mark)

    def checkpoint(self) -> tuple:
        # appends to a bounded deque evict committed events
        held = list(self.events) if self.events.maxlen is not None else None
        return self.added, held

    def rollback(self, checkpoint: tuple) -> None:
        mark, held = checkpoint
        if held is not None:
            self.events.clear()
            self.events.extend(held)
        else:
            for _ in range(self.added - mark):
                self.events.pop()
        self.added = mark

    def __len__(self) -> int:
        return len(self.events)


# -----------------------------
# Receipts
# -----------------------------
@dataclass
class TxReceipt:
    block: int
    sender: str
    method: str
    status: Literal["executed", "failed"]
    events: List[Event] = field(default_factory=list)
    result: Any = None
    revert_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "executed"

    def event(self, name: str) -> Optional[Event]:
        """Last event with that name, like reading receipt.events[-1] on-chain."""
        for e in reversed(self.events):
            if e.name == name:
                return e
        return None

    def to_dict(self) -> dict:
        return {
            "block": self.block,
            "sender": self.sender,
            "method": self.method,
            "status": self.status,
            "events": [e.name for e in self.events],
            "revert_reason": self.revert_reason,
        }


# -----------------------------
# Chain
# -----------------------------
class Chain:
    """
    World state: native balances, deployed contracts and the event log.

    Every contract keeps its mutable storage in a single ``state`` object, so a
    transaction can be rolled back by restoring copies taken when its outermost
    frame was entered.
    """
    def __init__(self, chain_id: int = 31337, block_time: int = 2, genesis_timestamp: int = 1_700_000_000,
                 event_log_maxlen: Optional[int] = None) -> None:
        self.chain_id = chain_id
        self.block_time = block_time
        self.block_number: int = 0
        self.timestamp: int = genesis_timestamp
        self.native: Dict[str, int] = {}
        self.contracts: Dict[str, "Contract"] = {}
        self.log = EventLog(maxlen=event_log_maxlen)
        self._nonce: int = 0
        self._depth: int = 0

    # addresses
    def new_address(self, label: str = "") -> str:
        self._nonce += 1
        digest = hashlib.sha3_256(f"{self.chain_id}:{self._nonce}:{label}".encode()).hexdigest()
        return "0x" + digest[-40:]

    def new_account(self, native_balance: int = 0, label: str = "account") -> str:
        addr = self.new_address(label)
        if native_balance:
            self.native[addr] = native_balance
        return addr

    def deploy(self, contract: "Contract", address: Optional[str] = None) -> "Contract":
        addr = to_address(address) if address else self.new_address(type(contract).__name__)
        require(addr not in self.contracts, f"address already in use: {addr}")
        contract.address = addr
        contract.chain = self
        self.contracts[addr] = contract
        logger.debug("deployed %s at %s", type(contract).__name__, addr)
        return contract

    def get(self, address: str) -> "Contract":
        addr = to_address(address)
        contract = self.contracts.get(addr)
        require(contract is not None, f"no contract at {addr}")
        return contract

    # native coin
    def balance(self, address: str) -> int:
        return self.native.get(to_address(address), 0)

    def set_balance(self, address: str, amount: int) -> None:
        self.native[to_address(address)] = int(amount)

    def transfer_native(self, frm: str, to: str, amount: int) -> None:
        if amount == 0:
            return
        require(amount > 0, "negative value")
        have = self.native.get(frm, 0)
        require(have >= amount, "Insufficient native balance", InsufficientFundsError)
        self.native[frm] = have - amount
        self.native[to] = self.native.get(to, 0) + amount

    # events
    def emit(self, emitter: str, name: str, **args: Any) -> Event:
        e = Event(self.block_number, name, emitter, args)
        self.log.add(e)
        return e

    # transactions
    def _snapshot(self) -> tuple:
        states = {addr: copy.deepcopy(c.state) for addr, c in self.contracts.items()}
        return states, dict(self.native), self.log.checkpoint()

    def _restore(self, snapshot: tuple) -> None:
        states, native, log_checkpoint = snapshot
        for addr in list(self.contracts):
            if addr not in states:
                del self.contracts[addr]
        for addr, state in states.items():
            self.contracts[addr].state = state
        self.native = native
        self.log.rollback(log_checkpoint)

    @contextmanager
    def frame(self) -> Iterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        snapshot = self._snapshot()
        self._depth = 1
        try:
            yield
        except Exception:
            self._restore(snapshot)
            raise
        finally:
            self._depth = 0

    def mine(self) -> None:
        self.block_number += 1
        self.timestamp += self.block_time

    def transact(self, sender: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> TxReceipt:
        """Submit ``fn(sender, *args, **kwargs)`` as one transaction in a new block."""
        self.mine()
        start = self.log.added
        method = getattr(fn, "__name__", repr(fn))
        try:
            with self.frame():
                result = fn(sender, *args, **kwargs)
        except Revert as exc:
            logger.warning("tx reverted block=%s sender=%s method=%s reason=%s",
                           self.block_number, sender, method, exc.reason)
            return TxReceipt(self.block_number, sender, method, "failed", revert_reason=exc.reason)
        events = self.log.since(start)
        return TxReceipt(self.block_number, sender, method, "executed", events=events, result=result)


# -----------------------------
# Contracts
# -----------------------------
class Contract:
    chain: Chain
    address: str = ZERO_ADDRESS

    def __init__(self, state: Any) -> None:
        self.state = state

    def emit(self, name: str, **args: Any) -> Event:
        return self.chain.emit(self.address, name, **args)

    def receive_value(self, sender: str, value: int) -> None:
        self.chain.transfer_native(sender, self.address, value)


def external(fn: Callable) -> Callable:
    """State-mutating entry point: runs inside a rollback frame."""
    @functools.wraps(fn)
    def wrapper(self: Contract, *args: Any, **kwargs: Any) -> Any:
        with self.chain.frame():
            return fn(self, *args, **kwargs)
    return wrapper


def non_reentrant(fn: Callable) -> Callable:
    @functools.wraps(fn)
    def wrapper(self: Contract, *args: Any, **kwargs: Any) -> Any:
        require(not self.state.entered, "ReentrancyGuard: reentrant call", ReentrancyError)
        self.state.entered = True
        try:
            return fn(self, *args, **kwargs)
        finally:
            self.state.entered = False
    return wrapper
