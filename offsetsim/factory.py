from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Set, Tuple
import logging
import numpy as np

from .config import NetworkConfig, ScenarioConfig
from .core import Chain, parse_units, to_address
from .helper import OffsetHelper
from .router import Router, sort_tokens
from .tokens import ERC20, PoolToken, ProjectToken, VintageData, WrappedNative

logger = logging.getLogger(__name__)


def _year_start(year: int) -> int:
    return int(datetime(year, 1, 1, tzinfo=timezone.utc).timestamp())


@dataclass
class World:
    cfg: ScenarioConfig
    network: NetworkConfig
    chain: Chain
    deployer: str
    treasury: str
    router: Router
    helper: OffsetHelper
    tokens: Dict[str, ERC20]
    pools: Dict[str, PoolToken]
    vintages: Dict[str, List[ProjectToken]]
    users: List[str] = field(default_factory=list)

    def token(self, symbol: str) -> ERC20:
        return self.tokens[symbol]

    def symbol_of(self, address: str) -> str:
        addr = to_address(address)
        for symbol, token in self.tokens.items():
            if token.address == addr:
                return symbol
        contract = self.chain.get(addr)
        return getattr(contract, "symbol", addr)

    @property
    def wrapped_native(self) -> WrappedNative:
        return self.tokens[self.network.wrapped_native_symbol]


class DeploymentFactory:
    """
    Builds a local fork of one network: every configured token at its real address,
    vintage TCO2s behind each carbon pool, router pairs for every swap path hop, and
    an OffsetHelper wired to the network's pool and path tables.
    """
    def __init__(self, cfg: ScenarioConfig) -> None:
        self.cfg = cfg
        self.network = cfg.network_config
        self.rng = np.random.default_rng(cfg.seed)
        self.project_counter = 0

    def _new_project_id(self) -> str:
        self.project_counter += 1
        return f"VCS-{1000 + self.project_counter}"

    def usd_to_units(self, symbol: str, usd: float) -> int:
        price = self.cfg.reference_prices_usd[symbol]
        decimals = self.network.decimals(symbol)
        return parse_units(f"{usd / price:.{min(decimals, 6)}f}", decimals)

    # -----------------------------
    # Deployment
    # -----------------------------
    def build(self) -> World:
        net = self.network
        chain = Chain(chain_id=net.chain_id, block_time=self.cfg.block_time,
                      event_log_maxlen=self.cfg.event_log_maxlen)
        deployer = chain.new_account(label="deployer")
        treasury = chain.new_account(label="treasury")

        tokens = self._deploy_tokens(chain, deployer)
        pools = {symbol: tokens[symbol] for symbol in net.pools}
        vintages = {symbol: self._seed_vintages(chain, pool, deployer, treasury) for symbol, pool in pools.items()}

        router = chain.deploy(Router(wrapped_native=net.addresses[net.wrapped_native_symbol]), address=net.router)
        helper = chain.deploy(OffsetHelper(
            owner=deployer,
            router=router.address,
            wrapped_native=net.addresses[net.wrapped_native_symbol],
            pool_addresses=net.pools,
            paths=net.paths,
            debug_ledger=self.cfg.debug_ledger,
        ))
        world = World(
            cfg=self.cfg, network=net, chain=chain, deployer=deployer, treasury=treasury,
            router=router, helper=helper, tokens=tokens, pools=pools, vintages=vintages,
        )
        self._seed_pairs(world)
        logger.info("deployed %s fork: helper=%s router=%s pools=%s tokens=%d pairs=%d",
                    net.name, helper.address, router.address, sorted(pools), len(tokens),
                    len(router.state.pairs))
        return world

    def _deploy_tokens(self, chain: Chain, deployer: str) -> Dict[str, ERC20]:
        net = self.network
        tokens: Dict[str, ERC20] = {}
        for symbol, address in net.addresses.items():
            if symbol in net.pools:
                token = PoolToken(f"Toucan Protocol: {symbol}", symbol, owner=deployer)
            elif symbol == net.wrapped_native_symbol:
                token = WrappedNative(f"Wrapped {net.native_symbol}", symbol, 18, owner=deployer)
            else:
                token = ERC20(symbol, symbol, net.decimals(symbol), owner=deployer)
            tokens[symbol] = chain.deploy(token, address=address)
        return tokens

    def _seed_vintages(self, chain: Chain, pool: PoolToken, deployer: str, treasury: str) -> List[ProjectToken]:
        """Mint one TCO2 per vintage year and deposit them into the pool in shuffled order."""
        n = self.cfg.vintages_per_pool
        low, high = self.cfg.vintage_supply_tonnes
        years = self.cfg.first_vintage_year + np.arange(n)
        tonnes = np.round(self.rng.uniform(low, high, size=n))
        order = self.rng.permutation(n)

        created: List[ProjectToken] = []
        for idx in order:
            year = int(years[idx])
            quantity = parse_units(int(tonnes[idx]), 18)
            vintage = VintageData(
                name=str(year),
                project_id=self._new_project_id(),
                start_time=_year_start(year),
                end_time=_year_start(year + 1) - 1,
                total_vintage_quantity=quantity,
            )
            tco2 = chain.deploy(ProjectToken(vintage, owner=deployer))
            tco2.mint(deployer, treasury, quantity)
            tco2.approve(treasury, pool.address, quantity)
            pool.deposit(treasury, tco2.address, quantity)
            created.append(tco2)
        logger.info("seeded %s with %d vintages, supply=%s", pool.symbol, n, pool.total_supply())
        return sorted(created, key=lambda t: t.vintage.start_time)

    def _pair_keys(self) -> List[Tuple[str, str]]:
        net = self.network
        keys: Set[Tuple[str, str]] = set()
        stables: Set[str] = set()
        for path in net.paths.values():
            hops = [to_address(a) for a in path]
            for a, b in zip(hops, hops[1:]):
                keys.add(sort_tokens(a, b))
            stables.add(hops[-1])
        for stable in stables:
            for pool_address in net.pools.values():
                keys.add(sort_tokens(stable, to_address(pool_address)))
        return sorted(keys)

    def _seed_pairs(self, world: World) -> None:
        liquidity = self.cfg.pair_liquidity_usd
        for a, b in self._pair_keys():
            pair = world.router.create_pair(a, b)
            for address in (a, b):
                symbol = world.symbol_of(address)
                self.fund(world, symbol, pair.address, self.usd_to_units(symbol, liquidity))
            pair.sync(world.deployer)
            logger.debug("pair %s/%s reserves=%s", world.symbol_of(a), world.symbol_of(b), pair.get_reserves())

    # -----------------------------
    # Funding
    # -----------------------------
    def fund(self, world: World, symbol: str, to: str, amount: int) -> None:
        token = world.tokens[symbol]
        if symbol in world.pools:
            token.transfer(world.treasury, to, amount)
        elif symbol == world.network.wrapped_native_symbol:
            chain = world.chain
            chain.set_balance(world.treasury, chain.balance(world.treasury) + amount)
            token.deposit(world.treasury, value=amount)
            token.transfer(world.treasury, to, amount)
        else:
            token.mint(world.deployer, to, amount)

    def fund_user(self, world: World, label: str = "user") -> str:
        cfg = self.cfg
        user = world.chain.new_account(native_balance=parse_units(str(cfg.user_native_balance), 18), label=label)
        for symbol in world.network.swappable_symbols:
            self.fund(world, symbol, user, self.usd_to_units(symbol, cfg.user_funding_usd))
        for symbol in world.pools:
            self.fund(world, symbol, user, self.usd_to_units(symbol, cfg.user_funding_usd))
        world.users.append(user)
        return user
