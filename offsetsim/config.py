from dataclasses import dataclass, field
from typing import Dict, List, Tuple

# -----------------------------
# Network tables
# -----------------------------
# Celo/Alfajores: "mcUSD" is the router's stable intermediate every path ends in.
ADDRESSES: Dict[str, Dict[str, str]] = {
    "celo": {
        "BCT": "0x0CcB0071e8B8B716A2a5998aB4d97b83790873Fe",
        "NCT": "0x02De4766C272abc10Bc88c220D214A26960a7e92",
        "mcUSD": "0x918146359264c492bd6934071c6bd31c854edbc3",
        "cUSD": "0x765DE816845861e75A25fCA122bb6898B8B1282a",
        "CELO": "0x471EcE3750Da237f93B8E339c536989b8978a438",
        "WETH": "0x122013fd7dF1C6F636a5bb8f03108E876548b455",
        "USDC": "0xef4229c8c3250C675F21BCefa42f58EfbfF6002a",
    },
    "alfajores": {
        "BCT": "0x4c5f90C50Ca9F849bb75D93a393A4e1B6E68Accb",
        "NCT": "0xfb60a08855389F3c0A66b29aB9eFa911ed5cbCB5",
        "mcUSD": "0x71DB38719f9113A36e14F409bAD4F07B58b4730b",
        "cUSD": "0x874069Fa1Eb16D44d622F2e0Ca25eeA172369bC1",
        "CELO": "0xF194afDf50B03e69Bd7D057c1Aa9e10c9954E4C9",
    },
    "polygon": {
        "BCT": "0x2F800Db0fdb5223b3C3f354886d907A671414A7F",
        "NCT": "0xD838290e877E0188a4A44700463419ED96c16107",
        "USDC": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
        "WETH": "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",
        "WMATIC": "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
    },
    "mumbai": {
        "BCT": "0xf2438A14f668b1bbA53408346288f3d7C71c10a1",
        "NCT": "0x7beCBA11618Ca63Ead5605DE235f6dD3b25c530E",
        "USDC": "0xe6b8a5CF854791412c1f6EFC7CAf629f5Df1c747",
        "WETH": "0xA6FA4fB5f76172d178d61B04b0ecd319C5d1C0aa",
        "WMATIC": "0x9c3C9283D3e44854697Cd22D3Faa240Cfb032889",
    },
}

POOL_SYMBOLS: Tuple[str, ...] = ("BCT", "NCT")

POOL_ADDRESSES: Dict[str, Dict[str, str]] = {
    network: {symbol: table[symbol] for symbol in POOL_SYMBOLS}
    for network, table in ADDRESSES.items()
}

ROUTER_ADDRESSES: Dict[str, str] = {
    "celo": "0x7D28570135A2B1930F331c507F65039D4937f66c",  # ubeswap
    "alfajores": "0x7D28570135A2B1930F331c507F65039D4937f66c",  # ubeswap
    "polygon": "0x1b02dA8Cb0d097eB8D57A175b88c7D8b47997506",  # sushiswap
    "mumbai": "0x1b02dA8Cb0d097eB8D57A175b88c7D8b47997506",  # sushiswap
}

PATHS: Dict[str, Dict[str, List[str]]] = {
    "celo": {
        "mcUSD": ["0x918146359264c492bd6934071c6bd31c854edbc3"],
        "cUSD": [
            "0x765DE816845861e75A25fCA122bb6898B8B1282a",
            "0x918146359264c492bd6934071c6bd31c854edbc3",
        ],
        "CELO": [
            "0x471EcE3750Da237f93B8E339c536989b8978a438",
            "0x765DE816845861e75A25fCA122bb6898B8B1282a",
            "0x918146359264c492bd6934071c6bd31c854edbc3",
        ],
        "WETH": [
            "0x122013fd7dF1C6F636a5bb8f03108E876548b455",
            "0x918146359264c492bd6934071c6bd31c854edbc3",
        ],
        "USDC": [
            "0xef4229c8c3250C675F21BCefa42f58EfbfF6002a",
            "0x765DE816845861e75A25fCA122bb6898B8B1282a",
            "0x918146359264c492bd6934071c6bd31c854edbc3",
        ],
    },
    "alfajores": {
        "mcUSD": ["0x71DB38719f9113A36e14F409bAD4F07B58b4730b"],
        "cUSD": [
            "0x874069Fa1Eb16D44d622F2e0Ca25eeA172369bC1",
            "0x71DB38719f9113A36e14F409bAD4F07B58b4730b",
        ],
        "CELO": [
            "0xF194afDf50B03e69Bd7D057c1Aa9e10c9954E4C9",
            "0x874069Fa1Eb16D44d622F2e0Ca25eeA172369bC1",
            "0x71DB38719f9113A36e14F409bAD4F07B58b4730b",
        ],
    },
    "polygon": {
        "USDC": ["0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"],
        "WETH": [
            "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",
            "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
        ],
        "WMATIC": [
            "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
            "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
        ],
    },
    "mumbai": {
        "USDC": ["0xe6b8a5CF854791412c1f6EFC7CAf629f5Df1c747"],
        "WETH": [
            "0xA6FA4fB5f76172d178d61B04b0ecd319C5d1C0aa",
            "0xe6b8a5CF854791412c1f6EFC7CAf629f5Df1c747",
        ],
        "WMATIC": [
            "0x9c3C9283D3e44854697Cd22D3Faa240Cfb032889",
            "0xe6b8a5CF854791412c1f6EFC7CAf629f5Df1c747",
        ],
    },
}

CHAIN_IDS: Dict[str, int] = {
    "celo": 42220,
    "alfajores": 44787,
    "polygon": 137,
    "mumbai": 80001,
}

# (native coin symbol, symbol of its wrapped ERC20)
NATIVE_COINS: Dict[str, Tuple[str, str]] = {
    "celo": ("CELO", "CELO"),
    "alfajores": ("CELO", "CELO"),
    "polygon": ("MATIC", "WMATIC"),
    "mumbai": ("MATIC", "WMATIC"),
}

TOKEN_DECIMALS: Dict[str, int] = {
    "USDC": 6,
}


@dataclass
class NetworkConfig:
    name: str
    chain_id: int
    addresses: Dict[str, str]
    pools: Dict[str, str]
    router: str
    paths: Dict[str, List[str]]
    native_symbol: str
    wrapped_native_symbol: str

    @classmethod
    def for_network(cls, name: str) -> "NetworkConfig":
        if name not in ADDRESSES:
            raise ValueError(f"unknown network {name!r}; expected one of {sorted(ADDRESSES)}")
        native, wrapped = NATIVE_COINS[name]
        return cls(
            name=name,
            chain_id=CHAIN_IDS[name],
            addresses=dict(ADDRESSES[name]),
            pools=dict(POOL_ADDRESSES[name]),
            router=ROUTER_ADDRESSES[name],
            paths={symbol: list(path) for symbol, path in PATHS[name].items()},
            native_symbol=native,
            wrapped_native_symbol=wrapped,
        )

    def decimals(self, symbol: str) -> int:
        return TOKEN_DECIMALS.get(symbol, 18)

    @property
    def swappable_symbols(self) -> List[str]:
        return list(self.paths)

    @property
    def stable_symbol(self) -> str:
        """The router intermediate: the token whose path is just itself."""
        for symbol, path in self.paths.items():
            if len(path) == 1:
                return symbol
        raise ValueError(f"network {self.name} has no stable intermediate")


# -----------------------------
# Scenario
# -----------------------------
@dataclass
class ScenarioConfig:
    network: str = "polygon"
    seed: int = 1
    block_time: int = 2

    # Market (reference prices in USD; pairs are seeded at parity)
    reference_prices_usd: Dict[str, float] = field(default_factory=lambda: {
        "USDC": 1.0,
        "cUSD": 1.0,
        "mcUSD": 1.0,
        "WETH": 1800.0,
        "WMATIC": 0.8,
        "CELO": 0.6,
        "BCT": 1.2,
        "NCT": 1.6,
    })
    pair_liquidity_usd: float = 250_000.0

    # Carbon supply
    vintages_per_pool: int = 8
    first_vintage_year: int = 2008
    vintage_supply_tonnes: Tuple[float, float] = (50_000.0, 150_000.0)

    # Users
    users: int = 5
    user_native_balance: float = 10_000.0  # native coin units
    user_funding_usd: float = 5_000.0      # per swappable token and per pool token

    # Random offset traffic
    offsets_per_step: int = 3
    offset_size_usd: Tuple[float, float] = (5.0, 250.0)
    exact_out_share: float = 0.5
    eth_share: float = 0.3
    pool_token_share: float = 0.15

    # Logging / history
    event_log_maxlen: int | None = None
    debug_ledger: bool = False

    def __post_init__(self) -> None:
        if self.vintages_per_pool <= 0:
            raise ValueError("vintages_per_pool must be positive")
        low, high = self.vintage_supply_tonnes
        if low <= 0 or high < low:
            raise ValueError("vintage_supply_tonnes must be a positive (low, high) range")

    @property
    def network_config(self) -> NetworkConfig:
        return NetworkConfig.for_network(self.network)
