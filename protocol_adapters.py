"""
Protocol Adapters - normalize raw on-chain balances into (claimed, actual).

Each supported protocol type reads a different set of contract values but
ends up in the same shape:
- claimed: what the protocol owes depositors
- actual: what the protocol can account for
- utilization: borrow pressure (or a backing-gap proxy where no borrow exists)

Supported types:
- aave / compound: money markets (claimed = deposit token supply,
  actual = idle liquidity + borrowed)
- lido: liquid staking (claimed = stETH supply, actual = pooled ether)
- erc4626: share vaults (claimed = shares, actual = underlying assets)

An unknown type raises UnsupportedProtocolType. The caller must abort the
cycle instead of skipping the protocol: a partial report is worse than none.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Callable, Tuple, Optional

from errors import UnsupportedProtocolType
from reserve_math import to_units, solvency_bps, utilization_bps, backing_gap_bps


class ProtocolType(Enum):
    AAVE = "aave"
    COMPOUND = "compound"
    LIDO = "lido"
    ERC4626 = "erc4626"


# Protocol types whose unit is not USD and which stay out of aggregate sums
NON_USD_TYPES = {ProtocolType.LIDO.value}

# Liquid staking types use the solvency-based cross-reference check
LST_TYPES = {ProtocolType.LIDO.value}


@dataclass(frozen=True)
class ProtocolResult:
    """Per-cycle metrics for one protocol."""
    name: str
    protocol_type: str
    chain: str
    claimed: int
    actual: int
    solvency_bps: int
    utilization_bps: int
    velocity_bps: int = 0
    velocity_negative: bool = False
    reference_tvl: int = 0
    cross_ref_risk: int = 0
    details: Dict[str, int] = field(default_factory=dict)

    @property
    def counts_toward_aggregate(self) -> bool:
        return self.protocol_type not in NON_USD_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.protocol_type,
            "chain": self.chain,
            "claimed": self.claimed,
            "actual": self.actual,
            "solvency_bps": self.solvency_bps,
            "utilization_bps": self.utilization_bps,
            "velocity_bps": self.velocity_bps,
            "velocity_negative": self.velocity_negative,
            "reference_tvl": self.reference_tvl,
            "cross_ref_risk": self.cross_ref_risk,
            "details": dict(self.details),
        }


# =============================================================================
# ABI DEFINITIONS
# =============================================================================

ERC20_ABI = json.loads('''[
    {"inputs":[],"name":"totalSupply","outputs":[{"type":"uint256"}],"stateMutability":"view","type":"function"},
    {"inputs":[{"name":"account","type":"address"}],"name":"balanceOf","outputs":[{"type":"uint256"}],"stateMutability":"view","type":"function"}
]''')

AAVE_POOL_ABI = json.loads('''[
    {"inputs":[{"name":"asset","type":"address"}],"name":"getReserveData","outputs":[{"components":[
        {"name":"configuration","type":"uint256"},
        {"name":"liquidityIndex","type":"uint128"},
        {"name":"currentLiquidityRate","type":"uint128"},
        {"name":"variableBorrowIndex","type":"uint128"},
        {"name":"currentVariableBorrowRate","type":"uint128"},
        {"name":"currentStableBorrowRate","type":"uint128"},
        {"name":"lastUpdateTimestamp","type":"uint40"},
        {"name":"id","type":"uint16"},
        {"name":"aTokenAddress","type":"address"},
        {"name":"stableDebtTokenAddress","type":"address"},
        {"name":"variableDebtTokenAddress","type":"address"},
        {"name":"interestRateStrategyAddress","type":"address"},
        {"name":"accruedToTreasury","type":"uint128"},
        {"name":"unbacked","type":"uint128"},
        {"name":"isolationModeTotalDebt","type":"uint128"}
    ],"name":"","type":"tuple"}],"stateMutability":"view","type":"function"}
]''')

COMET_ABI = json.loads('''[
    {"inputs":[],"name":"totalSupply","outputs":[{"type":"uint256"}],"stateMutability":"view","type":"function"},
    {"inputs":[],"name":"totalBorrow","outputs":[{"type":"uint256"}],"stateMutability":"view","type":"function"}
]''')

LIDO_ABI = json.loads('''[
    {"inputs":[],"name":"getTotalPooledEther","outputs":[{"type":"uint256"}],"stateMutability":"view","type":"function"},
    {"inputs":[],"name":"totalSupply","outputs":[{"type":"uint256"}],"stateMutability":"view","type":"function"}
]''')

ERC4626_ABI = json.loads('''[
    {"inputs":[],"name":"totalAssets","outputs":[{"type":"uint256"}],"stateMutability":"view","type":"function"},
    {"inputs":[],"name":"totalSupply","outputs":[{"type":"uint256"}],"stateMutability":"view","type":"function"}
]''')

# Index of aTokenAddress / variableDebtTokenAddress in the getReserveData tuple
AAVE_ATOKEN_INDEX = 8
AAVE_VARIABLE_DEBT_INDEX = 10


# =============================================================================
# NORMALIZATION FUNCTIONS
# =============================================================================

def normalize_money_market(raw: Dict[str, int], decimals: int) -> Tuple[int, int, int, Dict[str, int]]:
    """
    Normalize an Aave/Compound style market.

    Borrowed funds are not held by the pool but are accounted for, so they
    count toward actual backing.

    Args:
        raw: {"deposits", "liquidity", "borrows"} as raw integers
        decimals: Underlying token decimals

    Returns:
        (claimed, actual, utilization_bps, details)
    """
    deposits = to_units(raw["deposits"], decimals)
    liquidity = to_units(raw["liquidity"], decimals)
    borrows = to_units(raw["borrows"], decimals)

    actual = liquidity + borrows
    details = {"deposits": deposits, "liquidity": liquidity, "borrows": borrows}
    return deposits, actual, utilization_bps(borrows, deposits), details


def normalize_liquid_staking(raw: Dict[str, int], decimals: int) -> Tuple[int, int, int, Dict[str, int]]:
    """
    Normalize a Lido style liquid staking token.

    There is no borrow side; utilization is the backing gap below 100%.
    """
    supply = to_units(raw["supply"], decimals)
    pooled = to_units(raw["pooled"], decimals)

    solvency = solvency_bps(pooled, supply)
    details = {"supply": supply, "pooled": pooled}
    return supply, pooled, backing_gap_bps(solvency), details


def normalize_share_vault(raw: Dict[str, int], decimals: int) -> Tuple[int, int, int, Dict[str, int]]:
    """Normalize an ERC4626 vault. No utilization signal exists."""
    shares = to_units(raw["shares"], decimals)
    assets = to_units(raw["assets"], decimals)

    details = {"shares": shares, "assets": assets}
    return shares, assets, 0, details


ADAPTERS: Dict[str, Callable[[Dict[str, int], int], Tuple[int, int, int, Dict[str, int]]]] = {
    ProtocolType.AAVE.value: normalize_money_market,
    ProtocolType.COMPOUND.value: normalize_money_market,
    ProtocolType.LIDO.value: normalize_liquid_staking,
    ProtocolType.ERC4626.value: normalize_share_vault,
}


def get_adapter(protocol_type: str, name: str = None):
    """
    Look up the normalization function for a protocol type.

    Raises:
        UnsupportedProtocolType: if no adapter exists for the type
    """
    adapter = ADAPTERS.get(protocol_type)
    if adapter is None:
        raise UnsupportedProtocolType(protocol_type, name)
    return adapter


def build_protocol_result(protocol, raw: Dict[str, int]) -> ProtocolResult:
    """
    Turn raw reads for one protocol into a ProtocolResult.

    Args:
        protocol: ProtocolConfig (name, protocol_type, chain, decimals)
        raw: Raw integer reads keyed as the adapter expects

    Returns:
        ProtocolResult without velocity or cross-reference fields
    """
    adapter = get_adapter(protocol.protocol_type, protocol.name)
    claimed, actual, utilization, details = adapter(raw, protocol.decimals)

    return ProtocolResult(
        name=protocol.name,
        protocol_type=protocol.protocol_type,
        chain=protocol.chain,
        claimed=claimed,
        actual=actual,
        solvency_bps=solvency_bps(actual, claimed),
        utilization_bps=utilization,
        details=details,
    )


# =============================================================================
# ON-CHAIN QUERY FUNCTIONS
# =============================================================================
# ``reader`` is anything with
#   call(chain, address, abi, function_name, args=(), block=None) -> value
# so the transport can be swapped out (see sentinel.fetchers.onchain).

def query_aave_market(reader, protocol, block: Optional[int] = None) -> Dict[str, int]:
    """Read deposits, idle liquidity and variable borrows for an Aave V3 reserve."""
    chain = protocol.chain
    reserve = reader.call(chain, protocol.pool_address, AAVE_POOL_ABI, "getReserveData",
                          (protocol.asset_address,), block)
    a_token = reserve[AAVE_ATOKEN_INDEX]
    debt_token = reserve[AAVE_VARIABLE_DEBT_INDEX]

    return {
        "deposits": reader.call(chain, a_token, ERC20_ABI, "totalSupply", (), block),
        "liquidity": reader.call(chain, protocol.asset_address, ERC20_ABI, "balanceOf", (a_token,), block),
        "borrows": reader.call(chain, debt_token, ERC20_ABI, "totalSupply", (), block),
    }


def query_compound_market(reader, protocol, block: Optional[int] = None) -> Dict[str, int]:
    """Read supply, base token balance and borrows for a Compound V3 (Comet) market."""
    chain = protocol.chain
    comet = protocol.comet_address

    return {
        "deposits": reader.call(chain, comet, COMET_ABI, "totalSupply", (), block),
        "liquidity": reader.call(chain, protocol.asset_address, ERC20_ABI, "balanceOf", (comet,), block),
        "borrows": reader.call(chain, comet, COMET_ABI, "totalBorrow", (), block),
    }


def query_lido(reader, protocol, block: Optional[int] = None) -> Dict[str, int]:
    """Read stETH supply and total pooled ether."""
    chain = protocol.chain
    token = protocol.token_address

    return {
        "supply": reader.call(chain, token, LIDO_ABI, "totalSupply", (), block),
        "pooled": reader.call(chain, token, LIDO_ABI, "getTotalPooledEther", (), block),
    }


def query_erc4626_vault(reader, protocol, block: Optional[int] = None) -> Dict[str, int]:
    """Read total shares and total underlying assets for an ERC4626 vault."""
    chain = protocol.chain
    vault = protocol.vault_address

    return {
        "shares": reader.call(chain, vault, ERC4626_ABI, "totalSupply", (), block),
        "assets": reader.call(chain, vault, ERC4626_ABI, "totalAssets", (), block),
    }


QUERIES = {
    ProtocolType.AAVE.value: query_aave_market,
    ProtocolType.COMPOUND.value: query_compound_market,
    ProtocolType.LIDO.value: query_lido,
    ProtocolType.ERC4626.value: query_erc4626_vault,
}


def read_protocol(reader, protocol, block: Optional[int] = None) -> ProtocolResult:
    """
    Read and normalize one protocol at a given block.

    Raises:
        UnsupportedProtocolType: unknown protocol type
        ExternalReadUnavailable: a contract read failed
    """
    query = QUERIES.get(protocol.protocol_type)
    if query is None:
        raise UnsupportedProtocolType(protocol.protocol_type, protocol.name)

    raw = query(reader, protocol, block)
    return build_protocol_result(protocol, raw)
