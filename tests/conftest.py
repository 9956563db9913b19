"""
Pytest configuration and fixtures for the reserve sentinel.

This file contains shared fixtures used across all test modules.
Fixtures follow the pattern: factory functions with auto-cleanup.
"""

import pytest
import sys
from pathlib import Path
from typing import Dict, Any, List, Tuple
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_schema import ProtocolConfig
from protocol_adapters import ProtocolResult, AAVE_ATOKEN_INDEX, AAVE_VARIABLE_DEBT_INDEX
from errors import ExternalReadUnavailable


OWNER = "0x00000000000000000000000000000000000000a1"
REPORTER = "0x00000000000000000000000000000000000000b2"
LEDGER_ID = "0x00000000000000000000000000000000000000c3"
CONSUMER = "0x00000000000000000000000000000000000000d4"

USDC = "0x" + "1" * 40
AAVE_POOL = "0x" + "2" * 40
A_TOKEN = "0x" + "3" * 40
DEBT_TOKEN = "0x" + "4" * 40
COMET = "0x" + "5" * 40
STETH = "0x" + "6" * 40
VAULT = "0x" + "7" * 40


# =============================================================================
# PATH FIXTURES
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def protocols_dir(project_root: Path) -> Path:
    """Return the directory containing the shipped protocol configs."""
    return project_root / "protocols"


# =============================================================================
# CONFIG FIXTURES
# =============================================================================

@pytest.fixture
def config_factory():
    """
    Factory fixture for creating protocol configurations.

    Usage:
        def test_something(config_factory):
            config = config_factory(name="Lido", protocol_type="lido")
    """
    def _create_config(**overrides) -> ProtocolConfig:
        base = {
            "name": "Aave USDC",
            "protocol_type": "aave",
            "chain": "ethereum",
            "decimals": 6,
            "reference_slug": "aave-v3",
            "pool_address": AAVE_POOL,
            "asset_address": USDC,
        }
        base.update(overrides)
        return ProtocolConfig(**base)

    return _create_config


@pytest.fixture
def sample_protocols(config_factory) -> List[ProtocolConfig]:
    """One protocol of every supported type."""
    return [
        config_factory(),
        config_factory(name="Compound USDC", protocol_type="compound", reference_slug="compound-v3",
                       pool_address=None, comet_address=COMET),
        config_factory(name="Lido stETH", protocol_type="lido", decimals=18, reference_slug="",
                       pool_address=None, asset_address=None, token_address=STETH),
        config_factory(name="sDAI", protocol_type="erc4626", decimals=18, reference_slug="makerdao",
                       pool_address=None, asset_address=None, vault_address=VAULT),
    ]


@pytest.fixture
def result_factory():
    """
    Factory fixture for ProtocolResults.

    Usage:
        result = result_factory(name="A", solvency_bps=9000)
    """
    def _create_result(**overrides) -> ProtocolResult:
        base = {
            "name": "Aave USDC",
            "protocol_type": "aave",
            "chain": "ethereum",
            "claimed": 100_000_000,
            "actual": 100_000_000,
            "solvency_bps": 10_000,
            "utilization_bps": 5_000,
        }
        base.update(overrides)
        return ProtocolResult(**base)

    return _create_result


# =============================================================================
# CLOCK / LEDGER / GUARD FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Deterministic clock: starts at 1_700_000_000 and advances 60s per call."""
    state = {"now": 1_700_000_000}

    def _now() -> int:
        state["now"] += 60
        return state["now"]

    return _now


@pytest.fixture
def guard(clock):
    from sentinel.core.guard import CircuitBreaker
    return CircuitBreaker(owner=OWNER, ledger_identity=LEDGER_ID, now=clock)


@pytest.fixture
def ledger(guard, clock):
    """Ledger wired to the guard fixture."""
    from sentinel.core.ledger import ReserveLedger
    return ReserveLedger(owner=OWNER, reporter=REPORTER, identity=LEDGER_ID, guard=guard, now=clock)


@pytest.fixture
def bare_ledger(clock):
    """Ledger without a guard attached."""
    from sentinel.core.ledger import ReserveLedger
    return ReserveLedger(owner=OWNER, reporter=REPORTER, identity=LEDGER_ID, now=clock)


@pytest.fixture
def report_factory():
    """Factory fixture for HealthReport drafts."""
    from risk_engine import HealthReport, Severity

    def _create_report(**overrides):
        base = {
            "total_actual": 100_000_000,
            "total_claimed": 100_000_000,
            "global_ratio_bps": 10_000,
            "worst_solvency_bps": 10_000,
            "worst_protocol": "Aave USDC",
            "risk_score": 0,
            "severity": Severity.HEALTHY,
            "anomaly_detected": False,
            "timestamp": 1_700_000_000,
        }
        base.update(overrides)
        return HealthReport(**base)

    return _create_report


# =============================================================================
# MOCK FIXTURES FOR EXTERNAL APIS
# =============================================================================

class FakeChainReader:
    """
    In-memory stand-in for ChainReader.

    Values are keyed by (lowercased address, function name, args). Every
    call is recorded with the block it was anchored to.
    """

    def __init__(self, values: Dict[Tuple[str, str, tuple], Any] = None, block: int = 19_000_000):
        self.values = {}
        for (address, fn, args), value in (values or {}).items():
            self.set(address, fn, value, args)
        self.block = block
        self.calls: List[Tuple[str, str, str, tuple, Any]] = []
        self.failing = set()

    def set(self, address: str, function_name: str, value: Any, args: tuple = ()) -> None:
        key_args = tuple(a.lower() if isinstance(a, str) else a for a in args)
        self.values[(address.lower(), function_name, key_args)] = value

    def fail(self, address: str, function_name: str) -> None:
        self.failing.add((address.lower(), function_name))

    def block_number(self, chain: str) -> int:
        return self.block

    def call(self, chain, address, abi, function_name, args=(), block=None):
        self.calls.append((chain, address, function_name, tuple(args), block))
        if (address.lower(), function_name) in self.failing:
            raise ExternalReadUnavailable(chain, f"{address}.{function_name}", "simulated failure")
        key_args = tuple(a.lower() if isinstance(a, str) else a for a in args)
        key = (address.lower(), function_name, key_args)
        if key not in self.values:
            raise ExternalReadUnavailable(chain, f"{address}.{function_name}", "no value")
        return self.values[key]


def aave_reserve_tuple(a_token: str = A_TOKEN, debt_token: str = DEBT_TOKEN) -> tuple:
    """getReserveData tuple with only the token addresses filled in."""
    reserve = [0] * 15
    reserve[AAVE_ATOKEN_INDEX] = a_token
    reserve[AAVE_VARIABLE_DEBT_INDEX] = debt_token
    return tuple(reserve)


@pytest.fixture
def fake_reader():
    """
    Reader populated for the sample_protocols fixture.

    - Aave: 100M deposits, 40M idle, 60M borrowed (6 decimals)
    - Compound: 50M supply, 10M idle, 40M borrowed (6 decimals)
    - Lido: 9.5M supply, 9.5M pooled (18 decimals)
    - sDAI: 1B shares, 1.05B assets (18 decimals)
    """
    reader = FakeChainReader()
    reader.set(AAVE_POOL, "getReserveData", aave_reserve_tuple(), (USDC,))
    reader.set(A_TOKEN, "totalSupply", 100_000_000 * 10**6)
    reader.set(USDC, "balanceOf", 40_000_000 * 10**6, (A_TOKEN,))
    reader.set(DEBT_TOKEN, "totalSupply", 60_000_000 * 10**6)

    reader.set(COMET, "totalSupply", 50_000_000 * 10**6)
    reader.set(USDC, "balanceOf", 10_000_000 * 10**6, (COMET,))
    reader.set(COMET, "totalBorrow", 40_000_000 * 10**6)

    reader.set(STETH, "totalSupply", 9_500_000 * 10**18)
    reader.set(STETH, "getTotalPooledEther", 9_500_000 * 10**18)

    reader.set(VAULT, "totalSupply", 1_000_000_000 * 10**18)
    reader.set(VAULT, "totalAssets", 1_050_000_000 * 10**18)
    return reader


@pytest.fixture
def mock_web3():
    """Mock Web3 instance for testing without blockchain connection."""
    mock = MagicMock()
    mock.eth.contract.return_value = MagicMock()
    mock.eth.block_number = 19_000_000
    mock.is_connected.return_value = True
    return mock


@pytest.fixture
def mock_defillama_get():
    """
    Mock requests.get returning a DeFiLlama /tvl payload (a bare number).

    Usage:
        def test_tvl(mock_defillama_get):
            mock_defillama_get.return_value.json.return_value = 1234.5
    """
    with patch("sentinel.fetchers.offchain.requests.get") as mock_get:
        mock_response = MagicMock()
        mock_response.json.return_value = 12_500_000_000.75
        mock_response.status_code = 200
        mock_response.raise_for_status.return_value = None
        mock_get.return_value = mock_response
        yield mock_get


# =============================================================================
# CLEANUP FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_module_state():
    """
    Auto-cleanup fixture that resets module-level state after each test.
    The Lambda handler caches its ledger and guard between invocations.
    """
    yield
    handler_module = sys.modules.get("sentinel.handlers.cycle_handler")
    if handler_module is not None:
        handler_module._state.clear()
