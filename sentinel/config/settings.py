"""
Sentinel configuration.

RPC endpoints, identities, risk profile and database settings, all
overridable through environment variables.
"""

import os
from pathlib import Path

# RPC endpoints per chain (override with RPC_URL_<CHAIN>)
DEFAULT_RPC_URLS = {
    "ethereum": "https://eth.drpc.org",
    "arbitrum": "https://arbitrum.drpc.org",
    "base": "https://base.drpc.org",
    "optimism": "https://optimism.drpc.org",
    "polygon": "https://polygon.drpc.org",
    "avalanche": "https://avalanche.drpc.org",
    "gnosis": "https://gnosis.drpc.org",
}

RPC_URLS = {
    chain: os.getenv(f"RPC_URL_{chain.upper()}", url)
    for chain, url in DEFAULT_RPC_URLS.items()
}

# Off-chain reference data
DEFILLAMA_BASE_URL = os.getenv("DEFILLAMA_BASE_URL", "https://api.llama.fi")
HTTP_TIMEOUT_SECONDS = int(os.getenv("HTTP_TIMEOUT_SECONDS", 30))

# Risk weighting profile: "single" or "multi"
RISK_PROFILE = os.getenv("SENTINEL_RISK_PROFILE", "multi")

# Identities for the capability checks on ledger and guard
LEDGER_OWNER = os.getenv("LEDGER_OWNER", "sentinel-owner")
LEDGER_REPORTER = os.getenv("LEDGER_REPORTER", "sentinel-reporter")
LEDGER_IDENTITY = os.getenv("LEDGER_IDENTITY", "sentinel-ledger")
GUARD_OWNER = os.getenv("GUARD_OWNER", LEDGER_OWNER)

# Optional remote ledger contract, read only for the advisory check counter
LEDGER_CONTRACT_CHAIN = os.getenv("LEDGER_CONTRACT_CHAIN", "ethereum")
LEDGER_CONTRACT_ADDRESS = os.getenv("LEDGER_CONTRACT_ADDRESS")

# Concurrent protocol reads within one cycle
MAX_READ_WORKERS = int(os.getenv("MAX_READ_WORKERS", 8))

# Protocol configs
PROTOCOLS_DIR = os.getenv(
    "PROTOCOLS_DIR",
    str(Path(__file__).resolve().parent.parent.parent / "protocols"),
)

# History sink (PostgreSQL)
PERSIST_TO_DB = os.getenv("PERSIST_TO_DB", "false").lower() in ("1", "true", "yes")

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "database": os.getenv("DB_NAME", "sentinel"),
    "user": os.getenv("DB_USER", "sentinel"),
    "password": os.getenv("DB_PASSWORD", ""),
    "port": int(os.getenv("DB_PORT", 5432))
}

SCHEMA_NAME = os.getenv("DB_SCHEMA", "public")
TABLE_PREFIX = "rs_"  # reserve sentinel prefix

# Number of reports reloaded into a fresh ledger on start
RESTORE_HISTORY_LIMIT = int(os.getenv("RESTORE_HISTORY_LIMIT", 100))
