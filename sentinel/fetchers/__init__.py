"""
Data fetchers.

- onchain: web3 protocol reads anchored to one block per chain
- offchain: DeFiLlama reference TVL
"""

from .onchain import (
    ChainReader,
    fetch_block_anchors,
    fetch_protocol_results,
    read_check_counter,
)

from .offchain import fetch_reference_tvl, fetch_reference_tvls

__all__ = [
    "ChainReader",
    "fetch_block_anchors",
    "fetch_protocol_results",
    "read_check_counter",
    "fetch_reference_tvl",
    "fetch_reference_tvls",
]
