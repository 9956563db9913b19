"""
On-chain fetcher - web3 reads for every monitored protocol.

All reads of one cycle are anchored to a single block per chain, fetched
once at the start of the cycle, so every protocol on a chain is observed
at the same state. Protocol reads run concurrently; any failed read aborts
the cycle.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Any, List, Optional, Sequence

from web3 import Web3

from errors import ExternalReadUnavailable
from protocol_adapters import ProtocolResult, read_protocol
from sentinel.config.settings import RPC_URLS, MAX_READ_WORKERS, HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

LEDGER_COUNTER_ABI = [
    {"inputs": [], "name": "totalChecks", "outputs": [{"type": "uint256"}],
     "stateMutability": "view", "type": "function"},
]


class ChainReader:
    """
    Point reads against EVM chains through web3 HTTP providers.

    One Web3 instance is kept per chain and shared across worker threads.
    """

    def __init__(self, rpc_urls: Dict[str, str] = None, timeout: int = HTTP_TIMEOUT_SECONDS):
        self.rpc_urls = rpc_urls or RPC_URLS
        self.timeout = timeout
        self._clients: Dict[str, Web3] = {}
        self._lock = threading.Lock()

    def _client(self, chain: str) -> Web3:
        with self._lock:
            w3 = self._clients.get(chain)
            if w3 is None:
                rpc_url = self.rpc_urls.get(chain)
                if not rpc_url:
                    raise ExternalReadUnavailable(chain, "rpc", "no RPC URL configured")
                w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": self.timeout}))
                self._clients[chain] = w3
            return w3

    def block_number(self, chain: str) -> int:
        """Latest block on a chain, used as the cycle's read anchor."""
        w3 = self._client(chain)
        try:
            return w3.eth.block_number
        except Exception as e:
            raise ExternalReadUnavailable(chain, "block_number", str(e)) from e

    def call(self, chain: str, address: str, abi: List[Dict[str, Any]], function_name: str,
             args: Sequence[Any] = (), block: Optional[int] = None) -> Any:
        """
        Call a view function.

        Raises:
            ExternalReadUnavailable: the RPC call failed
        """
        w3 = self._client(chain)
        try:
            contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
            fn = getattr(contract.functions, function_name)(*args)
            if block is None:
                return fn.call()
            return fn.call(block_identifier=block)
        except Exception as e:
            raise ExternalReadUnavailable(chain, f"{address}.{function_name}", str(e)) from e


def fetch_block_anchors(reader, chains: List[str]) -> Dict[str, int]:
    """One block number per chain for the whole cycle."""
    anchors = {}
    for chain in chains:
        anchors[chain] = reader.block_number(chain)
        logger.info("Anchored %s reads at block %d", chain, anchors[chain])
    return anchors


def fetch_protocol_results(reader, protocols: List[Any],
                           max_workers: int = MAX_READ_WORKERS) -> List[ProtocolResult]:
    """
    Read and normalize every protocol concurrently.

    Args:
        reader: ChainReader (or anything with call/block_number)
        protocols: ProtocolConfig list
        max_workers: Thread pool size

    Returns:
        ProtocolResults in the same order as ``protocols``

    Raises:
        ExternalReadUnavailable: any read failed
        UnsupportedProtocolType: a config has an unknown type
    """
    if not protocols:
        return []

    chains = list(dict.fromkeys(p.chain for p in protocols))
    anchors = fetch_block_anchors(reader, chains)

    workers = max(1, min(max_workers, len(protocols)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(read_protocol, reader, protocol, anchors[protocol.chain])
            for protocol in protocols
        ]
        # result() re-raises the first failure in config order
        results = [future.result() for future in futures]

    for result in results:
        logger.info(
            "%s (%s): solvency %d bps, utilization %d bps",
            result.name, result.chain, result.solvency_bps, result.utilization_bps,
        )
    return results


def read_check_counter(reader, chain: str, address: Optional[str]) -> int:
    """
    Advisory next check number from a remote ledger contract.

    Degrades to 1 when no contract is configured or the read fails; the
    in-memory ledger assigns the authoritative number.
    """
    if not address:
        return 1
    try:
        return int(reader.call(chain, address, LEDGER_COUNTER_ABI, "totalChecks")) + 1
    except ExternalReadUnavailable as e:
        logger.warning("Check counter unavailable, assuming check #1: %s", e)
        return 1
