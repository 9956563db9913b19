"""
Cycle Dispatcher - runs one evaluation cycle end to end.

Steps:
1. Read every enabled protocol (one block anchor per chain, reads in parallel)
2. Fetch off-chain reference TVL per slug
3. Compute velocity against the ledger's previous rows
4. Score the batch and classify severity
5. Commit to the ledger, which pushes into the guard
6. Optionally mirror the committed cycle into PostgreSQL

A failed protocol read aborts the cycle before anything is written. The
advisory check counter and the history sink degrade instead of aborting.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Any, Callable, Optional

from errors import SentinelError
from risk_engine import evaluate_cycle, summarize_breakdown
from thresholds import get_risk_weights
from velocity import VelocityTracker
from sentinel.config.settings import (
    RISK_PROFILE,
    LEDGER_OWNER,
    LEDGER_REPORTER,
    LEDGER_IDENTITY,
    GUARD_OWNER,
    LEDGER_CONTRACT_CHAIN,
    LEDGER_CONTRACT_ADDRESS,
    MAX_READ_WORKERS,
    PERSIST_TO_DB,
)
from sentinel.core import db
from sentinel.core.guard import CircuitBreaker
from sentinel.core.ledger import ReserveLedger
from sentinel.core.registry import ProtocolRegistry
from sentinel.fetchers.offchain import fetch_reference_tvls
from sentinel.fetchers.onchain import fetch_protocol_results, read_check_counter

logger = logging.getLogger(__name__)


def build_sentinel(now: Callable[[], int] = None):
    """
    Wire a ledger and guard with the configured identities.

    Returns:
        (ReserveLedger, CircuitBreaker)
    """
    guard = CircuitBreaker(owner=GUARD_OWNER, ledger_identity=LEDGER_IDENTITY, now=now)
    ledger = ReserveLedger(owner=LEDGER_OWNER, reporter=LEDGER_REPORTER,
                           identity=LEDGER_IDENTITY, guard=guard, now=now)
    return ledger, guard


def run_cycle(
    registry: ProtocolRegistry,
    ledger: ReserveLedger,
    reader,
    fetch_references: Optional[Callable[[Dict[str, str]], Dict[str, int]]] = None,
    profile: str = RISK_PROFILE,
    reporter: str = LEDGER_REPORTER,
    persist: bool = PERSIST_TO_DB,
    save_cycle: Optional[Callable] = None,
    now: Callable[[], int] = None,
) -> Dict[str, Any]:
    """
    Run one evaluation cycle.

    Args:
        registry: Monitored protocols
        ledger: Ledger to commit into
        reader: ChainReader used for every on-chain read
        fetch_references: {name: slug} -> {name: TVL}, defaults to DeFiLlama
        profile: Risk weighting profile ("single" or "multi")
        reporter: Identity presented to the ledger
        persist: Mirror the cycle into PostgreSQL
        save_cycle: History sink, defaults to sentinel.core.db.save_cycle
        now: Clock returning unix seconds

    Returns:
        Dict with dispatch results; cycle-aborting failures land in "errors"
    """
    now = now or (lambda: int(time.time()))
    fetch_references = fetch_references or fetch_reference_tvls
    result = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "profile": profile,
        "protocols_processed": 0,
        "advisory_check_number": None,
        "check_number": None,
        "report": None,
        "protocols": [],
        "velocity_alerts": [],
        "score_breakdown": None,
        "is_first_run": None,
        "guard_push": None,
        "persisted": False,
        "errors": [],
    }

    protocols = registry.get_all_protocols(enabled_only=True)
    if not protocols:
        result["errors"].append("No enabled protocols configured")
        return result

    result["advisory_check_number"] = read_check_counter(reader, LEDGER_CONTRACT_CHAIN, LEDGER_CONTRACT_ADDRESS)

    try:
        weights = get_risk_weights(profile)
        logger.info("Starting cycle over %d protocols (profile %s)", len(protocols), profile)

        results = fetch_protocol_results(reader, protocols, max_workers=MAX_READ_WORKERS)
        result["protocols_processed"] = len(results)

        references = fetch_references(registry.get_reference_slugs())

        tracker = VelocityTracker(ledger)
        velocity, is_first_run = tracker.track({r.name: r.utilization_bps for r in results})

        evaluation = evaluate_cycle(results, velocity, is_first_run, references, now(), weights)
        record = ledger.record_cycle(evaluation.report, evaluation.results, caller=reporter)
    except (SentinelError, ValueError) as e:
        logger.error("Cycle aborted: %s", e)
        result["errors"].append(f"Cycle aborted: {e}")
        return result

    report = record.report
    result["check_number"] = report.check_number
    result["report"] = report.to_dict()
    result["protocols"] = [r.to_dict() for r in record.protocol_results]
    result["velocity_alerts"] = [v.name for v in evaluation.velocity_alerts]
    result["score_breakdown"] = summarize_breakdown(evaluation)
    result["is_first_run"] = is_first_run
    result["guard_push"] = record.guard_push.to_dict()

    if result["advisory_check_number"] != report.check_number:
        logger.info(
            "Advisory check counter (%d) differs from ledger check #%d",
            result["advisory_check_number"], report.check_number,
        )

    if persist:
        try:
            (save_cycle or db.save_cycle)(report, record.protocol_results)
            result["persisted"] = True
        except Exception as e:
            logger.error("History sink failed for check #%d: %s", report.check_number, e)
            result["errors"].append(f"DB insert error: {str(e)}")

    return result
