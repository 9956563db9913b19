"""
Cycle Lambda Handler.

Runs one reserve evaluation cycle. Triggered by a scheduled rule; the
ledger and guard live for the lifetime of the warm container and are
rehydrated from PostgreSQL on a cold start when persistence is enabled.
"""

import logging
from datetime import datetime, timezone

from sentinel.config.settings import PROTOCOLS_DIR, PERSIST_TO_DB, RISK_PROFILE
from sentinel.core import db
from sentinel.core.dispatcher import build_sentinel, run_cycle
from sentinel.core.registry import load_all_configs_from_directory
from sentinel.fetchers.onchain import ChainReader

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_state = {}


def _get_state():
    """Build the deployment once per container."""
    if not _state:
        ledger, guard = build_sentinel()
        if PERSIST_TO_DB:
            db.create_tables()
            restored = db.restore_ledger(ledger)
            if restored:
                ledger.sync_guard()
        _state.update({
            "registry": load_all_configs_from_directory(PROTOCOLS_DIR),
            "ledger": ledger,
            "guard": guard,
            "reader": ChainReader(),
        })
    return _state


def handler(event, context):
    """
    AWS Lambda handler for one evaluation cycle.

    Args:
        event: Lambda event; an optional "profile" key overrides the risk profile
        context: Lambda context

    Returns:
        Dict with execution results
    """
    start_time = datetime.now(timezone.utc)
    event = event or {}

    response = {
        "statusCode": 200,
        "body": {
            "handler": "cycle",
            "timestamp": start_time.isoformat(),
            "status": "success",
            "dispatch_result": None,
            "guard_status": None,
            "error": None,
        },
    }

    try:
        state = _get_state()
        dispatch_result = run_cycle(
            state["registry"],
            state["ledger"],
            state["reader"],
            profile=event.get("profile", RISK_PROFILE),
        )
        response["body"]["dispatch_result"] = dispatch_result
        response["body"]["guard_status"] = state["guard"].get_guard_status()

        if dispatch_result["check_number"] is None:
            response["statusCode"] = 500
            response["body"]["status"] = "error"
            response["body"]["error"] = "; ".join(dispatch_result["errors"])
        elif dispatch_result["errors"]:
            response["body"]["status"] = "partial"
            logger.warning("Cycle completed with errors: %s", dispatch_result["errors"])
        else:
            report = dispatch_result["report"]
            logger.info("Check #%d: %s (risk %d)", report["check_number"], report["severity"], report["risk_score"])

    except Exception as e:
        logger.exception("Cycle handler failed")
        response["statusCode"] = 500
        response["body"]["status"] = "error"
        response["body"]["error"] = str(e)

    duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    response["body"]["duration_ms"] = duration_ms
    logger.info("Duration: %.0fms", duration_ms)

    return response
