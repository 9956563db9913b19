"""
Database connection and history sink for the reserve sentinel.

Every committed cycle is mirrored into PostgreSQL: one row in
health_reports and one row per protocol in protocol_results, written in a
single transaction. A fresh ledger can be rehydrated from these tables.
"""

import json
import logging
from contextlib import contextmanager
from typing import List, Dict, Any

import psycopg2
from psycopg2.extras import RealDictCursor, execute_values

from protocol_adapters import ProtocolResult
from risk_engine import HealthReport, Severity
from sentinel.config.settings import DB_CONFIG, SCHEMA_NAME, TABLE_PREFIX, RESTORE_HISTORY_LIMIT

logger = logging.getLogger(__name__)


def table_name(name: str) -> str:
    """Get full table name with schema and prefix."""
    return f"{SCHEMA_NAME}.{TABLE_PREFIX}{name}"


@contextmanager
def get_connection():
    """
    Get a database connection as a context manager.

    Usage:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
    """
    conn = None
    try:
        conn = psycopg2.connect(**DB_CONFIG)
        yield conn
    finally:
        if conn:
            conn.close()


def create_tables() -> None:
    """Create the history tables if they do not exist."""
    statements = [
        f"""
        CREATE TABLE IF NOT EXISTS {table_name('health_reports')} (
            check_number INTEGER PRIMARY KEY,
            total_actual NUMERIC(78, 0) NOT NULL,
            total_claimed NUMERIC(78, 0) NOT NULL,
            global_ratio_bps INTEGER NOT NULL,
            worst_solvency_bps INTEGER NOT NULL,
            worst_protocol TEXT NOT NULL,
            risk_score SMALLINT NOT NULL,
            severity SMALLINT NOT NULL,
            anomaly_detected BOOLEAN NOT NULL,
            report_timestamp BIGINT NOT NULL,
            recorded_at TIMESTAMPTZ DEFAULT NOW()
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS {table_name('protocol_results')} (
            check_number INTEGER NOT NULL REFERENCES {table_name('health_reports')} (check_number),
            name TEXT NOT NULL,
            protocol_type TEXT NOT NULL,
            chain TEXT NOT NULL,
            claimed NUMERIC(78, 0) NOT NULL,
            actual NUMERIC(78, 0) NOT NULL,
            solvency_bps INTEGER NOT NULL,
            utilization_bps INTEGER NOT NULL,
            velocity_bps INTEGER NOT NULL,
            velocity_negative BOOLEAN NOT NULL,
            reference_tvl NUMERIC(78, 0) NOT NULL,
            cross_ref_risk SMALLINT NOT NULL,
            details JSONB,
            PRIMARY KEY (check_number, name)
        )
        """,
    ]

    with get_connection() as conn:
        with conn.cursor() as cur:
            for statement in statements:
                cur.execute(statement)
            conn.commit()


def save_cycle(report: HealthReport, results: List[ProtocolResult]) -> int:
    """
    Persist one committed cycle in a single transaction.

    Args:
        report: Committed HealthReport (check_number assigned)
        results: Per-protocol rows of that check

    Returns:
        Number of protocol rows inserted
    """
    report_query = f"""
        INSERT INTO {table_name('health_reports')}
        (check_number, total_actual, total_claimed, global_ratio_bps, worst_solvency_bps,
         worst_protocol, risk_score, severity, anomaly_detected, report_timestamp)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    """
    rows_query = f"""
        INSERT INTO {table_name('protocol_results')}
        (check_number, name, protocol_type, chain, claimed, actual, solvency_bps,
         utilization_bps, velocity_bps, velocity_negative, reference_tvl, cross_ref_risk, details)
        VALUES %s
    """

    data = [
        (
            report.check_number,
            r.name,
            r.protocol_type,
            r.chain,
            r.claimed,
            r.actual,
            r.solvency_bps,
            r.utilization_bps,
            r.velocity_bps,
            r.velocity_negative,
            r.reference_tvl,
            r.cross_ref_risk,
            json.dumps(r.details) if r.details else None,
        )
        for r in results
    ]

    with get_connection() as conn:
        try:
            with conn.cursor() as cur:
                cur.execute(report_query, (
                    report.check_number,
                    report.total_actual,
                    report.total_claimed,
                    report.global_ratio_bps,
                    report.worst_solvency_bps,
                    report.worst_protocol,
                    report.risk_score,
                    int(report.severity),
                    report.anomaly_detected,
                    report.timestamp,
                ))
                if data:
                    execute_values(cur, rows_query, data)
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise

    logger.info("Check #%d persisted with %d protocol rows", report.check_number, len(data))
    return len(data)


def _report_from_row(row: Dict[str, Any]) -> HealthReport:
    return HealthReport(
        total_actual=int(row["total_actual"]),
        total_claimed=int(row["total_claimed"]),
        global_ratio_bps=row["global_ratio_bps"],
        worst_solvency_bps=row["worst_solvency_bps"],
        worst_protocol=row["worst_protocol"],
        risk_score=row["risk_score"],
        severity=Severity(row["severity"]),
        anomaly_detected=row["anomaly_detected"],
        timestamp=row["report_timestamp"],
        check_number=row["check_number"],
    )


def _result_from_row(row: Dict[str, Any]) -> ProtocolResult:
    details = row.get("details") or {}
    if isinstance(details, str):
        details = json.loads(details)
    return ProtocolResult(
        name=row["name"],
        protocol_type=row["protocol_type"],
        chain=row["chain"],
        claimed=int(row["claimed"]),
        actual=int(row["actual"]),
        solvency_bps=row["solvency_bps"],
        utilization_bps=row["utilization_bps"],
        velocity_bps=row["velocity_bps"],
        velocity_negative=row["velocity_negative"],
        reference_tvl=int(row["reference_tvl"]),
        cross_ref_risk=row["cross_ref_risk"],
        details=details,
    )


def load_reports() -> List[HealthReport]:
    """All persisted reports, ordered by check number."""
    query = f"SELECT * FROM {table_name('health_reports')} ORDER BY check_number"
    with get_connection() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query)
            return [_report_from_row(dict(row)) for row in cur.fetchall()]


def load_protocol_results(since_check: int = 1) -> Dict[int, List[ProtocolResult]]:
    """
    Protocol rows grouped by check number.

    Args:
        since_check: Lowest check number to load
    """
    query = f"""
        SELECT * FROM {table_name('protocol_results')}
        WHERE check_number >= %s
        ORDER BY check_number, name
    """
    grouped: Dict[int, List[ProtocolResult]] = {}
    with get_connection() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, (since_check,))
            for row in cur.fetchall():
                row = dict(row)
                grouped.setdefault(row["check_number"], []).append(_result_from_row(row))
    return grouped


def restore_ledger(ledger, limit: int = RESTORE_HISTORY_LIMIT) -> int:
    """
    Rehydrate an empty ledger from the database.

    Every report is reloaded so statistics stay exact; protocol rows are
    reloaded only for the last ``limit`` checks, which is enough to seed
    the velocity baseline.

    Returns:
        Number of reports restored
    """
    reports = load_reports()
    if not reports:
        return 0
    since = max(1, reports[-1].check_number - limit + 1)
    return ledger.restore(reports, load_protocol_results(since_check=since))


def test_connection() -> bool:
    """Check that the database is reachable."""
    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                return cur.fetchone()[0] == 1
    except psycopg2.Error as e:
        logger.error("Database connection failed: %s", e)
        return False
