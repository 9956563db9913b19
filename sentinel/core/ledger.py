"""
Reserve Ledger - append-only record of every evaluation cycle.

Holds:
- HealthReports keyed by check number (monotonic from 1)
- The per-protocol rows written with each check
- The latest row per protocol, which is the velocity baseline
- Running statistics (per-severity counts, anomalies, current/peak risk)

Every write validates fully before mutating anything. After a commit the
ledger pushes severity and per-protocol solvency into an attached guard;
that push is best-effort and its outcome is returned, never raised.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace, asdict
from typing import Dict, Any, List, Optional, Callable, Sequence

from errors import MalformedBatch
from protocol_adapters import ProtocolResult
from reserve_math import solvency_bps
from risk_engine import HealthReport, Severity
from thresholds import VELOCITY_ALERT_BPS
from sentinel.core.access import require_caller
from sentinel.core.registry import OrderedRegistry

logger = logging.getLogger(__name__)

MAX_RECENT_REPORTS = 100

SIMULATED_PROTOCOL = "Simulated Market"
SIMULATED_CLAIMED = 100_000_000

# reserves_pct, risk_score, severity, anomaly
SIMULATED_SCENARIOS = {
    "healthy": (95, 15, Severity.HEALTHY, False),
    "warning": (85, 45, Severity.WARNING, True),
    "critical": (75, 85, Severity.CRITICAL, True),
}


@dataclass
class LedgerStatistics:
    total_checks: int = 0
    total_warnings: int = 0
    total_critical: int = 0
    total_anomalies: int = 0
    current_risk: int = 0
    peak_risk: int = 0
    peak_risk_check: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VelocityStats:
    total_alerts: int = 0
    peak_velocity_bps: int = 0
    peak_protocol: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProtocolSnapshot:
    """Latest recorded row for one protocol."""
    result: ProtocolResult
    check_number: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        data = self.result.to_dict()
        data["check_number"] = self.check_number
        data["timestamp"] = self.timestamp
        return data


@dataclass
class GuardPush:
    """Outcome of the post-commit push into the guard. Every failed update is listed in errors."""
    attempted: bool = False
    ok: bool = True
    updates: int = 0
    pause_events: int = 0
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def fail(self, message: str) -> None:
        self.ok = False
        self.errors.append(message)
        self.error = "; ".join(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CycleRecord:
    report: HealthReport
    protocol_results: List[ProtocolResult] = field(default_factory=list)
    guard_push: GuardPush = field(default_factory=GuardPush)


class ReserveLedger:
    """
    Append-only ledger of health reports and per-protocol results.

    Args:
        owner: Identity allowed to administer the ledger
        reporter: Identity allowed to record cycles
        identity: The ledger's own identity, presented to the guard
        guard: Optional CircuitBreaker to push updates into
        now: Clock returning unix seconds
    """

    def __init__(self, owner: str, reporter: Optional[str] = None, identity: str = "sentinel-ledger",
                 guard=None, now: Callable[[], int] = None):
        self.owner = owner
        self.reporter = reporter
        self.identity = identity
        self.guard = guard
        self._now = now or (lambda: int(time.time()))
        self._lock = threading.RLock()

        self._reports: List[HealthReport] = []
        self._protocol_rows: Dict[int, List[ProtocolResult]] = {}
        self._latest = OrderedRegistry()
        self._chains = OrderedRegistry()
        self._stats = LedgerStatistics()
        self._velocity = VelocityStats()

    # =========================================================================
    # ADMIN
    # =========================================================================

    def set_reporter(self, reporter: str, caller: str) -> None:
        require_caller([self.owner], "set_reporter", caller)
        with self._lock:
            self.reporter = reporter
        logger.info("Ledger reporter set to %s", reporter)

    def set_guard(self, guard, caller: str) -> None:
        """Attach a guard; updates are pushed to it after every commit."""
        require_caller([self.owner], "set_guard", caller)
        with self._lock:
            self.guard = guard

    # =========================================================================
    # WRITES
    # =========================================================================

    def record_cycle(self, report: HealthReport, protocol_results: List[ProtocolResult],
                     caller: str) -> CycleRecord:
        """
        Append one cycle: the aggregate report plus its per-protocol rows.

        The report's check_number is assigned here (last + 1); a draft may
        carry 0 or the expected number, anything else is rejected.

        Raises:
            Unauthorized: caller is not the reporter
            MalformedBatch: inconsistent report or rows (no state change)
        """
        require_caller([self.reporter], "record_cycle", caller)

        with self._lock:
            check_number = len(self._reports) + 1
            self._validate_cycle(report, protocol_results, check_number)
            committed = replace(report, check_number=check_number)
            self._commit(committed, list(protocol_results))

        logger.info(
            "Check #%d recorded: %s, risk %d, %d protocol rows",
            check_number, committed.severity.name, committed.risk_score, len(protocol_results),
        )
        push = self._push_to_guard(committed, protocol_results)
        return CycleRecord(report=committed, protocol_results=list(protocol_results), guard_push=push)

    def submit_protocol_batch(
        self,
        check_number: int,
        names: Sequence[str],
        types: Sequence[str],
        chains: Sequence[str],
        claimed: Sequence[int],
        actual: Sequence[int],
        solvency: Sequence[int],
        utilization: Sequence[int],
        velocity_bps: Sequence[int],
        velocity_negative: Sequence[bool],
        caller: str,
    ) -> CycleRecord:
        """
        Attach per-protocol rows to an already recorded check.

        This is the parallel-array form used by external reporters: the
        i-th element of every list describes the i-th protocol. The rows
        replace any rows previously stored for that check. A row only
        becomes the protocol's latest row, and only reaches the guard, when
        no later check has recorded that protocol.

        Raises:
            Unauthorized: caller is not the reporter
            MalformedBatch: unequal lengths, unknown check, duplicate names
        """
        require_caller([self.reporter], "submit_protocol_batch", caller)

        columns = [names, types, chains, claimed, actual, solvency, utilization,
                   velocity_bps, velocity_negative]
        lengths = {len(column) for column in columns}
        if len(lengths) != 1:
            raise MalformedBatch(f"Batch arrays have unequal lengths: {[len(c) for c in columns]}")

        rows = [
            ProtocolResult(
                name=names[i],
                protocol_type=types[i],
                chain=chains[i],
                claimed=int(claimed[i]),
                actual=int(actual[i]),
                solvency_bps=int(solvency[i]),
                utilization_bps=int(utilization[i]),
                velocity_bps=int(velocity_bps[i]),
                velocity_negative=bool(velocity_negative[i]),
            )
            for i in range(len(names))
        ]

        with self._lock:
            if not 1 <= check_number <= len(self._reports):
                raise MalformedBatch(f"Unknown check number: {check_number}")
            self._validate_rows(rows)

            report = self._reports[check_number - 1]
            self._protocol_rows[check_number] = rows
            current = self._apply_rows(rows, check_number, report.timestamp)
            self._recount_velocity()

        logger.info("Protocol batch of %d rows attached to check #%d", len(rows), check_number)
        if len(current) < len(rows):
            logger.info(
                "%d rows of check #%d are older than the latest recorded rows and were not pushed",
                len(rows) - len(current), check_number,
            )
        push = self._push_protocols(current, check_number)
        return CycleRecord(report=report, protocol_results=rows, guard_push=push)

    def simulate_healthy(self, caller: str) -> CycleRecord:
        return self._simulate("healthy", caller)

    def simulate_warning(self, caller: str) -> CycleRecord:
        return self._simulate("warning", caller)

    def simulate_critical(self, caller: str) -> CycleRecord:
        return self._simulate("critical", caller)

    def _simulate(self, scenario: str, caller: str) -> CycleRecord:
        """Record a synthetic single-protocol cycle to exercise the guard. Owner only."""
        require_caller([self.owner], f"simulate_{scenario}", caller)
        reserves_pct, risk_score, severity, anomaly = SIMULATED_SCENARIOS[scenario]

        actual = SIMULATED_CLAIMED * reserves_pct // 100
        ratio = solvency_bps(actual, SIMULATED_CLAIMED)
        row = ProtocolResult(
            name=SIMULATED_PROTOCOL,
            protocol_type="aave",
            chain="ethereum",
            claimed=SIMULATED_CLAIMED,
            actual=actual,
            solvency_bps=ratio,
            utilization_bps=0,
        )
        report = HealthReport(
            total_actual=actual,
            total_claimed=SIMULATED_CLAIMED,
            global_ratio_bps=ratio,
            worst_solvency_bps=ratio,
            worst_protocol=SIMULATED_PROTOCOL,
            risk_score=risk_score,
            severity=severity,
            anomaly_detected=anomaly,
            timestamp=self._now(),
        )

        with self._lock:
            committed = replace(report, check_number=len(self._reports) + 1)
            self._commit(committed, [row])

        logger.warning("Simulated %s cycle recorded as check #%d", scenario, committed.check_number)
        push = self._push_to_guard(committed, [row])
        return CycleRecord(report=committed, protocol_results=[row], guard_push=push)

    def restore(self, reports: List[HealthReport], protocol_rows: Dict[int, List[ProtocolResult]]) -> int:
        """
        Rebuild an empty ledger from persisted history.

        Reports must be consecutive from check #1. The guard is not
        touched; call sync_guard() afterwards to replay the latest state.

        Returns:
            Number of reports restored
        """
        ordered = sorted(reports, key=lambda r: r.check_number)
        with self._lock:
            if self._reports:
                raise MalformedBatch("restore() requires an empty ledger")
            for expected, report in enumerate(ordered, start=1):
                if report.check_number != expected:
                    raise MalformedBatch(
                        f"History is not consecutive: expected check #{expected}, got #{report.check_number}"
                    )
            for report in ordered:
                self._commit(report, list(protocol_rows.get(report.check_number, [])))

        logger.info("Ledger restored with %d reports", len(ordered))
        return len(ordered)

    def sync_guard(self) -> GuardPush:
        """Replay the latest report and protocol rows into the guard."""
        with self._lock:
            if not self._reports:
                return GuardPush()
            report = self._reports[-1]
            rows = [s.result for s in self._latest.values()]
        return self._push_to_guard(report, rows)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _validate_cycle(self, report: HealthReport, rows: List[ProtocolResult], check_number: int) -> None:
        if not isinstance(report, HealthReport):
            raise MalformedBatch("record_cycle expects a HealthReport")
        if report.check_number not in (0, check_number):
            raise MalformedBatch(
                f"Report carries check #{report.check_number}, ledger expects #{check_number}"
            )
        if not 0 <= report.risk_score <= 100:
            raise MalformedBatch(f"Risk score out of range: {report.risk_score}")
        self._validate_rows(rows)

    @staticmethod
    def _validate_rows(rows: List[ProtocolResult]) -> None:
        seen = set()
        for row in rows:
            if not row.name:
                raise MalformedBatch("Protocol row without a name")
            if row.name in seen:
                raise MalformedBatch(f"Duplicate protocol in batch: {row.name}")
            seen.add(row.name)

    def _commit(self, report: HealthReport, rows: List[ProtocolResult]) -> None:
        """Append a validated report. Caller holds the lock."""
        self._reports.append(report)
        self._protocol_rows[report.check_number] = rows

        stats = self._stats
        stats.total_checks += 1
        if report.severity == Severity.WARNING:
            stats.total_warnings += 1
        elif report.severity == Severity.CRITICAL:
            stats.total_critical += 1
        if report.anomaly_detected:
            stats.total_anomalies += 1
        stats.current_risk = report.risk_score
        if report.risk_score > stats.peak_risk:
            stats.peak_risk = report.risk_score
            stats.peak_risk_check = report.check_number

        self._apply_rows(rows, report.check_number, report.timestamp)
        self._count_velocity(rows)

    def _apply_rows(self, rows: List[ProtocolResult], check_number: int, timestamp: int) -> List[ProtocolResult]:
        """
        Store rows as the latest per protocol unless a later check already did.

        Returns:
            The rows that became the latest for their protocol
        """
        current = []
        for row in rows:
            self._chains.add_if_absent(row.chain, True)
            existing = self._latest.get(row.name)
            if existing is not None and existing.check_number > check_number:
                continue
            self._latest.put(row.name, ProtocolSnapshot(row, check_number, timestamp))
            current.append(row)
        return current

    def _count_velocity(self, rows: List[ProtocolResult]) -> None:
        for row in rows:
            if row.velocity_bps >= VELOCITY_ALERT_BPS:
                self._velocity.total_alerts += 1
            if row.velocity_bps > self._velocity.peak_velocity_bps:
                self._velocity.peak_velocity_bps = row.velocity_bps
                self._velocity.peak_protocol = row.name

    def _recount_velocity(self) -> None:
        """Rebuild velocity stats from the stored rows after a check's rows were replaced."""
        self._velocity = VelocityStats()
        for check_number in sorted(self._protocol_rows):
            self._count_velocity(self._protocol_rows[check_number])

    def _push_to_guard(self, report: HealthReport, rows: List[ProtocolResult]) -> GuardPush:
        if self.guard is None:
            return GuardPush()

        push = GuardPush(attempted=True)
        try:
            if self.guard.update_global_status(report.severity, report.check_number, caller=self.identity):
                push.pause_events += 1
            push.updates += 1
        except Exception as e:
            push.fail(f"global: {e}")
            logger.warning("Guard global update failed for check #%d: %s", report.check_number, e)

        protocols = self._push_protocols(rows, report.check_number)
        push.updates += protocols.updates
        push.pause_events += protocols.pause_events
        for error in protocols.errors:
            push.fail(error)
        return push

    def _push_protocols(self, rows: List[ProtocolResult], check_number: int) -> GuardPush:
        if self.guard is None:
            return GuardPush()

        push = GuardPush(attempted=True)
        for row in rows:
            try:
                if self.guard.update_protocol_status(row.name, row.solvency_bps, check_number,
                                                     caller=self.identity):
                    push.pause_events += 1
                push.updates += 1
            except Exception as e:
                push.fail(f"{row.name}: {e}")
                logger.warning("Guard update failed for %s at check #%d: %s", row.name, check_number, e)
        return push

    # =========================================================================
    # QUERIES
    # =========================================================================

    def total_checks(self) -> int:
        return len(self._reports)

    def has_history(self) -> bool:
        return bool(self._reports)

    def has_record(self, name: str) -> bool:
        return name in self._latest

    def get_previous(self, name: str) -> int:
        """Utilization recorded for a protocol in its latest row, 0 if never recorded."""
        snapshot = self._latest.get(name)
        return snapshot.result.utilization_bps if snapshot else 0

    def get_latest_report(self) -> Optional[HealthReport]:
        with self._lock:
            return self._reports[-1] if self._reports else None

    def get_report(self, check_number: int) -> Optional[HealthReport]:
        with self._lock:
            if 1 <= check_number <= len(self._reports):
                return self._reports[check_number - 1]
            return None

    def get_recent_reports(self, count: int = 10) -> List[HealthReport]:
        """Up to ``count`` most recent reports, oldest first."""
        count = max(0, min(count, MAX_RECENT_REPORTS))
        with self._lock:
            return list(self._reports[-count:]) if count else []

    def get_protocol_results(self, check_number: int) -> List[ProtocolResult]:
        with self._lock:
            return list(self._protocol_rows.get(check_number, []))

    def get_statistics(self) -> LedgerStatistics:
        with self._lock:
            return replace(self._stats)

    def get_velocity_stats(self) -> VelocityStats:
        with self._lock:
            return replace(self._velocity)

    def get_protocol(self, name: str) -> Optional[ProtocolSnapshot]:
        return self._latest.get(name)

    def get_all_latest_protocols(self) -> List[ProtocolSnapshot]:
        """Latest row of every protocol ever recorded, in first-seen order."""
        with self._lock:
            return self._latest.values()

    def tracked_chains(self) -> List[str]:
        return self._chains.keys()

    def get_chain_rollup(self, chain: str) -> Dict[str, Any]:
        """
        Summarize the latest rows on one chain.

        Liquid staking rows count toward protocol_count and worst solvency
        but not the USD sums.
        """
        with self._lock:
            rows = [s.result for s in self._latest.values() if s.result.chain == chain]

        usd_rows = [r for r in rows if r.counts_toward_aggregate]
        total_claimed = sum(r.claimed for r in usd_rows)
        total_actual = sum(r.actual for r in usd_rows)
        worst = min(rows, key=lambda r: r.solvency_bps) if rows else None

        return {
            "chain": chain,
            "protocol_count": len(rows),
            "total_claimed": total_claimed,
            "total_actual": total_actual,
            "ratio_bps": solvency_bps(total_actual, total_claimed),
            "worst_solvency_bps": worst.solvency_bps if worst else 10_000,
            "worst_protocol": worst.name if worst else "",
        }

    def get_chain_rollups(self) -> List[Dict[str, Any]]:
        return [self.get_chain_rollup(chain) for chain in self.tracked_chains()]

    def get_dashboard_data(self) -> Dict[str, Any]:
        """Latest report, statistics and protocol rows in one read."""
        with self._lock:
            latest = self.get_latest_report()
            return {
                "latest_report": latest.to_dict() if latest else None,
                "statistics": self._stats.to_dict(),
                "velocity": self._velocity.to_dict(),
                "protocols": [s.to_dict() for s in self._latest.values()],
                "chains": self.get_chain_rollups(),
            }
