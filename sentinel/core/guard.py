"""
Circuit Breaker - pause state consulted by third parties.

State:
- Global pause, driven by the severity the ledger reports each cycle
- Per-protocol status (paused below 90% solvency, warning below 95%)
- Opt-in consumer registrations with a watch list of protocol names

Consumers that never registered are always safe. A registered consumer
is unsafe while the global pause is on or while any protocol it watches
is paused.

Only the linked ledger identity may push status updates; only the owner
may link a ledger or manually unpause.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional, Callable

from errors import RegistrationError
from risk_engine import Severity
from thresholds import PAUSE_THRESHOLD_BPS, SOLVENCY_WARNING_BPS, MAX_WATCHED_PROTOCOLS
from sentinel.core.access import require_caller, normalize_identity
from sentinel.core.registry import OrderedRegistry

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"
PROTOCOL_SCOPE = "protocol"


@dataclass
class ProtocolStatus:
    paused: bool = False
    warning: bool = False
    solvency_bps: int = 0
    last_check_number: int = 0
    last_updated: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Registration:
    active: bool
    watched_protocols: List[str] = field(default_factory=list)
    registered_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "watched_protocols": list(self.watched_protocols),
            "registered_at": self.registered_at,
        }


@dataclass(frozen=True)
class PauseEvent:
    """Emitted on every transition into paused."""
    event_number: int
    scope: str
    protocol: str
    affected_registrants: int
    check_number: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CircuitBreaker:
    """Global and per-protocol pause flags plus the consumer registry."""

    def __init__(self, owner: str, ledger_identity: Optional[str] = None,
                 now: Callable[[], int] = None):
        self.owner = owner
        self.ledger_identity = ledger_identity
        self._now = now or (lambda: int(time.time()))
        self._lock = threading.RLock()

        self._global_paused = False
        self._current_severity = Severity.HEALTHY
        self._last_check_number = 0
        self._last_update = 0

        self._protocols = OrderedRegistry()
        self._registrations = OrderedRegistry()
        self._pause_events: List[PauseEvent] = []

    # =========================================================================
    # ADMIN
    # =========================================================================

    def set_ledger(self, ledger_identity: str, caller: str) -> None:
        """Link the ledger identity allowed to push updates. Owner only."""
        require_caller([self.owner], "set_ledger", caller)
        with self._lock:
            self.ledger_identity = ledger_identity
        logger.info("Guard linked to ledger %s", ledger_identity)

    def manual_unpause(self, protocol: str, caller: str) -> None:
        """
        Clear a pause. Owner only.

        An empty name clears the global pause; otherwise that protocol's
        pause is cleared. Either way the next cycle's update decides
        whether to pause again.

        Raises:
            Unauthorized: caller is not the owner
            ValueError: the protocol has never been reported
        """
        require_caller([self.owner], "manual_unpause", caller)

        with self._lock:
            if not protocol:
                self._global_paused = False
                logger.warning("Global pause manually cleared by %s", caller)
                return

            status = self._protocols.get(protocol)
            if status is None:
                raise ValueError(f"Unknown protocol: {protocol}")
            status.paused = False
            logger.warning("Pause on %s manually cleared by %s", protocol, caller)

    # =========================================================================
    # LEDGER UPDATES
    # =========================================================================

    def update_global_status(self, severity: int, check_number: int, caller: str) -> Optional[PauseEvent]:
        """
        Apply the severity of a committed cycle.

        CRITICAL pauses globally; any lower severity lifts the pause.

        Returns:
            PauseEvent if this update moved the guard into the paused state
        """
        require_caller([self.ledger_identity], "update_global_status", caller)
        severity = Severity(severity)

        with self._lock:
            was_paused = self._global_paused
            self._global_paused = severity == Severity.CRITICAL
            self._current_severity = severity
            self._last_check_number = check_number
            self._last_update = self._now()

            if self._global_paused and not was_paused:
                affected = self._count_active(lambda r: True)
                return self._emit(GLOBAL_SCOPE, "", affected, check_number)
        return None

    def update_protocol_status(self, protocol: str, solvency_bps: int, check_number: int,
                               caller: str) -> Optional[PauseEvent]:
        """
        Apply one protocol's solvency from a committed cycle.

        Returns:
            PauseEvent if the protocol moved into the paused state
        """
        require_caller([self.ledger_identity], "update_protocol_status", caller)

        with self._lock:
            status = self._protocols.get(protocol)
            if status is None:
                status = ProtocolStatus()
                self._protocols.add_if_absent(protocol, status)

            was_paused = status.paused
            status.paused = solvency_bps < PAUSE_THRESHOLD_BPS
            status.warning = solvency_bps < SOLVENCY_WARNING_BPS
            status.solvency_bps = solvency_bps
            status.last_check_number = check_number
            status.last_updated = self._now()
            self._last_update = status.last_updated

            if status.paused and not was_paused:
                affected = self._count_active(lambda r: protocol in r.watched_protocols)
                return self._emit(PROTOCOL_SCOPE, protocol, affected, check_number)
        return None

    def _count_active(self, predicate) -> int:
        return sum(1 for r in self._registrations.values() if r.active and predicate(r))

    def _emit(self, scope: str, protocol: str, affected: int, check_number: int) -> PauseEvent:
        event = PauseEvent(
            event_number=len(self._pause_events) + 1,
            scope=scope,
            protocol=protocol,
            affected_registrants=affected,
            check_number=check_number,
            timestamp=self._now(),
        )
        self._pause_events.append(event)
        logger.warning(
            "PAUSE #%d (%s%s) at check %d, %d registrant(s) affected",
            event.event_number, scope, f": {protocol}" if protocol else "", check_number, affected,
        )
        return event

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register(self, watch_list: List[str], caller: str) -> Registration:
        """
        Register (or re-register) a consumer with a watch list.

        The new list replaces any previous one. Duplicate names collapse.

        Raises:
            RegistrationError: more than MAX_WATCHED_PROTOCOLS names, or no caller
        """
        consumer = normalize_identity(caller)
        if not consumer:
            raise RegistrationError("A consumer identity is required to register")

        watched = list(dict.fromkeys(watch_list or []))
        if len(watched) > MAX_WATCHED_PROTOCOLS:
            raise RegistrationError(
                f"Watch list has {len(watched)} protocols, maximum is {MAX_WATCHED_PROTOCOLS}"
            )

        with self._lock:
            existing = self._registrations.get(consumer)
            registration = Registration(
                active=True,
                watched_protocols=watched,
                registered_at=existing.registered_at if existing else self._now(),
            )
            self._registrations.put(consumer, registration)
        logger.info("Consumer %s registered watching %d protocol(s)", consumer, len(watched))
        return registration

    def deregister(self, caller: str) -> None:
        """Mark the caller's registration inactive. Unknown callers are ignored."""
        consumer = normalize_identity(caller)
        with self._lock:
            registration = self._registrations.get(consumer)
            if registration is not None:
                registration.active = False

    # =========================================================================
    # QUERIES
    # =========================================================================

    def is_safe(self, consumer: str) -> bool:
        """True unless the consumer is registered and something it watches is paused."""
        with self._lock:
            registration = self._registrations.get(normalize_identity(consumer))
            if registration is None or not registration.active:
                return True
            if self._global_paused:
                return False
            for name in registration.watched_protocols:
                status = self._protocols.get(name)
                if status is not None and status.paused:
                    return False
            return True

    def is_globally_paused(self) -> bool:
        return self._global_paused

    def is_protocol_safe(self, protocol: str) -> bool:
        """False while the protocol or the whole system is paused."""
        with self._lock:
            if self._global_paused:
                return False
            status = self._protocols.get(protocol)
            return status is None or not status.paused

    def get_protocol_status(self, protocol: str) -> Optional[ProtocolStatus]:
        return self._protocols.get(protocol)

    def get_all_protocol_statuses(self) -> Dict[str, ProtocolStatus]:
        return dict(self._protocols.items())

    def get_registration(self, consumer: str) -> Optional[Registration]:
        return self._registrations.get(normalize_identity(consumer))

    def total_registered(self) -> int:
        """Number of currently active registrations."""
        with self._lock:
            return self._count_active(lambda r: True)

    @property
    def pause_events(self) -> List[PauseEvent]:
        return list(self._pause_events)

    def get_guard_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "paused": self._global_paused,
                "severity": self._current_severity.name,
                "last_check_number": self._last_check_number,
                "registered": self._count_active(lambda r: True),
                "pause_events": len(self._pause_events),
                "last_update": self._last_update,
            }
