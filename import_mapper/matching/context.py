"""Per-run matching context: cost budget, deadline and cancellation."""

import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from import_mapper.config import AppConfig, ThresholdConfig
from import_mapper.matching.exceptions import BudgetExceeded


@dataclass(frozen=True)
class Reservation:
    """Handle for budget held by one in-flight paid call."""

    reservation_id: int
    amount: float


class CostBudget:
    """Cost accounting for paid strategies within one run.

    Spent cost only ever grows. A call reserves its estimated cost before it
    is made; the reservation is then settled with the actual cost. A call the
    run stops waiting for is charged its reservation immediately through
    ``charge_outstanding``; settling it later only adds what the actual cost
    exceeds that charge by.
    """

    def __init__(self, ceiling: float, per_call_estimate: float = 0.0):
        if ceiling < 0 or per_call_estimate < 0:
            raise ValueError("Budget ceiling and per-call estimate must be non-negative")
        self.ceiling = ceiling
        self.per_call_estimate = per_call_estimate
        self._spent = 0.0
        self._open: Dict[int, float] = {}
        self._abandoned: Dict[int, float] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def spent(self) -> float:
        with self._lock:
            return self._spent

    @property
    def outstanding(self) -> float:
        """Budget held by calls that have not settled yet."""
        with self._lock:
            return sum(self._open.values())

    @property
    def remaining(self) -> float:
        with self._lock:
            return max(0.0, self.ceiling - self._spent - sum(self._open.values()))

    def can_afford(self, amount: Optional[float] = None) -> bool:
        amount = self.per_call_estimate if amount is None else amount
        with self._lock:
            return self.ceiling > 0 and self._spent + sum(self._open.values()) + amount <= self.ceiling

    def reserve(self, amount: Optional[float] = None) -> Reservation:
        """
        Reserve budget for a call.

        Args:
            amount: Estimated cost (defaults to the per-call estimate)

        Returns:
            Reservation to pass to settle()

        Raises:
            BudgetExceeded: If the reservation would exceed the ceiling
        """
        amount = self.per_call_estimate if amount is None else amount
        with self._lock:
            held = sum(self._open.values())
            if self.ceiling <= 0 or self._spent + held + amount > self.ceiling:
                raise BudgetExceeded(amount, self._spent, self.ceiling)
            reservation = Reservation(next(self._ids), amount)
            self._open[reservation.reservation_id] = amount
            return reservation

    def settle(self, reservation: Reservation, actual: Optional[float] = None) -> None:
        """Release a reservation and charge the actual cost (or the reservation if unknown).

        Raises:
            ValueError: If the reservation was already settled
        """
        charge = reservation.amount if actual is None else max(0.0, actual)
        with self._lock:
            if reservation.reservation_id in self._open:
                del self._open[reservation.reservation_id]
                self._spent += charge
            elif reservation.reservation_id in self._abandoned:
                already_charged = self._abandoned.pop(reservation.reservation_id)
                self._spent += max(0.0, charge - already_charged)
            else:
                raise ValueError(f"Reservation {reservation.reservation_id} was already settled")

    def charge_outstanding(self) -> float:
        """
        Charge every unsettled reservation at its reserved amount.

        Used when the run stops waiting for a call that was already sent.

        Returns:
            Total amount charged
        """
        with self._lock:
            charged = sum(self._open.values())
            self._spent += charged
            self._abandoned.update(self._open)
            self._open.clear()
            return charged


class Deadline:
    """Absolute point in (monotonic) time by which a run must finish."""

    def __init__(self, seconds: Optional[float] = None):
        self.started_at = time.monotonic()
        self.expires_at = None if seconds is None else self.started_at + max(0.0, seconds)

    def remaining(self) -> Optional[float]:
        """Seconds left, or None for no deadline."""
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def clamp(self, timeout: float) -> float:
        """Shorten a timeout so it does not run past the deadline."""
        remaining = self.remaining()
        return timeout if remaining is None else min(timeout, remaining)


@dataclass
class MatchContext:
    """Everything a strategy may need beyond the fields and the catalog."""

    run_id: str
    thresholds: ThresholdConfig
    budget: CostBudget
    deadline: Deadline
    cancel_event: threading.Event = field(default_factory=threading.Event)
    ambiguous_fields: Optional[List[str]] = None  # set before the external pass
    notes: List[str] = field(default_factory=list)

    @classmethod
    def from_config(
        cls,
        run_id: str,
        config: AppConfig,
        deadline: Optional[Deadline] = None,
        budget: Optional[CostBudget] = None,
    ) -> "MatchContext":
        return cls(
            run_id=run_id,
            thresholds=config.thresholds,
            budget=budget or CostBudget(
                ceiling=config.budget.cost_ceiling if config.budget.external_enabled else 0.0,
                per_call_estimate=config.budget.per_call_cost_estimate,
            ),
            deadline=deadline or Deadline(config.timeouts.default_deadline_seconds),
        )

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def note(self, message: str) -> None:
        self.notes.append(message)
