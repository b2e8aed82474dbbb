"""
Round state machine for the physical count audit.

A reference moves through five counting rounds:

    AwaitingParallelCounts      C1 and C2 counted independently
    AwaitingSequentialCount(3)  tie-break round
    AwaitingSequentialCount(4)  last automatic round
    Critical                    C5, entered by a superadmin
    Audited / ForcedClosed      terminal

Each state evaluates an immutable snapshot of the reference and returns a
Decision. Nothing here touches the database; RoundReconciliationService
loads the snapshot and applies the decision inside one transaction.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Tuple
from uuid import UUID

from app.core.quantities import format_quantity
from app.models.inventory_audit import ReferenceStatus


class ReconcileAction(str, Enum):
    """Outcome of a reconciliation attempt."""
    CLOSED = "closed"
    NEXT_ROUND = "next_round"
    ESCALATE_TO_SUPERADMIN = "escalate_to_superadmin"
    FORCED_CLOSE_SUPERADMIN = "forced_close_superadmin"
    WAITING_FOR_COUNTS = "waiting_for_counts"
    ERROR = "error"


class CloseReason(str, Enum):
    """Why a reference closed automatically."""
    MATCHES_ERP = "matches_erp"
    PHYSICAL_CONSISTENCY = "physical_consistency"


# ============================================================================
# SNAPSHOTS
# ============================================================================

@dataclass(frozen=True)
class LocationSnapshot:
    location_id: UUID
    counts: Mapping[int, Decimal] = field(default_factory=dict)
    discovered_at_round: Optional[int] = None
    validated_at_round: Optional[int] = None
    validated_quantity: Optional[Decimal] = None

    @property
    def is_validated(self) -> bool:
        return self.validated_at_round is not None

    def applies_to(self, round_number: int) -> bool:
        return self.discovered_at_round is None or self.discovered_at_round <= round_number


@dataclass(frozen=True)
class ReferenceSnapshot:
    referencia: str
    status: str
    current_round: int
    erp_quantity: Optional[Decimal]
    locations: Tuple[LocationSnapshot, ...] = ()

    def live_locations(self, round_number: int) -> Tuple[LocationSnapshot, ...]:
        """Not yet validated locations that must report in round_number."""
        return tuple(
            loc for loc in self.locations
            if not loc.is_validated and loc.applies_to(round_number)
        )

    def frozen_total(self) -> Decimal:
        return sum(
            (loc.validated_quantity or Decimal(0) for loc in self.locations if loc.is_validated),
            Decimal(0),
        )


@dataclass
class Decision:
    """
    What a state decided for a snapshot.

    history_entry is None for non-mutating outcomes; the service writes
    nothing in that case.
    """
    action: ReconcileAction
    reason: Optional[CloseReason] = None
    new_status: Optional[str] = None
    new_round: Optional[int] = None
    validations: Dict[UUID, Tuple[int, Decimal]] = field(default_factory=dict)
    history_entry: Optional[dict] = None
    detail: Optional[str] = None

    @property
    def mutates(self) -> bool:
        return self.history_entry is not None


def _missing(locations: Iterable[LocationSnapshot], round_number: int) -> bool:
    return any(round_number not in loc.counts for loc in locations)


def _total(locations: Iterable[LocationSnapshot], round_number: int) -> Decimal:
    return sum((loc.counts[round_number] for loc in locations), Decimal(0))


def _waiting(round_number: int) -> Decision:
    return Decision(
        action=ReconcileAction.WAITING_FOR_COUNTS,
        detail=f"Round {round_number} counts are incomplete",
    )


# ============================================================================
# STATES
# ============================================================================

class RoundState:
    """Base state. Subclasses implement evaluate()."""
    name = "round_state"
    rounds: Tuple[int, ...] = ()

    def evaluate(self, snapshot: ReferenceSnapshot) -> Decision:
        raise NotImplementedError

    def on_trigger(self, snapshot: ReferenceSnapshot) -> Decision:
        """Decision for an automatic or RPC reconciliation run."""
        return self.evaluate(snapshot)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} rounds={self.rounds}>"


class AwaitingParallelCounts(RoundState):
    """
    Rounds 1 and 2: two independent counts of every location.

    Closes when either sum matches ERP (checked first) or both sums agree
    with each other. Otherwise moves to round 3.
    """
    name = "awaiting_parallel_counts"
    rounds = (1, 2)

    def evaluate(self, snapshot: ReferenceSnapshot) -> Decision:
        round1 = tuple(loc for loc in snapshot.locations if loc.applies_to(1))
        round2 = tuple(loc for loc in snapshot.locations if loc.applies_to(2))
        if not round2:
            return Decision(
                action=ReconcileAction.WAITING_FOR_COUNTS,
                detail="Reference has no locations to count",
            )
        if _missing(round1, 1):
            return _waiting(1)
        if _missing(round2, 2):
            return _waiting(2)

        sum1 = _total(round1, 1)
        sum2 = _total(round2, 2)
        erp = snapshot.erp_quantity

        entry = {
            "round": snapshot.current_round,
            "sum_c1": format_quantity(sum1),
            "sum_c2": format_quantity(sum2),
            "erp": format_quantity(erp),
        }

        accepted_round: Optional[int] = None
        reason: Optional[CloseReason] = None
        if erp is not None and sum1 == erp:
            accepted_round, reason = 1, CloseReason.MATCHES_ERP
        elif erp is not None and sum2 == erp:
            accepted_round, reason = 2, CloseReason.MATCHES_ERP
        elif sum1 == sum2:
            accepted_round, reason = 2, CloseReason.PHYSICAL_CONSISTENCY

        if reason is None:
            entry.update(action=ReconcileAction.NEXT_ROUND.value, new_round=3)
            return Decision(
                action=ReconcileAction.NEXT_ROUND,
                new_status=ReferenceStatus.CONFLICT.value,
                new_round=3,
                history_entry=entry,
            )

        validations = {}
        for loc in round2:
            # A location missing from the accepted round contributes its other count
            quantity = loc.counts.get(accepted_round, loc.counts.get(3 - accepted_round))
            validations[loc.location_id] = (accepted_round, quantity)

        entry.update(
            action=ReconcileAction.CLOSED.value,
            reason=reason.value,
            accepted_round=accepted_round,
        )
        return Decision(
            action=ReconcileAction.CLOSED,
            reason=reason,
            new_status=ReferenceStatus.AUDITED.value,
            validations=validations,
            history_entry=entry,
        )


class AwaitingSequentialCount(RoundState):
    """
    Rounds 3 and 4: one count per live location, compared against ERP only.

    Validated locations contribute their frozen quantity to the sum.
    Round 4 failing escalates to the superadmin (round 5).
    """
    name = "awaiting_sequential_count"

    def __init__(self, round_number: int):
        if round_number not in (3, 4):
            raise ValueError(f"Sequential rounds are 3 and 4, got {round_number}")
        self.round_number = round_number
        self.rounds = (round_number,)

    def evaluate(self, snapshot: ReferenceSnapshot) -> Decision:
        live = snapshot.live_locations(self.round_number)
        if _missing(live, self.round_number):
            return _waiting(self.round_number)

        live_sum = _total(live, self.round_number)
        frozen = snapshot.frozen_total()
        total = live_sum + frozen
        erp = snapshot.erp_quantity

        entry = {
            "round": self.round_number,
            "sum": format_quantity(total),
            "frozen_sum": format_quantity(frozen),
            "erp": format_quantity(erp),
        }

        if erp is not None and total == erp:
            entry.update(
                action=ReconcileAction.CLOSED.value,
                reason=CloseReason.MATCHES_ERP.value,
            )
            return Decision(
                action=ReconcileAction.CLOSED,
                reason=CloseReason.MATCHES_ERP,
                new_status=ReferenceStatus.AUDITED.value,
                validations={
                    loc.location_id: (self.round_number, loc.counts[self.round_number])
                    for loc in live
                },
                history_entry=entry,
            )

        if self.round_number == 3:
            entry.update(action=ReconcileAction.NEXT_ROUND.value, new_round=4)
            return Decision(
                action=ReconcileAction.NEXT_ROUND,
                new_status=ReferenceStatus.CONFLICT.value,
                new_round=4,
                history_entry=entry,
            )

        entry.update(action=ReconcileAction.ESCALATE_TO_SUPERADMIN.value, new_round=5)
        return Decision(
            action=ReconcileAction.ESCALATE_TO_SUPERADMIN,
            new_status=ReferenceStatus.CRITICAL.value,
            new_round=5,
            history_entry=entry,
        )


class Critical(RoundState):
    """
    Round 5: the superadmin enters one quantity per live location.

    Once every live location has a C5 count the reference is closed as
    audited with those quantities, whatever the sum. Only superadmin_close
    evaluates this state; automatic runs wait.
    """
    name = "critical"
    rounds = (5,)

    def evaluate(self, snapshot: ReferenceSnapshot) -> Decision:
        live = snapshot.live_locations(5)
        if not live:
            return Decision(
                action=ReconcileAction.WAITING_FOR_COUNTS,
                detail="No live locations left to count in round 5",
            )
        if _missing(live, 5):
            return _waiting(5)

        total = _total(live, 5) + snapshot.frozen_total()
        entry = {
            "round": 5,
            "sum": format_quantity(total),
            "erp": format_quantity(snapshot.erp_quantity),
            "quantities": {str(loc.location_id): format_quantity(loc.counts[5]) for loc in live},
            "action": ReconcileAction.FORCED_CLOSE_SUPERADMIN.value,
        }
        return Decision(
            action=ReconcileAction.FORCED_CLOSE_SUPERADMIN,
            new_status=ReferenceStatus.AUDITED.value,
            validations={loc.location_id: (5, loc.counts[5]) for loc in live},
            history_entry=entry,
        )

    def on_trigger(self, snapshot: ReferenceSnapshot) -> Decision:
        # Only superadmin_close may close round 5
        return Decision(
            action=ReconcileAction.WAITING_FOR_COUNTS,
            detail="Round 5 is closed by the superadmin",
        )


class Audited(RoundState):
    """Terminal. Re-running reconciliation is a no-op."""
    name = "audited"

    def evaluate(self, snapshot: ReferenceSnapshot) -> Decision:
        return Decision(action=ReconcileAction.CLOSED, detail="Reference is already audited")


class ForcedClosed(RoundState):
    """Terminal. Closed administratively without a match."""
    name = "forced_closed"

    def evaluate(self, snapshot: ReferenceSnapshot) -> Decision:
        return Decision(action=ReconcileAction.CLOSED, detail="Reference was force closed")


def state_for(snapshot: ReferenceSnapshot) -> RoundState:
    """Pick the state that governs the snapshot."""
    if snapshot.status == ReferenceStatus.AUDITED.value:
        return Audited()
    if snapshot.status == ReferenceStatus.FORCED_CLOSED.value:
        return ForcedClosed()
    if snapshot.current_round <= 2:
        return AwaitingParallelCounts()
    if snapshot.current_round in (3, 4):
        return AwaitingSequentialCount(snapshot.current_round)
    return Critical()
