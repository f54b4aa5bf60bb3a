"""Order status transition rules (single source of truth)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from locallink.domain.value_objects import OrderStatus

STATUS_SEQUENCE: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING_ASSIGNMENT,
    OrderStatus.ASSIGNED,
    OrderStatus.COLLECTED,
    OrderStatus.DELIVERED,
)

ALLOWED_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_ASSIGNMENT: frozenset({OrderStatus.ASSIGNED}),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.COLLECTED}),
    OrderStatus.COLLECTED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED})

# Stages a delivery partner drives with advance_status; ASSIGNED is reached by claiming.
PARTNER_DRIVEN_STATUSES = frozenset({OrderStatus.COLLECTED, OrderStatus.DELIVERED})


@dataclass(frozen=True, slots=True)
class TransitionValidationResult:
    allowed: bool
    reason: str | None = None
    noop: bool = False


def _coerce(status: OrderStatus | str | None) -> OrderStatus | None:
    if status is None:
        return None
    if isinstance(status, OrderStatus):
        return status
    try:
        return OrderStatus(str(status).strip().lower())
    except ValueError:
        return None


def next_status(current: OrderStatus | str) -> OrderStatus | None:
    """The only status that may follow `current`, or None when terminal."""
    status = _coerce(current)
    if status is None or status in TERMINAL_STATUSES:
        return None
    return STATUS_SEQUENCE[STATUS_SEQUENCE.index(status) + 1]


def is_forward_sequence(statuses: list[OrderStatus | str]) -> bool:
    """True when `statuses` is a subsequence of the lifecycle with no repeats."""
    positions = []
    for status in statuses:
        coerced = _coerce(status)
        if coerced is None:
            return False
        positions.append(STATUS_SEQUENCE.index(coerced))
    return all(a < b for a, b in zip(positions, positions[1:]))


def validate_order_transition(
    *,
    current_status: OrderStatus | str | None,
    target_status: OrderStatus | str,
) -> TransitionValidationResult:
    """Validate terminal guards and the strictly-forward transition matrix."""
    if not target_status:
        return TransitionValidationResult(False, "Target status is missing.")

    target = _coerce(target_status)
    if target is None:
        return TransitionValidationResult(False, f"Unsupported status: {target_status}")

    current = _coerce(current_status)
    if current_status is not None and current is None:
        return TransitionValidationResult(False, f"Unsupported current status: {current_status}")

    if current == target:
        return TransitionValidationResult(True, noop=True)

    if current in TERMINAL_STATUSES:
        return TransitionValidationResult(
            False, f"Cannot change terminal status '{current.value}'."
        )

    if current is None:
        if target != OrderStatus.PENDING_ASSIGNMENT:
            return TransitionValidationResult(
                False, f"New orders start at '{OrderStatus.PENDING_ASSIGNMENT.value}'."
            )
        return TransitionValidationResult(True)

    if target not in ALLOWED_TRANSITIONS[current]:
        return TransitionValidationResult(
            False, f"Transition '{current.value} -> {target.value}' is not allowed."
        )

    return TransitionValidationResult(True)
