"""Payment status transitions.

The only place that decides whether a status change is legal. Checkout,
webhooks, refunds, admin actions and the pledge reaper all call
assert_valid_transition() before writing a new status.
"""

from groupcollect.models.payment import Payment
from groupcollect.services.errors import InvalidTransitionError

ALLOWED_TRANSITIONS = {
    Payment.PLEDGED: frozenset({Payment.PAID, Payment.CANCELLED}),
    Payment.PAID: frozenset({Payment.CANCELLED}),
    Payment.CANCELLED: frozenset(),  # terminal
}


def assert_valid_transition(from_status, to_status):
    """Raise InvalidTransitionError unless from_status -> to_status is allowed.

    Same-status "transitions" are always accepted as no-ops.
    """
    if from_status == to_status:
        return
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, frozenset()):
        raise InvalidTransitionError(from_status, to_status)
