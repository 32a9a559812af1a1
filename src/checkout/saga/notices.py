"""Terminal checkout notices: the one toast each attempt ends with."""

from dataclasses import dataclass
from enum import Enum

from checkout.errors import FailureKind
from checkout.session.session import CheckoutState


class NoticeKind(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    title: str
    message: str
    order_id: str | None = None
    # Where the client should send the shopper next
    next_view: str = "cart"


def notice_for(session) -> Notice:
    """Build the notice for a session in a terminal state."""
    if not session.is_terminal:
        raise ValueError(f"Session {session.id} is not finished (state {session.state})")

    if session.current_state == CheckoutState.SUCCEEDED:
        if session.free:
            message = "Your active plan covers this purchase. No payment was taken."
        else:
            message = "Your payment has been processed successfully."
        return Notice(
            kind=NoticeKind.SUCCESS,
            title="Order placed",
            message=message,
            order_id=session.order_id,
            next_view="orders",
        )

    if session.failure_kind == FailureKind.UNRESOLVED.value:
        return Notice(
            kind=NoticeKind.UNRESOLVED,
            title="Verify in your orders",
            message="Your payment may have processed. Check your orders for the latest status before paying again.",
            order_id=session.order_id,
            next_view="orders",
        )

    return Notice(
        kind=NoticeKind.FAILURE,
        title="Payment failed" if session.failure_kind == FailureKind.PAYMENT_FAILED.value else "Checkout failed",
        message=session.error or "Checkout could not be completed.",
        order_id=session.order_id,
        next_view="orders" if session.order_id else "cart",
    )
