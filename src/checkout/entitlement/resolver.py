"""Free-Entitlement Resolver.

Decides, once per checkout attempt, whether the shopper's active plan makes
the cart free. The answer is never cached: a plan can lapse or be upgraded
between two attempts.
"""

from dataclasses import dataclass

from checkout.errors import ServiceError
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EntitlementDecision:
    free: bool
    reason: str | None = None


class FreeEntitlementResolver:
    def __init__(self, service) -> None:
        self.service = service

    async def resolve(self, cart) -> EntitlementDecision:
        try:
            status = await self.service.check_entitlement()
        except ServiceError as exc:
            # Fall back to the paid path rather than blocking the purchase
            logger.warning(
                "Entitlement check failed, continuing as paid checkout",
                error=exc.message,
                status_code=exc.status_code,
            )
            return EntitlementDecision(free=False, reason="entitlement check unavailable")

        if status.will_be_free:
            reason = f"covered by {status.plan_name} plan" if status.plan_name else "covered by active subscription"
            logger.info("Cart covered by entitlement", plan=status.plan_name, line_count=len(cart.lines))
            return EntitlementDecision(free=True, reason=reason)

        return EntitlementDecision(free=False)
