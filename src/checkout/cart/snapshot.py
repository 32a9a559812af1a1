"""Cart snapshot: the immutable view of a cart taken when checkout starts.

The storefront cart itself lives in a remote service. Checkout works from a
frozen copy so that nothing the shopper does in another view can change the
amounts a running saga has already committed to.
"""

import hashlib
import json
from dataclasses import dataclass, field

from protean.exceptions import ValidationError


@dataclass(frozen=True)
class CartLine:
    """A single product in the cart."""

    product_id: int | str
    unit_price_minor: int
    title: str = ""

    def resolved_product_id(self) -> int:
        """Return the product id as an integer, or raise ValidationError."""
        value = self.product_id
        if isinstance(value, bool):
            raise ValidationError({"product_id": [f"Invalid product id: {value!r}"]})
        if isinstance(value, int):
            return value
        try:
            return int(str(value).strip())
        except ValueError:
            raise ValidationError({"product_id": [f"Invalid product id: {value!r}"]}) from None


@dataclass(frozen=True)
class CartSnapshot:
    """Ordered cart lines plus the subtotal they were priced at."""

    lines: tuple[CartLine, ...] = field(default_factory=tuple)
    subtotal_minor: int = 0

    @classmethod
    def from_lines(cls, lines) -> "CartSnapshot":
        lines = tuple(lines)
        return cls(lines=lines, subtotal_minor=sum(line.unit_price_minor for line in lines))

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def product_ids(self) -> list[int]:
        """Integer product ids in cart order. Raises ValidationError on the first bad id."""
        return [line.resolved_product_id() for line in self.lines]

    def fingerprint(self) -> str:
        """Stable hash of what is being bought and at what price."""
        payload = json.dumps(
            {
                "lines": [[str(line.product_id), line.unit_price_minor] for line in self.lines],
                "subtotal": self.subtotal_minor,
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def idempotency_key(self, user_id: str) -> str:
        """Key the order service uses to collapse duplicate submissions of this cart."""
        digest = hashlib.sha256(f"{user_id}:{self.fingerprint()}".encode()).hexdigest()
        return f"checkout-{digest[:32]}"
