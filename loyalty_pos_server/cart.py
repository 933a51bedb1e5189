"""Cart ledger: the ordered line items of the transaction being built."""

import logging
from typing import Optional

from .errors import ValidationError
from .models import CustomerContext, LineItem, LoyaltyActionKind

logger = logging.getLogger(__name__)


class CartLedger:
    """
    Ordered collection of line items.

    Items keep insertion order, which is also display and receipt order.
    The ledger is the single source of truth for every derived total.
    """

    def __init__(self, customer: CustomerContext) -> None:
        """
        Initialize the ledger.

        Args:
            customer: Context whose validity gates every ``add``
        """
        self.customer = customer
        self._items: list[LineItem] = []

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def add(self, item: LineItem) -> LineItem:
        """
        Validate and append an item.

        Raises:
            ValidationError: If the customer is not validated or the item is malformed
        """
        self._validate(item)
        self._items.append(item)
        logger.info(f"Cart: added {item.label!r} x{item.quantity} (id={item.id}, total items={len(self._items)})")
        return item

    def remove(self, item_id: str) -> Optional[LineItem]:
        """Remove the first item with ``item_id``. Returns it, or None if absent."""
        for index, item in enumerate(self._items):
            if item.id == item_id:
                del self._items[index]
                logger.info(f"Cart: removed {item.label!r} (id={item_id})")
                return item
        return None

    def clear(self) -> None:
        self._items = []

    def items(self) -> list[LineItem]:
        """Snapshot of the current items. Later ledger changes do not affect it."""
        return list(self._items)

    def get(self, item_id: str) -> Optional[LineItem]:
        return next((item for item in self._items if item.id == item_id), None)

    def _validate(self, item: LineItem) -> None:
        if not self.customer.is_valid:
            raise ValidationError("Validate the customer before adding items")
        if not item.label:
            raise ValidationError("Item label is required")
        if item.quantity <= 0:
            raise ValidationError("Quantity must be positive")
        if item.unit_amount < 0:
            raise ValidationError("Amount cannot be negative")
        if item.is_sale and item.unit_amount <= 0:
            raise ValidationError("Invalid amount: a sale item needs a positive amount")
        if isinstance(item.kind, LoyaltyActionKind) and item.kind.action is None:
            raise ValidationError("Select accumulate or redeem for the loyalty item")
