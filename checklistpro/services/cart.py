"""
Cart

Session cart contract: lines keyed by product, quantities always >= 1, and
adding a product already in the cart merges quantities. Prices held here are
advisory only; checkout re-prices every line from the catalog.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
import uuid

from checklistpro.errors import ValidationError


@dataclass
class CartLine:
    product_id: uuid.UUID
    quantity: int
    unit_price: Optional[Decimal] = None

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price or Decimal("0")) * self.quantity


def _check_quantity(quantity: int) -> None:
    if quantity < 1:
        raise ValidationError(
            "Quantity must be at least 1",
            details=[{"field": "quantity", "message": "must be >= 1"}],
        )


class Cart:
    """In-memory cart with merge-on-add semantics"""

    def __init__(self):
        self._lines: Dict[uuid.UUID, CartLine] = {}

    @classmethod
    def from_lines(cls, lines: Iterable[CartLine]) -> "Cart":
        """Build a cart from raw lines, merging duplicate products"""
        cart = cls()
        for line in lines:
            cart.add(line.product_id, line.quantity, line.unit_price)
        return cart

    def add(self, product_id: uuid.UUID, quantity: int = 1, unit_price: Optional[Decimal] = None) -> CartLine:
        _check_quantity(quantity)
        line = self._lines.get(product_id)
        if line is None:
            line = CartLine(product_id=product_id, quantity=quantity, unit_price=unit_price)
            self._lines[product_id] = line
        else:
            line.quantity += quantity
            if unit_price is not None:
                line.unit_price = unit_price
        return line

    def remove(self, product_id: uuid.UUID) -> None:
        self._lines.pop(product_id, None)

    def set_quantity(self, product_id: uuid.UUID, quantity: int) -> CartLine:
        _check_quantity(quantity)
        line = self._lines.get(product_id)
        if line is None:
            raise ValidationError("Product is not in the cart")
        line.quantity = quantity
        return line

    def clear(self) -> None:
        self._lines.clear()

    def total(self) -> Decimal:
        return sum((line.line_total for line in self._lines.values()), Decimal("0"))

    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)

    def __bool__(self) -> bool:
        return bool(self._lines)
