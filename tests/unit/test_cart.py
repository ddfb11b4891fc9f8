"""
Unit Tests - Cart
"""
from decimal import Decimal
import uuid

import pytest

from checklistpro.errors import ValidationError
from checklistpro.services.cart import Cart, CartLine


class TestCart:
    """Tests for Cart"""

    def test_add_same_product_merges_quantities(self):
        """Test adding a product twice keeps one line"""
        product_id = uuid.uuid4()
        cart = Cart()

        cart.add(product_id, 1, Decimal("10.00"))
        cart.add(product_id, 2)

        assert len(cart) == 1
        assert cart.lines()[0].quantity == 3
        assert cart.total() == Decimal("30.00")

    def test_quantity_must_be_positive(self):
        """Test zero and negative quantities are rejected"""
        cart = Cart()

        with pytest.raises(ValidationError):
            cart.add(uuid.uuid4(), 0)
        with pytest.raises(ValidationError):
            cart.add(uuid.uuid4(), -1)

        assert not cart

    def test_set_quantity_on_missing_line(self):
        """Test setting quantity for a product not in the cart"""
        with pytest.raises(ValidationError):
            Cart().set_quantity(uuid.uuid4(), 2)

    def test_remove_and_clear(self):
        """Test removing lines"""
        first, second = uuid.uuid4(), uuid.uuid4()
        cart = Cart()
        cart.add(first)
        cart.add(second)

        cart.remove(first)
        assert [line.product_id for line in cart.lines()] == [second]

        cart.clear()
        assert len(cart) == 0

    def test_from_lines_merges_duplicates(self):
        """Test building a cart from raw checkout lines"""
        product_id = uuid.uuid4()
        cart = Cart.from_lines([
            CartLine(product_id=product_id, quantity=1),
            CartLine(product_id=product_id, quantity=4),
        ])

        assert len(cart) == 1
        assert cart.lines()[0].quantity == 5

    def test_line_without_price_totals_zero(self):
        """Test advisory prices are optional"""
        line = CartLine(product_id=uuid.uuid4(), quantity=3)
        assert line.line_total == Decimal("0")
