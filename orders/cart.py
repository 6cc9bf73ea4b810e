from dataclasses import dataclass
from decimal import Decimal

from django.core.exceptions import ValidationError

from menu.models import MenuItem

CART_SESSION_KEY = 'cart'


@dataclass(frozen=True)
class CartLine:
    menu_item: MenuItem
    quantity: int

    @property
    def line_total(self):
        return self.menu_item.price * self.quantity


class Cart:
    """
    Shopping cart kept in the Django session as ``{menu_item_id: quantity}``.
    Items that stop being available simply drop out of ``lines()``.
    """

    def __init__(self, session):
        self.session = session
        self._items = dict(session.get(CART_SESSION_KEY, {}))

    def _save(self):
        self.session[CART_SESSION_KEY] = dict(self._items)
        self.session.modified = True

    @staticmethod
    def _available_item(menu_item_id):
        try:
            return MenuItem.objects.get(pk=menu_item_id, is_available=True)
        except (MenuItem.DoesNotExist, ValueError, TypeError):
            raise ValidationError({'menu_item': "This item is not available."})

    def add(self, menu_item_id, quantity=1):
        if quantity < 1:
            raise ValidationError({'quantity': "Quantity must be at least 1."})
        item = self._available_item(menu_item_id)
        key = str(item.pk)
        self._items[key] = self._items.get(key, 0) + quantity
        self._save()

    def update(self, menu_item_id, quantity):
        key = str(menu_item_id)
        if quantity <= 0:
            self.remove(menu_item_id)
            return
        if key not in self._items:
            raise ValidationError({'menu_item': "This item is not in your cart."})
        self._items[key] = quantity
        self._save()

    def remove(self, menu_item_id):
        self._items.pop(str(menu_item_id), None)
        self._save()

    def clear(self):
        self._items = {}
        self._save()

    def lines(self):
        items = MenuItem.objects.filter(pk__in=self._items.keys(), is_available=True).in_bulk()
        return [
            CartLine(menu_item=items[int(key)], quantity=quantity)
            for key, quantity in self._items.items()
            if int(key) in items
        ]

    def subtotal(self, lines=None):
        lines = self.lines() if lines is None else lines
        return sum((line.line_total for line in lines), Decimal('0.00'))

    def is_empty(self):
        return not self.lines()

    def __len__(self):
        return sum(self._items.values())
