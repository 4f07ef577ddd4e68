import itertools
from typing import List, Optional

from ..models import Order


class OrderStore:
    """
    In-memory order table.

    Orders are kept for the life of the process and lost on restart. The table
    grows without bound; ids come from a process-local counter starting at 1
    and are never reused.
    """

    def __init__(self):
        self._orders: List[Order] = []
        self._by_id = {}
        self._ids = itertools.count(1)

    def next_id(self) -> int:
        return next(self._ids)

    def add(self, order: Order) -> Order:
        self._orders.append(order)
        self._by_id[order.id] = order
        return order

    def get(self, order_id: int) -> Optional[Order]:
        return self._by_id.get(order_id)

    def all(self) -> List[Order]:
        return list(self._orders)

    def by_customer(self, name: str) -> List[Order]:
        wanted = name.lower()
        return [order for order in self._orders if order.customer.lower() == wanted]

    def __len__(self) -> int:
        return len(self._orders)
