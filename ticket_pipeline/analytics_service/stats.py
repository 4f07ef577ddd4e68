import time
from collections import deque
from typing import Deque, Dict, List, Optional

from ..models import VALID_EVENTS, CompletionEvent, ticket_price


class AggregateStats:
    """
    Running totals over every completion event consumed.

    `event_counts` holds tickets per known event type. Revenue is derived from
    the fixed price list, so `total_revenue` always equals the sum of
    count x price over the known types. `recent` keeps the last `limit`
    completions in arrival order, oldest evicted first.
    """

    def __init__(self, limit: int = 100, clock=time.monotonic):
        self._clock = clock
        self.started_at = clock()
        self.event_counts: Dict[str, int] = {event: 0 for event in VALID_EVENTS}
        self.recent: Deque[dict] = deque(maxlen=limit)
        self.total_tickets = 0
        self.total_revenue = 0

    def record(self, event: CompletionEvent) -> None:
        if event.event_type in self.event_counts:
            self.event_counts[event.event_type] += event.quantity
        self.total_tickets += event.quantity
        self.total_revenue += ticket_price(event.event_type) * event.quantity
        self.recent.append(
            {
                "id": event.order_id,
                "event": event.event_type,
                "customer": event.customer,
                "quantity": event.quantity,
                "timestamp": event.fulfilled_at.isoformat(),
            }
        )

    @property
    def total_orders(self) -> int:
        """Tickets of known event types; unknown types are left out."""
        return sum(self.event_counts.values())

    def uptime_seconds(self) -> float:
        return max(self._clock() - self.started_at, 0.0)

    def orders_per_minute(self) -> float:
        uptime = self.uptime_seconds()
        if not self.total_orders or uptime <= 0:
            return 0.0
        return round(self.total_orders / uptime * 60, 2)

    def summary(self) -> dict:
        uptime = int(self.uptime_seconds())
        return {
            "totalOrders": self.total_orders,
            "totalTickets": self.total_tickets,
            "totalRevenue": self.total_revenue,
            "ordersPerMinute": self.orders_per_minute(),
            "uptime": f"{uptime // 60}m {uptime % 60}s",
        }

    def breakdown(self) -> List[dict]:
        typed_total = self.total_orders
        rows = [
            {
                "event": event,
                "count": count,
                "percentage": int(count / typed_total * 100 + 0.5) if typed_total else 0,
                "revenue": ticket_price(event) * count,
            }
            for event, count in self.event_counts.items()
        ]
        return sorted(rows, key=lambda row: row["count"], reverse=True)

    def recent_orders(self, n: int, event_type: Optional[str] = None) -> List[dict]:
        """Most recent first, optionally for one event type."""
        matching = [o for o in self.recent if event_type is None or o["event"] == event_type]
        return list(reversed(matching[-n:])) if n > 0 else []
