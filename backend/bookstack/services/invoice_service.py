# Overview: Order invoice rendering interface and the plain-text default renderer.

from __future__ import annotations

from typing import Protocol


class InvoiceRenderer(Protocol):
    """Renders an order snapshot (Order.to_dict()) into a document."""

    content_type: str
    file_extension: str

    def render(self, order_snapshot: dict) -> bytes:
        ...


def _money(cents: int) -> str:
    return f"{cents / 100:.2f}"


class TextInvoiceRenderer:
    content_type = "text/plain; charset=utf-8"
    file_extension = "txt"

    def render(self, order_snapshot: dict) -> bytes:
        lines = [
            "BookStack Invoice",
            f"Order {order_snapshot['reference']}",
            f"Placed: {order_snapshot.get('created_at') or '-'}",
            f"Status: {order_snapshot['status']}",
            f"Payment: {order_snapshot.get('payment_method') or '-'}",
            "",
        ]
        for item in order_snapshot.get("items", []):
            lines.append(
                f"{item.get('title') or item['title_id']:<40} "
                f"{item['quantity']:>4} x {_money(item['unit_price_cents']):>10} "
                f"= {_money(item['line_total_cents']):>10}"
            )
        lines.extend(
            [
                "",
                f"Subtotal: {_money(order_snapshot['subtotal_cents'])}",
                f"Delivery: {_money(order_snapshot['delivery_fee_cents'])}",
                f"Total:    {_money(order_snapshot['total_amount_cents'])}",
            ]
        )
        return ("\n".join(lines) + "\n").encode("utf-8")
