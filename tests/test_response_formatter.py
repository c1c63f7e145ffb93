from datetime import datetime, timezone
from types import SimpleNamespace

from orderdesk.services.response_formatter import (
    format_bulk_update,
    format_date,
    format_order_created,
    format_order_details,
    format_order_list,
    format_order_summary,
    format_pending_order_reminder,
    format_task_list,
    status_emoji,
)

DUE = datetime(2026, 10, 20, 17, 0, tzinfo=timezone.utc)


def make_task(task_id, title, status="pending", due_date=DUE):
    return SimpleNamespace(id=task_id, title=title, status=status, due_date=due_date, description=None)


def make_order(order_id, product="Cake", quantity=1, status="pending", items=None, fulfillment_date=DUE):
    return SimpleNamespace(
        id=1,
        order_id=order_id,
        product_name=product,
        quantity=quantity,
        status=status,
        fulfillment_date=fulfillment_date,
        items=items or [],
        created_at=DUE,
        updated_at=None,
        original_message=None,
    )


class TestFormatDate:
    def test_local_format(self):
        assert format_date(DUE) == "20/10/2026 05:00 PM"

    def test_none(self):
        assert format_date(None) == ""


class TestTaskList:
    def test_empty(self):
        assert format_task_list([], 0) == "You don't have any tasks yet."

    def test_numbers_are_absolute(self):
        text = format_task_list([make_task(6, "Call Bob"), make_task(7, "Pay rent", due_date=None)], 7, offset=5)
        assert "6. Call Bob (pending) - Due: 20/10/2026 05:00 PM" in text
        assert "7. Pay rent (pending) - No due date" in text
        assert "more" not in text

    def test_footer_when_more_remain(self):
        text = format_task_list([make_task(i, f"T{i}") for i in range(1, 6)], 8)
        assert text.startswith("You have 8 tasks:")
        assert 'There are 3 more tasks. Would you like to see the next 5? Reply "next" to continue.' in text


class TestOrderList:
    def test_empty_with_status(self):
        assert format_order_list([], 0, status="pending") == "You don't have any pending orders."

    def test_empty_with_range(self):
        assert format_order_list([], 0, date_range="today") == "You don't have any orders for today."

    def test_header_and_blocks(self):
        text = format_order_list([make_order("ORD-1")], 6, status="pending", date_range="this week")
        assert text.startswith("📋 You have 6 orders (pending) for this week:")
        assert "1. 📅 20/10/2026 05:00 PM" in text
        assert "📦 Cake x1 | ⏳ pending" in text
        assert "🆔 ORD-1" in text
        assert 'There are 5 more orders. Reply "next" to continue.' in text


class TestOrderMessages:
    def test_created_single(self):
        assert format_order_created(make_order("ORD-9", "Bread", 2)) == (
            "I've created order ORD-9 for Bread x2 to be fulfilled by 20/10/2026 05:00 PM."
        )

    def test_created_multi_item(self):
        items = [SimpleNamespace(product_name="Bread", quantity=2), SimpleNamespace(product_name="Milk", quantity=1)]
        text = format_order_created(make_order("ORD-9", "Bread x2, Milk x1", 3, items=items))
        assert "with 2 items: Bread x2, Milk x1" in text

    def test_details_lists_items(self):
        items = [SimpleNamespace(product_name="Bread", quantity=2), SimpleNamespace(product_name="Milk", quantity=1)]
        text = format_order_details(make_order("ORD-9", "Bread x2, Milk x1", 3, items=items))
        assert "Items (2):" in text
        assert "  2. Milk x1" in text
        assert "Total Quantity: 3" in text

    def test_reminder(self):
        text = format_pending_order_reminder([make_order("ORD-1"), make_order("ORD-2", "Pie")])
        assert text.startswith("⏰ Reminder: You have 2 pending orders due today:")
        assert "2. 📅" in text
        assert text.endswith('Reply with order number(s) to update (e.g., "1", "1 2", or "1,2,3")')


class TestBulkAndSummary:
    def test_bulk_none_found(self):
        assert format_bulk_update("order", 0, {"status": "completed"}, "pending", "today") == (
            'No orders with status "pending" for today found to update.'
        )

    def test_bulk_updated(self):
        text = format_bulk_update("task", 3, {"status": "completed"})
        assert text.startswith("✅ Successfully updated 3 tasks.")
        assert "status to ✅ completed" in text

    def test_summary_groups_by_status(self):
        orders = [
            make_order("ORD-1", "Cake", 2),
            make_order("ORD-2", "cake", 1),
            make_order("ORD-3", "Pie", 1, status="completed"),
        ]
        text = format_order_summary(orders, "this week")
        assert "📦 Total Orders: 3 | ✅ Completed: 1 | ⏳ Pending: 2" in text
        assert "   • Cake: 3" in text

    def test_summary_empty(self):
        assert "No orders found" in format_order_summary([], "today")


def test_unknown_status_emoji():
    assert status_emoji("shipped") == "📊"
