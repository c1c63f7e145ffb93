"""Plain-text WhatsApp renderings of tasks and orders."""

from datetime import datetime
from typing import Iterable, Optional, Sequence

from orderdesk.services.date_parser import ensure_timezone, local_zone

STATUS_EMOJI = {
    "completed": "✅",
    "pending": "⏳",
    "processing": "🔄",
    "cancelled": "❌",
}
DEFAULT_STATUS_EMOJI = "📊"

STATUS_ORDER = ["completed", "processing", "pending", "cancelled"]

CLASSIFIER_ERROR_MESSAGE = "I'm having trouble understanding. Could you please rephrase that?"

HELP_MESSAGE = (
    "I can help you with tasks and orders. You can:\n"
    "• Create: 'Create a task to buy groceries tomorrow'\n"
    "• View: 'Show my tasks' or 'List my orders'\n"
    "• Update: 'Mark task 1 as completed' or 'Update order #123 to processing'\n\n"
    "What would you like to do?"
)


def status_emoji(status: Optional[str]) -> str:
    return STATUS_EMOJI.get((status or "").lower(), DEFAULT_STATUS_EMOJI)


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def format_date(value: Optional[datetime]) -> str:
    """DD/MM/YYYY HH:MM AM/PM in the local zone; empty string for None."""
    if value is None:
        return ""
    local = ensure_timezone(value).astimezone(local_zone())
    return local.strftime("%d/%m/%Y %I:%M %p")


def format_month_day(value: Optional[datetime]) -> str:
    if value is None:
        return "no due date"
    local = ensure_timezone(value).astimezone(local_zone())
    return f"{local.strftime('%B')} {local.day}"


def order_display_id(order) -> str:
    return order.order_id or str(order.id)


def format_task_list(tasks: Sequence, total: int, offset: int = 0) -> str:
    if not tasks:
        return "You don't have any tasks yet."

    lines = [f"You have {total} {_plural(total, 'task')}:", ""]
    for index, task in enumerate(tasks):
        due = f" - Due: {format_date(task.due_date)}" if task.due_date else " - No due date"
        lines.append(f"{offset + index + 1}. {task.title} ({task.status}){due}")

    text = "\n".join(lines)
    remaining = total - offset - len(tasks)
    if remaining > 0:
        text += (
            f"\n\nThere are {remaining} more {_plural(remaining, 'task')}. "
            'Would you like to see the next 5? Reply "next" to continue.'
        )
    return text


def _order_block(order, position: int) -> str:
    date_text = format_date(order.fulfillment_date) if order.fulfillment_date else "No date set"
    return (
        f"{position}. 📅 {date_text}\n"
        f"   📦 {order.product_name} x{order.quantity} | {status_emoji(order.status)} {order.status}\n"
        f"   🆔 {order_display_id(order)}"
    )


def format_order_list(
    orders: Sequence,
    total: int,
    offset: int = 0,
    status: Optional[str] = None,
    date_range: Optional[str] = None,
) -> str:
    if not orders:
        if status:
            return f"You don't have any {status} orders."
        if date_range:
            return f"You don't have any orders for {date_range}."
        return "You don't have any orders yet."

    header = f"📋 You have {total} {_plural(total, 'order')}"
    if status:
        header += f" ({status})"
    if date_range:
        header += f" for {date_range}"

    blocks = [_order_block(order, offset + index + 1) for index, order in enumerate(orders)]
    text = f"{header}:\n\n" + "\n\n".join(blocks)

    remaining = total - offset - len(orders)
    if remaining > 0:
        text += f'\n\n📄 There are {remaining} more {_plural(remaining, "order")}. Reply "next" to continue.'
    return text


def format_pending_order_reminder(orders: Sequence) -> str:
    if not orders:
        return ""
    count = len(orders)
    blocks = [_order_block(order, index + 1) for index, order in enumerate(orders)]
    return (
        f"⏰ Reminder: You have {count} pending {_plural(count, 'order')} due today:\n\n"
        + "\n\n".join(blocks)
        + '\n\n💬 Reply with order number(s) to update (e.g., "1", "1 2", or "1,2,3")'
    )


def format_task_created(task) -> str:
    due = f" due {format_date(task.due_date)}" if task.due_date else ""
    return f'I\'ve created a task "{task.title}"{due}.'


def format_order_created(order) -> str:
    when = f" to be fulfilled by {format_date(order.fulfillment_date)}" if order.fulfillment_date else ""
    items = list(order.items or [])
    if len(items) > 1:
        listed = ", ".join(f"{item.product_name} x{item.quantity}" for item in items)
        return (
            f"I've created order {order_display_id(order)} with {len(items)} "
            f"{_plural(len(items), 'item')}: {listed}{when}."
        )
    return f"I've created order {order_display_id(order)} for {order.product_name} x{order.quantity}{when}."


def format_task_updated(task) -> str:
    due = f" due {format_date(task.due_date)}" if task.due_date else ""
    return f'Task "{task.title}" has been updated{due}. Status: {task.status}'


def format_order_updated(order) -> str:
    return f"Order {order_display_id(order)} has been updated. Status: {status_emoji(order.status)} {order.status}"


def format_task_details(task) -> str:
    lines = [
        "📝 Task Details",
        "",
        f"Title: {task.title}",
    ]
    if task.description:
        lines.append(f"Description: {task.description}")
    lines += [
        f"Status: {status_emoji(task.status)} {task.status}",
        f"Due: {format_date(task.due_date) if task.due_date else 'No due date'}",
        f"Created: {format_date(task.created_at) or 'Unknown'}",
    ]
    return "\n".join(lines)


def format_order_details(order, media_message=None) -> str:
    lines = ["📦 Order Details", "", f"Order ID: {order_display_id(order)}"]

    items = list(order.items or [])
    if len(items) > 1:
        lines.append(f"Items ({len(items)}):")
        lines += [f"  {index}. {item.product_name} x{item.quantity}" for index, item in enumerate(items, 1)]
        lines.append(f"Total Quantity: {order.quantity}")
    else:
        lines.append(f"Product: {order.product_name}")
        lines.append(f"Quantity: {order.quantity}")

    lines += [
        f"Status: {status_emoji(order.status)} {order.status}",
        f"Fulfillment Date: {format_date(order.fulfillment_date) if order.fulfillment_date else 'Not set'}",
        f"Created: {format_date(order.created_at) or 'Unknown'}",
        f"Last Updated: {format_date(order.updated_at) or 'Never'}",
    ]
    text = "\n".join(lines)

    if media_message is not None and media_message.media_type:
        text += f"\n\n📎 Media Type: {media_message.media_type}"
        if media_message.extracted_text:
            text += f"\n📝 Extracted Text: {media_message.extracted_text}"

    if order.original_message:
        text += f"\n\n💬 Original Message: {order.original_message}"
    return text


def _filter_description(status: Optional[str], date_range: Optional[str]) -> str:
    parts = []
    if status:
        parts.append(f'with status "{status}"')
    if date_range:
        parts.append(f"for {date_range}")
    return f" {' '.join(parts)}" if parts else ""


def format_bulk_update(
    entity: str,
    count: int,
    updates: dict,
    status_filter: Optional[str] = None,
    date_range: Optional[str] = None,
) -> str:
    """Summary of a filter-based update. `updates` uses model column names."""
    filters = _filter_description(status_filter, date_range)
    if count == 0:
        return f"No {entity}s{filters} found to update."

    changed = []
    if updates.get("status"):
        changed.append(f"status to {status_emoji(updates['status'])} {updates['status']}")
    if updates.get("title"):
        changed.append(f'title to "{updates["title"]}"')
    if "description" in updates:
        changed.append("description")
    if "due_date" in updates:
        changed.append("due date")
    if updates.get("product_name"):
        changed.append(f'product name to "{updates["product_name"]}"')
    if "quantity" in updates:
        changed.append(f"quantity to {updates['quantity']}")

    return (
        f"✅ Successfully updated {count} {_plural(count, entity)}{filters}.\n\n"
        f"Updated: {', '.join(changed) if changed else 'updated'}"
    )


def format_order_summary(orders: Iterable, label: str) -> str:
    """Per-status product totals for a period, e.g. "Order Summary for this week"."""
    orders = list(orders)
    if not orders:
        return f"📊 Order Summary for {label}\n\n❌ No orders found for this period."

    by_status: dict[str, list] = {}
    for order in orders:
        by_status.setdefault((order.status or "").lower(), []).append(order)

    header = f"📦 Total Orders: {len(orders)}"
    for status in STATUS_ORDER:
        if by_status.get(status):
            header += f" | {STATUS_EMOJI[status]} {status.capitalize()}: {len(by_status[status])}"

    sections = []
    for status in STATUS_ORDER:
        group = by_status.get(status)
        if not group:
            continue
        totals: dict[str, int] = {}
        for order in group:
            items = list(order.items or []) or [order]
            for item in items:
                name = item.product_name.lower().strip()
                totals[name] = totals.get(name, 0) + item.quantity
        lines = [f"{STATUS_EMOJI[status]} {status.capitalize()} Orders ({len(group)})"]
        for name, quantity in sorted(totals.items(), key=lambda entry: entry[1], reverse=True):
            lines.append(f"   • {name.title()}: {quantity}")
        sections.append("\n".join(lines))

    return f"📊 Order Summary for {label}\n\n{header}\n\n" + "\n\n".join(sections)
