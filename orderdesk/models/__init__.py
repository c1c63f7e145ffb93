from orderdesk.models.conversation_context import ConversationContext
from orderdesk.models.message import Message
from orderdesk.models.order import Order, OrderItem
from orderdesk.models.pagination_state import PaginationState
from orderdesk.models.pending_confirmation import PendingConfirmation
from orderdesk.models.task import Task

__all__ = [
    "Task",
    "Order",
    "OrderItem",
    "Message",
    "ConversationContext",
    "PendingConfirmation",
    "PaginationState",
]
