import random
import string
import time
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Query, Session, selectinload

from orderdesk.logging_config import get_logger
from orderdesk.models import Order, OrderItem, Task
from orderdesk.services.date_parser import local_now, parse_date_range, to_utc

logger = get_logger("entity_repository")

_BASE36 = string.digits + string.ascii_lowercase

TASK_FIELDS = ("title", "description", "due_date", "status")
ORDER_FIELDS = ("product_name", "quantity", "status")


def _apply_updates(entity, fields, updates: dict) -> None:
    for field in fields:
        if field in updates:
            value = updates[field]
            setattr(entity, field, to_utc(value) if isinstance(value, datetime) else value)


class EntityNotFoundError(Exception):
    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity.capitalize()} with id {identifier} not found")


def generate_order_id(now_ms: Optional[int] = None) -> str:
    """ORD-<epoch ms>-<9 random base36 chars>."""
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"ORD-{now_ms}-{suffix}"


class EntityRepository:
    """Task and order persistence for one request-scoped session.

    The repository flushes but never commits; the webhook commits once the
    whole message has been handled.
    """

    def __init__(self, db: Session):
        self.db = db

    def discard_changes(self) -> None:
        """Roll back after a failed write so the session stays usable."""
        self.db.rollback()

    # Tasks

    def create_task(
        self,
        user_number: str,
        title: str,
        description: Optional[str] = None,
        due_date: Optional[datetime] = None,
        original_message: Optional[str] = None,
    ) -> Task:
        task = Task(
            user_number=user_number,
            title=title,
            description=description,
            due_date=to_utc(due_date),
            status="pending",
            original_message=original_message,
        )
        self.db.add(task)
        self.db.flush()
        self.db.refresh(task)
        logger.info("Task created", extra={"context": {"user_number": user_number, "task_id": task.id}})
        return task

    def get_task(self, task_id: int, user_number: Optional[str] = None) -> Optional[Task]:
        query = self.db.query(Task).filter(Task.id == int(task_id))
        if user_number:
            query = query.filter(Task.user_number == user_number)
        return query.first()

    def _task_query(self, user_number: str, status: Optional[str], date_range: Optional[str]) -> Query:
        query = self.db.query(Task).filter(Task.user_number == user_number)
        if status:
            query = query.filter(Task.status == status)
        start, end = parse_date_range(date_range, local_now()) if date_range else (None, None)
        if start and end:
            query = query.filter(Task.due_date >= to_utc(start), Task.due_date <= to_utc(end))
        return query

    def get_tasks(
        self,
        user_number: str,
        status: Optional[str] = None,
        date_range: Optional[str] = None,
        offset: int = 0,
        limit: int = 5,
    ) -> Tuple[List[Task], int]:
        """One page of tasks, soonest due first, undated last, plus the filtered total."""
        query = self._task_query(user_number, status, date_range)
        total = query.count()
        items = (
            query.order_by(
                Task.due_date.is_(None),
                Task.due_date.asc(),
                Task.created_at.desc(),
                Task.id.desc(),
            )
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def update_task(self, task_id: int, updates: dict) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise EntityNotFoundError("task", task_id)
        _apply_updates(task, TASK_FIELDS, updates)
        self.db.flush()
        self.db.refresh(task)
        return task

    def bulk_update_tasks(
        self,
        user_number: str,
        updates: dict,
        status: Optional[str] = None,
        date_range: Optional[str] = None,
    ) -> int:
        tasks = self._task_query(user_number, status, date_range).all()
        for task in tasks:
            _apply_updates(task, TASK_FIELDS, updates)
        self.db.flush()
        logger.info(
            "Bulk task update",
            extra={"context": {"user_number": user_number, "count": len(tasks), "fields": sorted(updates)}},
        )
        return len(tasks)

    # Orders

    def create_order(
        self,
        user_number: str,
        product_name: str,
        quantity: int = 1,
        fulfillment_date: Optional[datetime] = None,
        original_message: Optional[str] = None,
        items: Optional[Iterable[dict]] = None,
        order_id: Optional[str] = None,
    ) -> Order:
        order = Order(
            user_number=user_number,
            order_id=order_id or generate_order_id(),
            product_name=product_name,
            quantity=quantity,
            status="pending",
            fulfillment_date=to_utc(fulfillment_date),
            original_message=original_message,
        )
        for item in items or []:
            order.items.append(OrderItem(product_name=item["product_name"], quantity=item["quantity"]))
        self.db.add(order)
        self.db.flush()
        self.db.refresh(order)
        logger.info(
            "Order created",
            extra={"context": {"user_number": user_number, "order_id": order.order_id}},
        )
        return order

    def get_order_by_order_id(self, order_id: str, user_number: Optional[str] = None) -> Optional[Order]:
        query = self.db.query(Order).options(selectinload(Order.items)).filter(Order.order_id == str(order_id))
        if user_number:
            query = query.filter(Order.user_number == user_number)
        return query.first()

    def _order_query(self, user_number: str, status: Optional[str], date_range: Optional[str]) -> Query:
        query = self.db.query(Order).filter(Order.user_number == user_number)
        if status:
            query = query.filter(Order.status == status)
        start, end = parse_date_range(date_range, local_now()) if date_range else (None, None)
        if start and end:
            query = query.filter(Order.fulfillment_date >= to_utc(start), Order.fulfillment_date <= to_utc(end))
        return query

    def get_orders(
        self,
        user_number: str,
        status: Optional[str] = None,
        date_range: Optional[str] = None,
        offset: int = 0,
        limit: int = 5,
    ) -> Tuple[List[Order], int]:
        query = self._order_query(user_number, status, date_range)
        total = query.count()
        items = (
            query.options(selectinload(Order.items))
            .order_by(
                Order.fulfillment_date.is_(None),
                Order.fulfillment_date.asc(),
                Order.created_at.desc(),
                Order.id.desc(),
            )
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def update_order(self, order_id: str, updates: dict) -> Order:
        order = self.get_order_by_order_id(order_id)
        if order is None:
            raise EntityNotFoundError("order", order_id)
        _apply_updates(order, ORDER_FIELDS, updates)
        self.db.flush()
        self.db.refresh(order)
        return order

    def bulk_update_orders(
        self,
        user_number: str,
        updates: dict,
        status: Optional[str] = None,
        date_range: Optional[str] = None,
    ) -> int:
        orders = self._order_query(user_number, status, date_range).all()
        for order in orders:
            _apply_updates(order, ORDER_FIELDS, updates)
        self.db.flush()
        logger.info(
            "Bulk order update",
            extra={"context": {"user_number": user_number, "count": len(orders), "fields": sorted(updates)}},
        )
        return len(orders)

    def get_pending_orders_due_on(self, day_start: datetime) -> List[Order]:
        """Pending orders whose fulfillment falls on the local day starting at `day_start`."""
        day_start = to_utc(day_start)
        day_end = day_start + timedelta(days=1)
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(
                Order.status == "pending",
                Order.fulfillment_date.isnot(None),
                Order.fulfillment_date >= day_start,
                Order.fulfillment_date < day_end,
            )
            .order_by(Order.user_number, Order.fulfillment_date.asc(), Order.created_at.desc())
            .all()
        )
