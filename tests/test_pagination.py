from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from orderdesk.services.context_store import ContextStore
from orderdesk.services.dialogue_state import Stage
from orderdesk.services.entity_repository import EntityRepository
from orderdesk.services.pagination_service import NO_CURSOR_MESSAGE, PaginationService

USER = "whatsapp:+919800000001"
BASE = datetime(2026, 11, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def repo(db_session):
    return EntityRepository(db_session)


@pytest.fixture
def store(db_session):
    return ContextStore(db_session)


@pytest.fixture
def pagination(repo, store):
    return PaginationService(repo, store)


def seed_orders(repo, count):
    return [
        repo.create_order(USER, f"Item {index}", fulfillment_date=BASE + timedelta(days=index))
        for index in range(1, count + 1)
    ]


class TestFirstPage:
    def test_more_remaining_opens_cursor(self, repo, store, pagination):
        orders = seed_orders(repo, 12)
        outcome = pagination.first_page(USER, "order")

        assert outcome.stage == Stage.FRESH
        assert "📋 You have 12 orders:" in outcome.reply
        cursor = store.load_cursor(USER)
        assert (cursor.entity_type, cursor.offset, cursor.total_count) == ("order", 0, 12)

        context = store.load_context(USER)
        assert context.order_ids == [order.order_id for order in orders[:5]]
        for index, order_id in enumerate(context.order_ids):
            assert context.order_mappings[str(index + 1)] == order_id

    def test_everything_shown_clears_cursor(self, repo, store, pagination):
        seed_orders(repo, 3)
        store.save_cursor(USER, "order", 5, 20, {}, timedelta(minutes=10))
        pagination.first_page(USER, "order")
        assert store.load_cursor(USER) is None

    def test_filters_are_saved_on_cursor(self, repo, store, pagination):
        seed_orders(repo, 7)
        pagination.first_page(USER, "order", status="pending")
        assert store.load_cursor(USER).filters == {"status": "pending"}


class TestNextPage:
    def test_without_cursor_touches_nothing(self, store):
        repo = Mock()
        outcome = PaginationService(repo, store).next_page(USER)
        assert outcome.reply == NO_CURSOR_MESSAGE
        assert outcome.stage == Stage.PAGINATION
        repo.get_orders.assert_not_called()
        repo.get_tasks.assert_not_called()

    def test_walks_pages_with_absolute_numbers(self, repo, store, pagination):
        orders = seed_orders(repo, 12)
        pagination.first_page(USER, "order")

        second = pagination.next_page(USER)
        assert "6. 📅" in second.reply
        assert 'There are 2 more orders. Reply "next" to continue.' in second.reply
        context = store.load_context(USER)
        assert context.order_mappings == {str(6 + i): orders[5 + i].order_id for i in range(5)}
        assert store.load_cursor(USER).offset == 5

        third = pagination.next_page(USER)
        assert "11. 📅" in third.reply and "12. 📅" in third.reply
        assert store.load_cursor(USER) is None
        assert store.load_context(USER).id_at(12) == orders[11].order_id

        assert pagination.next_page(USER).reply == NO_CURSOR_MESSAGE

    def test_tasks_paginate_too(self, repo, store, pagination):
        tasks = [repo.create_task(USER, f"Task {i}", due_date=BASE + timedelta(hours=i)) for i in range(1, 8)]
        pagination.first_page(USER, "task")
        outcome = pagination.next_page(USER)
        assert "6. Task 6" in outcome.reply
        assert store.load_context(USER).task_mappings == {"6": tasks[5].id, "7": tasks[6].id}

    def test_empty_page_clears_cursor(self, repo, store, pagination):
        seed_orders(repo, 2)
        store.save_cursor(USER, "order", 5, 9, {}, timedelta(minutes=10))
        outcome = pagination.next_page(USER)
        assert outcome.reply == "No more orders to show."
        assert store.load_cursor(USER) is None

    def test_repository_failure_apologises(self, store):
        repo = Mock()
        repo.get_tasks.side_effect = RuntimeError("db down")
        store.save_cursor(USER, "task", 0, 9, {}, timedelta(minutes=10))
        outcome = PaginationService(repo, store).next_page(USER)
        assert outcome.reply == "I'm sorry, I couldn't retrieve the next tasks. Please try again."
        repo.discard_changes.assert_called_once()
