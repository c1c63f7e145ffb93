from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from orderdesk.services.confirmation_service import (
    DUPLICATE_REPROMPT,
    ORDER_CREATION_CANCELLED,
    UPDATE_CANCELLED,
    UPDATE_EXPIRED,
    ConfirmationService,
    deserialize_task_updates,
    serialize_task_updates,
)
from orderdesk.services.context_store import ContextStore
from orderdesk.services.entity_repository import EntityRepository

USER = "whatsapp:+919800000001"
FULFILL = datetime(2026, 11, 20, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def repo(db_session):
    return EntityRepository(db_session)


@pytest.fixture
def store(db_session):
    return ContextStore(db_session)


@pytest.fixture
def confirmations(repo, store):
    return ConfirmationService(repo, store)


def ask_duplicate(confirmations, now, fulfillment="2026-11-20 10:00", product="cake", quantity=2):
    return confirmations.check_duplicate_order(USER, product, quantity, fulfillment, [], "2 cakes", now=now)


class TestDuplicateGate:
    def test_no_similar_order(self, repo, confirmations, now):
        repo.create_order(USER, "Cake", 3, FULFILL)
        assert ask_duplicate(confirmations, now) is None

    def test_similar_order_asks(self, repo, store, confirmations, now):
        existing = repo.create_order(USER, "Cake", 2, FULFILL)
        question = ask_duplicate(confirmations, now)
        assert question.startswith("I found a similar pending order: Cake x2 for 20/11/2026 10:00 AM.")
        assert 'Reply "new" for a new order or "update"' in question

        row = store.load_confirmation(USER)
        assert row.kind == "duplicate_order_decision"
        assert row.subject_id == existing.order_id
        assert row.pending_updates == {
            "product_name": "cake",
            "quantity": 2,
            "fulfillment_date": "2026-11-20 10:00",
            "items": [],
        }

    def test_sixty_seconds_apart_is_not_a_duplicate(self, repo, confirmations, now):
        repo.create_order(USER, "Cake", 2, FULFILL + timedelta(seconds=60))
        assert ask_duplicate(confirmations, now) is None

    def test_only_pending_orders_count(self, repo, confirmations, now):
        order = repo.create_order(USER, "Cake", 2, FULFILL)
        repo.update_order(order.order_id, {"status": "completed"})
        assert ask_duplicate(confirmations, now) is None

    def test_unparseable_date_skips_gate(self, repo, confirmations, now):
        repo.create_order(USER, "Cake", 2, FULFILL)
        assert ask_duplicate(confirmations, now, fulfillment="whenever") is None

    def test_store_failure_lets_creation_proceed(self, repo, store, confirmations, now):
        repo.create_order(USER, "Cake", 2, FULFILL)
        with patch.object(store, "save_confirmation", side_effect=RuntimeError("db down")):
            assert ask_duplicate(confirmations, now) is None

    def test_repeated_asks_keep_one_confirmation(self, repo, store, confirmations, now, db_session):
        from orderdesk.models import PendingConfirmation

        repo.create_order(USER, "Cake", 2, FULFILL)
        ask_duplicate(confirmations, now)
        ask_duplicate(confirmations, now)
        assert db_session.query(PendingConfirmation).count() == 1


class TestDuplicateAnswers:
    @pytest.fixture
    def pending(self, repo, store, confirmations, now):
        existing = repo.create_order(USER, "Cake", 2, FULFILL)
        ask_duplicate(confirmations, now, product="Cake")
        return existing

    def test_new_creates_second_order(self, pending, repo, store, confirmations):
        reply = confirmations.resolve(USER, "new", store.load_confirmation(USER)).reply
        assert reply.startswith("I've created order ORD-")
        assert repo.get_orders(USER)[1] == 2
        assert store.load_confirmation(USER) is None

    def test_new_with_a_single_item_stores_no_item_rows(self, repo, store, confirmations, now):
        repo.create_order(USER, "Cake x2", 2, FULFILL)
        items = [{"product_name": "Cake", "quantity": 2}]
        confirmations.check_duplicate_order(USER, "Cake x2", 2, "2026-11-20 10:00", items, "2 cakes", now=now)

        confirmations.resolve(USER, "new", store.load_confirmation(USER))

        orders, total = repo.get_orders(USER)
        assert total == 2
        assert [order.items for order in orders] == [[], []]

    def test_update_patches_existing(self, pending, repo, store, confirmations):
        reply = confirmations.resolve(USER, "update it", store.load_confirmation(USER)).reply
        assert reply.startswith(f"Order {pending.order_id} has been updated.")
        assert repo.get_orders(USER)[1] == 1
        assert store.load_confirmation(USER) is None

    def test_no_cancels(self, pending, repo, store, confirmations):
        assert confirmations.resolve(USER, "no", store.load_confirmation(USER)).reply == ORDER_CREATION_CANCELLED
        assert store.load_confirmation(USER) is None
        assert repo.get_orders(USER)[1] == 1

    def test_anything_else_reprompts_and_keeps_state(self, pending, store, confirmations):
        assert confirmations.resolve(USER, "hmm", store.load_confirmation(USER)).reply == DUPLICATE_REPROMPT
        assert store.load_confirmation(USER) is not None


class TestTaskUpdateConfirmation:
    @pytest.fixture
    def task(self, repo):
        return repo.create_task(USER, "Dentist", due_date=FULFILL)

    def test_question_mentions_candidates(self, task, store, confirmations):
        question = confirmations.ask_task_update(USER, task, {"status": "completed"}, 2, "dentist done")
        assert question == (
            'I found task "Dentist" (due November 20). There are 2 possible matches. '
            'Do you want to update this task? Reply "yes" to confirm or "no" to cancel.'
        )
        assert store.load_confirmation(USER).kind == "task_update_confirmation"

    def test_yes_applies_updates(self, task, repo, store, confirmations):
        new_due = datetime(2026, 11, 21, 9, 0, tzinfo=timezone.utc)
        confirmations.ask_task_update(USER, task, {"status": "completed", "due_date": new_due}, 1, "x")
        reply = confirmations.resolve(USER, "yes", store.load_confirmation(USER)).reply
        assert reply.startswith('Task "Dentist" has been updated')
        refreshed = repo.get_task(task.id)
        assert refreshed.status == "completed"
        assert refreshed.due_date.replace(tzinfo=timezone.utc) == new_due
        assert store.load_confirmation(USER) is None

    def test_no_discards(self, task, repo, store, confirmations):
        confirmations.ask_task_update(USER, task, {"status": "completed"}, 1, "x")
        assert confirmations.resolve(USER, "no thanks", store.load_confirmation(USER)).reply == UPDATE_CANCELLED
        assert repo.get_task(task.id).status == "pending"

    def test_other_reasks(self, task, store, confirmations):
        confirmations.ask_task_update(USER, task, {"status": "completed"}, 1, "x")
        reply = confirmations.resolve(USER, "which one?", store.load_confirmation(USER)).reply
        assert reply == 'Please confirm: Do you want to update task "Dentist"? Reply "yes" to confirm or "no" to cancel.'

    def test_vanished_task_expires(self, task, store, confirmations, db_session):
        confirmations.ask_task_update(USER, task, {"status": "completed"}, 1, "x")
        db_session.delete(task)
        db_session.flush()
        reply = confirmations.resolve(USER, "which one?", store.load_confirmation(USER)).reply
        assert reply == UPDATE_EXPIRED
        assert store.load_confirmation(USER) is None


def test_task_updates_survive_json():
    due = datetime(2026, 11, 21, 9, 0, tzinfo=timezone.utc)
    payload = serialize_task_updates({"due_date": due, "status": "completed"})
    assert payload == {"due_date": "2026-11-21T09:00:00+00:00", "status": "completed"}
    assert deserialize_task_updates(payload)["due_date"] == due
