"""
Tests for chat thread/message persistence.
"""
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from core.exceptions import PersistenceError
from services.chat_modules import Author, HandoffProposal, Role
from services.chat_store import ChatStore


def test_create_and_get_thread(store, user_id):
    thread = store.create_thread(user_id, Role.COORDINATOR)

    loaded = store.get_thread(thread.id)
    assert loaded is not None
    assert loaded.user_id == user_id
    assert loaded.active_channel is Role.COORDINATOR
    assert loaded.pending_handoff is None


def test_get_unknown_thread_returns_none(store):
    assert store.get_thread(uuid4()) is None


def test_find_active_thread_is_per_user_and_channel(store, user_id):
    team = store.create_thread(user_id, Role.COORDINATOR)
    trainer = store.create_thread(user_id, Role.TRAINER)
    store.create_thread(uuid4(), Role.COORDINATOR)

    assert store.find_active_thread(user_id, Role.COORDINATOR).id == team.id
    assert store.find_active_thread(user_id, "trainer").id == trainer.id
    assert store.find_active_thread(user_id, Role.DOCTOR) is None


def test_find_active_thread_returns_latest(store, user_id):
    store.create_thread(user_id, Role.TRAINER)
    newer = store.create_thread(user_id, Role.TRAINER)

    assert store.find_active_thread(user_id, Role.TRAINER).id == newer.id


def test_pending_handoff_round_trip(store, user_id):
    thread = store.create_thread(user_id, Role.TRAINER)
    thread.propose_handoff(HandoffProposal(to=Role.NUTRITIONIST, from_role=Role.TRAINER, reason="питание"))
    store.save_thread(thread)

    store.db.expire_all()
    loaded = store.get_thread(thread.id)
    assert loaded.pending_handoff == HandoffProposal(
        to=Role.NUTRITIONIST, from_role=Role.TRAINER, reason="питание"
    )

    loaded.execute_handoff(Role.NUTRITIONIST)
    store.save_thread(loaded)
    store.db.expire_all()

    reloaded = store.reload_thread(store.get_thread(thread.id))
    assert reloaded.active_channel is Role.NUTRITIONIST
    assert reloaded.pending_handoff is None


def test_new_proposal_replaces_old(store, user_id):
    thread = store.create_thread(user_id, Role.TRAINER)
    thread.propose_handoff(HandoffProposal(to=Role.NUTRITIONIST, from_role=Role.TRAINER))
    thread.propose_handoff(HandoffProposal(to=Role.DOCTOR, from_role=Role.TRAINER))
    store.save_thread(thread)

    assert store.get_thread(thread.id).pending_handoff.to is Role.DOCTOR


def test_append_and_list_messages_in_order(store, user_id):
    thread = store.create_thread(user_id, Role.COORDINATOR)
    store.append_message(thread.id, user_id, Author.USER, "первое")
    store.append_message(thread.id, user_id, Author.ASSISTANT, "второе", {"speaker": "team"})
    store.append_message(thread.id, user_id, Author.USER, "третье")

    messages = store.list_messages(thread.id)

    assert [m.content for m in messages] == ["первое", "второе", "третье"]
    assert [m.role for m in messages] == ["user", "assistant", "user"]
    assert messages[1].metadata_ == {"speaker": "team"}
    assert messages[0].metadata_ == {}


def test_list_messages_returns_last_n_oldest_first(store, user_id):
    thread = store.create_thread(user_id, Role.COORDINATOR)
    for i in range(5):
        store.append_message(thread.id, user_id, Author.USER, f"m{i}")

    assert [m.content for m in store.list_messages(thread.id, limit=2)] == ["m3", "m4"]


def test_list_messages_is_scoped_to_thread(store, user_id):
    first = store.create_thread(user_id, Role.COORDINATOR)
    second = store.create_thread(user_id, Role.TRAINER)
    store.append_message(first.id, user_id, Author.USER, "в команду")
    store.append_message(second.id, user_id, Author.USER, "тренеру")

    assert [m.content for m in store.list_messages(second.id)] == ["тренеру"]


def test_message_to_dict(store, user_id):
    thread = store.create_thread(user_id, Role.COORDINATOR)
    message = store.append_message(thread.id, user_id, Author.ASSISTANT, "ok", {"speaker": "doctor"})

    data = message.to_dict()
    assert data["thread_id"] == str(thread.id)
    assert data["role"] == "assistant"
    assert data["metadata"] == {"speaker": "doctor"}
    assert data["created_at"]


def test_database_errors_become_persistence_errors():
    db = MagicMock()
    db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
    store = ChatStore(db)

    with pytest.raises(PersistenceError) as exc_info:
        store.create_thread(uuid4(), Role.COORDINATOR)

    assert exc_info.value.status_code == 500
    assert exc_info.value.error_code == "PERSISTENCE_ERROR"
    db.rollback.assert_called_once()
