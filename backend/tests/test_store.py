from datetime import timedelta
import threading

import pytest

from scoreguard import db
from scoreguard.models import GameSession, GameTitle, User, utcnow
from scoreguard.services.sessions.store import (
    DURABLE,
    MEMORY,
    DualModeSessionStore,
    MemorySessionStore,
    NotProvisioned,
    SqlSessionStore,
)


@pytest.fixture()
def ids(app_ctx):
    user = User(username='store-user')
    user.set_password('password')
    db.session.add(user)
    db.session.commit()
    game = GameTitle.query.filter_by(slug='memory-match').one()
    return user.id, game.id


def test_durable_completion_is_conditional(ids):
    user_id, game_id = ids
    store = SqlSessionStore()
    record = store.create_session(user_id, game_id, start_ip='1.2.3.4')
    assert record.source == DURABLE
    assert record.is_started

    assert store.mark_completed(record.id, 500, 60000) is True
    assert store.mark_completed(record.id, 900, 60000) is False
    fresh = store.get_session(record.id)
    assert fresh.status == 'completed'
    assert fresh.score == 500
    assert store.mark_completed('missing', 1, 1) is False


def test_durable_reward_is_recorded_once(ids):
    user_id, game_id = ids
    store = SqlSessionStore()
    record = store.create_session(user_id, game_id)
    assert store.record_reward(record.id, user_id, 5, 10) is True
    assert store.record_reward(record.id, user_id, 5, 10) is False
    assert store.reward_totals(user_id) == (5, 10)
    assert [r.session_id for r in store.recent_rewards(user_id)] == [record.id]


def test_missing_table_is_not_provisioned(ids):
    user_id, game_id = ids
    db.session.remove()
    GameSession.__table__.drop(db.engine)
    with pytest.raises(NotProvisioned) as info:
        SqlSessionStore().get_session('anything')
    assert info.value.missing_tables == ['game_session']


def test_dual_store_falls_back_per_call(ids, app_ctx):
    user_id, game_id = ids
    store = DualModeSessionStore(SqlSessionStore(), MemorySessionStore(), app_ctx.logger)
    durable_record = store.create_session(user_id, game_id)
    assert durable_record.source == DURABLE

    db.session.remove()
    GameSession.__table__.drop(db.engine)
    memory_record = store.create_session(user_id, game_id)
    assert memory_record.source == MEMORY
    assert store.get_session(memory_record.id).nonce == memory_record.nonce
    assert store.get_session(durable_record.id) is None

    assert store.mark_completed(memory_record, 10, 20000) is True
    assert store.mark_completed(memory_record, 10, 20000) is False


def test_memory_store_returns_copies():
    store = MemorySessionStore()
    record = store.create_session(1, 1)
    record.status = 'completed'
    assert store.get_session(record.id).status == 'started'


def test_memory_store_single_winner_under_threads():
    store = MemorySessionStore()
    record = store.create_session(1, 1)
    barrier = threading.Barrier(8)
    results = []

    def worker(score):
        barrier.wait()
        results.append(store.mark_completed(record.id, score, 30000))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert store.get_session(record.id).status == 'completed'


def test_memory_store_rewards_and_queries():
    store = MemorySessionStore()
    a = store.create_session(1, 1, device_hash='dev')
    b = store.create_session(2, 1, device_hash='dev')
    store.create_session(3, 1, device_hash='other')
    since = utcnow() - timedelta(hours=1)
    assert store.users_for_device('dev', since) == [1, 2]

    assert store.record_reward(a.id, 1, 5, 10) is True
    assert store.record_reward(a.id, 1, 5, 10) is False
    assert store.record_reward('missing', 1, 5, 10) is False
    assert store.reward_totals(1) == (5, 10)
    assert store.reward_totals(2) == (0, 0)

    store.mark_completed(b.id, 100, 20000)
    assert len(store.completed_at_since(2, since)) == 1
    assert store.completed_at_since(1, since) == []
