import threading
import time

import pytest

from app.core.errors import NotFoundError
from app.services.session_state import FinishReason, Session
from app.services.session_store import SessionStore


def _session(sid: str = "quiz_test") -> Session:
    return Session(session_id=sid, phase_number=1, locale="en", total_questions=10)


def test_create_then_get_returns_snapshot(store):
    store.create(_session())
    snap = store.get("quiz_test")
    snap.score = 999
    assert store.get("quiz_test").score == 0


def test_consecutive_reads_are_identical(store):
    store.create(_session())
    assert store.get("quiz_test") == store.get("quiz_test")


def test_unknown_session_raises_not_found(store):
    with pytest.raises(NotFoundError):
        store.get("quiz_missing")
    with pytest.raises(NotFoundError):
        store.update("quiz_missing", lambda s: None)


def test_update_applies_mutator_and_returns_copy(store):
    store.create(_session())

    def bump(s):
        s.score += 10

    snap = store.update("quiz_test", bump)
    assert snap.score == 10
    assert store.get("quiz_test").score == 10


def test_mutator_exception_propagates(store):
    store.create(_session())

    def boom(s):
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        store.update("quiz_test", boom)
    # le verrou a été relâché
    assert store.update("quiz_test", lambda s: None).session_id == "quiz_test"


def test_idle_session_expires(store, clock):
    store.create(_session())
    clock.advance(3599)
    store.get("quiz_test")  # une lecture ne prolonge pas la session
    clock.advance(2)
    with pytest.raises(NotFoundError):
        store.get("quiz_test")
    assert len(store) == 0


def test_update_refreshes_activity(store, clock):
    store.create(_session())
    clock.advance(3000)
    store.update("quiz_test", lambda s: None)
    clock.advance(3000)
    assert store.get("quiz_test").session_id == "quiz_test"


def test_purge_expired(store, clock):
    store.create(_session("quiz_a"))
    clock.advance(4000)
    store.create(_session("quiz_b"))  # create purge les sessions expirées
    assert "quiz_a" not in store
    assert "quiz_b" in store
    assert store.purge_expired() == 0


def test_capacity_evicts_least_recently_used(clock):
    store = SessionStore(ttl_seconds=3600, max_sessions=2, clock=clock)
    store.create(_session("quiz_a"))
    store.create(_session("quiz_b"))
    store.get("quiz_a")  # quiz_b devient le moins récent
    store.create(_session("quiz_c"))
    assert "quiz_a" in store and "quiz_c" in store
    with pytest.raises(NotFoundError):
        store.get("quiz_b")


def test_delete(store):
    store.create(_session())
    assert store.delete("quiz_test") is True
    assert store.delete("quiz_test") is False
    with pytest.raises(NotFoundError):
        store.get("quiz_test")


def test_active_count_ignores_completed(store):
    store.create(_session("quiz_a"))
    store.create(_session("quiz_b"))
    store.update("quiz_b", lambda s: s.complete(FinishReason.completed))
    assert store.active_count() == 1


def test_concurrent_updates_on_same_session_are_serialized():
    store = SessionStore()
    store.create(_session())
    n = 20

    def slow_increment(s):
        # lecture / pause / écriture : perd des mises à jour sans verrou
        current = s.score
        time.sleep(0.005)
        s.score = current + 1

    threads = [threading.Thread(target=store.update, args=("quiz_test", slow_increment)) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("quiz_test").score == n


def test_different_sessions_do_not_block_each_other():
    store = SessionStore()
    store.create(_session("quiz_a"))
    store.create(_session("quiz_b"))
    inside = threading.Event()
    release = threading.Event()

    def hold(s):
        inside.set()
        release.wait(timeout=5)

    t = threading.Thread(target=store.update, args=("quiz_a", hold))
    t.start()
    assert inside.wait(timeout=5)
    try:
        # quiz_a est verrouillée, quiz_b reste accessible
        snap = store.update("quiz_b", lambda s: setattr(s, "score", 5))
        assert snap.score == 5
    finally:
        release.set()
        t.join()


def _evict_by_delete(store, clock):
    assert store.delete("quiz_a") is True


def _evict_by_ttl(store, clock):
    clock.advance(4000)
    assert store.purge_expired() == 1


@pytest.mark.parametrize("evict", [_evict_by_delete, _evict_by_ttl])
def test_update_waiting_on_an_evicted_session_raises_not_found(store, clock, evict):
    store.create(_session("quiz_a"))
    inside = threading.Event()
    release = threading.Event()

    def hold(s):
        inside.set()
        release.wait(timeout=5)

    holder = threading.Thread(target=store.update, args=("quiz_a", hold))
    holder.start()
    assert inside.wait(timeout=5)

    # signale quand le second appel a récupéré l'entrée et attend le verrou
    acquired = threading.Event()
    real_acquire = store._acquire_entry

    def acquire_and_signal(session_id):
        entry = real_acquire(session_id)
        acquired.set()
        return entry

    store._acquire_entry = acquire_and_signal

    applied = []
    errors = []

    def late_update():
        try:
            store.update("quiz_a", lambda s: applied.append(s.session_id))
        except NotFoundError as e:
            errors.append(e)

    waiter = threading.Thread(target=late_update)
    waiter.start()
    try:
        assert acquired.wait(timeout=5)
        evict(store, clock)
    finally:
        release.set()
        holder.join()
        waiter.join()

    assert applied == []
    assert len(errors) == 1
    assert "quiz_a" not in store
