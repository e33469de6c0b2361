import gc
import threading

import pytest

from app.services.flow_runtime import ConversationLocks, DelayScheduler


class TestConversationLocks:

    def test_same_conversation_same_lock(self):
        locks = ConversationLocks()
        first, again, other = locks.get(1), locks.get(1), locks.get(2)

        assert first is again
        assert first is not other
        assert len(locks) == 2

    def test_unused_locks_are_released(self):
        locks = ConversationLocks()
        held = locks.get(1)
        locks.get(2)
        gc.collect()

        assert len(locks) == 1
        assert locks.get(1) is held

    def test_lock_is_reentrant(self):
        lock = ConversationLocks().get(1)
        with lock:
            with lock:
                pass

    def test_lock_serializes_threads(self):
        locks = ConversationLocks()
        inside = threading.Event()
        release = threading.Event()
        entered = []

        def hold():
            with locks.get(7):
                inside.set()
                release.wait(2)

        def contend():
            with locks.get(7):
                entered.append(True)

        holder = threading.Thread(target=hold)
        holder.start()
        inside.wait(2)
        contender = threading.Thread(target=contend)
        contender.start()
        contender.join(0.1)

        assert entered == []
        release.set()
        holder.join(2)
        contender.join(2)
        assert entered == [True]


@pytest.fixture
def delay_scheduler():
    scheduler = DelayScheduler()
    yield scheduler
    scheduler.shutdown()


@pytest.mark.slow
class TestDelayScheduler:

    def test_callback_runs_with_args(self, delay_scheduler):
        done = threading.Event()
        seen = []

        def callback(execution_id, node_id):
            seen.append((execution_id, node_id))
            done.set()

        delay_scheduler.schedule(10, callback, 5, "wait")

        assert done.wait(5)
        assert seen == [(5, "wait")]

    def test_failing_job_does_not_stop_the_scheduler(self, delay_scheduler):
        done = threading.Event()

        def boom():
            raise RuntimeError("boom")

        delay_scheduler.schedule(0, boom)
        delay_scheduler.schedule(50, done.set)

        assert done.wait(5)

    def test_cancel_all(self, delay_scheduler):
        fired = []
        delay_scheduler.schedule(60_000, fired.append, 1)
        delay_scheduler.schedule(60_000, fired.append, 2)

        assert delay_scheduler.pending() == 2
        assert delay_scheduler.cancel_all() == 2
        assert delay_scheduler.pending() == 0
        assert fired == []
