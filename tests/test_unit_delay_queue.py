import time

import pytest

from broadcaster.jobs.queue import DelayQueue


def test_fifo_order_for_ready_messages(job_factory):
    q = DelayQueue()
    q.enqueue(job_factory("n1", "a"))
    q.enqueue(job_factory("n1", "b"))
    q.enqueue(job_factory("n1", "c"))
    got = [q.dequeue(block=False).job.recipient.recipient_id for _ in range(3)]
    assert got == ["a", "b", "c"]
    assert q.dequeue(block=False) is None


def test_new_messages_start_at_delivery_count_one(job_factory):
    q = DelayQueue()
    item = q.enqueue(job_factory("n1"))
    assert item.delivery_count == 1
    assert item.message_id
    assert item.enqueued_time_utc.tzinfo is not None


def test_delayed_message_invisible_until_ready(job_factory):
    q = DelayQueue()
    q.enqueue(job_factory("n1", "later"), delay_seconds=0.2)
    assert q.dequeue(block=False) is None
    assert q.snapshot()["scheduled"] == 1
    item = q.dequeue(timeout=2)
    assert item is not None
    assert item.job.recipient.recipient_id == "later"


def test_blocking_dequeue_times_out_when_empty():
    q = DelayQueue()
    start = time.time()
    assert q.dequeue(timeout=0.1) is None
    assert time.time() - start < 1.0


def test_abandon_redelivers_with_incremented_count(job_factory):
    q = DelayQueue(max_delivery_count=3)
    q.enqueue(job_factory("n1"))
    item = q.dequeue(block=False)
    assert q.abandon(item) is True
    again = q.dequeue(block=False)
    assert again.delivery_count == 2
    assert again.message_id == item.message_id
    assert again.job == item.job


def test_abandon_dead_letters_at_max_delivery_count(job_factory):
    q = DelayQueue(max_delivery_count=2)
    q.enqueue(job_factory("n1"))
    item = q.dequeue(block=False)
    assert q.abandon(item) is True
    item = q.dequeue(block=False)
    assert item.delivery_count == 2
    assert q.abandon(item) is False
    assert q.depth() == 0
    dead = q.dead_letters()
    assert len(dead) == 1
    assert dead[0].delivery_count == 2
    assert q.snapshot()["dead_letter"] == 1


def test_purge_clears_everything(job_factory):
    q = DelayQueue(max_delivery_count=1)
    q.enqueue(job_factory("n1", "a"))
    q.enqueue(job_factory("n1", "b"), delay_seconds=60)
    q.abandon(q.dequeue(block=False))
    q.purge()
    snap = q.snapshot()
    assert snap["depth"] == 0
    assert snap["dead_letter"] == 0


def test_enqueue_after_shutdown_rejected(job_factory):
    q = DelayQueue()
    q.shutdown()
    with pytest.raises(RuntimeError):
        q.enqueue(job_factory("n1"))
    assert q.dequeue(timeout=0.1) is None
