"""Тесты очереди задач и гейта завершения."""

import threading
import time

import pytest

from ocr_pool.errors import PoolStoppedError, QueueFullError, TaskCancelledError
from ocr_pool.services.task_queue import CompletionGate, Task, TaskQueue
from tests.conftest import make_request


def _task(image_id: int) -> Task:
    return Task(request=make_request(image_id))


# =============================================================================
# TaskQueue
# =============================================================================


def test_fifo_order() -> None:
    queue = TaskQueue()
    tasks = [_task(i) for i in range(20)]
    for task in tasks:
        queue.push(task)

    popped = [queue.pop() for _ in range(20)]

    assert [t.request.image_id for t in popped] == list(range(20))
    assert len(queue) == 0


def test_task_ids_are_unique() -> None:
    ids = {_task(i).task_id for i in range(100)}
    assert len(ids) == 100


def test_pop_blocks_until_push() -> None:
    queue = TaskQueue()
    received = []

    def consumer():
        received.append(queue.pop())

    thread = threading.Thread(target=consumer)
    thread.start()
    time.sleep(0.05)
    assert received == []

    task = _task(1)
    queue.push(task)
    thread.join(2)

    assert received == [task]


def test_pop_returns_none_after_stop_on_empty_queue() -> None:
    queue = TaskQueue()
    results = []

    threads = [threading.Thread(target=lambda: results.append(queue.pop())) for _ in range(3)]
    for thread in threads:
        thread.start()

    time.sleep(0.05)
    queue.stop()
    for thread in threads:
        thread.join(2)

    assert results == [None, None, None]


def test_stop_drain_keeps_pending_tasks() -> None:
    queue = TaskQueue()
    queue.push(_task(1))
    queue.push(_task(2))

    assert queue.stop(drain=True) == []
    assert queue.pop().request.image_id == 1
    assert queue.pop().request.image_id == 2
    assert queue.pop() is None


def test_stop_discard_returns_pending_tasks() -> None:
    queue = TaskQueue()
    tasks = [_task(i) for i in range(3)]
    for task in tasks:
        queue.push(task)

    assert queue.stop(drain=False) == tasks
    assert len(queue) == 0
    assert queue.pop() is None


def test_push_after_stop_rejected() -> None:
    queue = TaskQueue()
    queue.stop()

    with pytest.raises(PoolStoppedError):
        queue.push(_task(1))


def test_bounded_queue_rejects_when_full() -> None:
    queue = TaskQueue(max_size=2)
    queue.push(_task(1))
    queue.push(_task(2))

    with pytest.raises(QueueFullError):
        queue.push(_task(3))

    # Освободилось место: снова принимает
    queue.pop()
    queue.push(_task(3))
    assert len(queue) == 2


def test_concurrent_producers_and_consumers_lose_nothing() -> None:
    queue = TaskQueue()
    consumed = []
    consumed_lock = threading.Lock()

    def producer(offset: int):
        for i in range(100):
            queue.push(_task(offset + i))

    def consumer():
        while True:
            task = queue.pop()
            if task is None:
                return
            with consumed_lock:
                consumed.append(task.request.image_id)

    consumers = [threading.Thread(target=consumer) for _ in range(4)]
    producers = [threading.Thread(target=producer, args=(n * 1000,)) for n in range(5)]
    for thread in consumers + producers:
        thread.start()
    for thread in producers:
        thread.join(5)

    queue.stop(drain=True)
    for thread in consumers:
        thread.join(5)

    expected = [n * 1000 + i for n in range(5) for i in range(100)]
    assert sorted(consumed) == expected


# =============================================================================
# CompletionGate
# =============================================================================


def test_gate_delivers_value_once() -> None:
    gate = CompletionGate()

    assert gate.fire("result") is True
    assert gate.fired
    assert gate.wait(0) == "result"

    with pytest.raises(RuntimeError):
        gate.fire("second")
    # Первый результат не перезаписан
    assert gate.wait(0) == "result"


def test_gate_delivers_error() -> None:
    gate = CompletionGate()
    gate.fire(error=PoolStoppedError("stopped"))

    with pytest.raises(PoolStoppedError):
        gate.wait(0)


def test_gate_wakes_waiter_after_value_written() -> None:
    gate = CompletionGate()
    seen = []

    def waiter():
        seen.append(gate.wait(2))

    thread = threading.Thread(target=waiter)
    thread.start()
    time.sleep(0.05)
    assert seen == []

    gate.fire({"text": "INVOICE"})
    thread.join(2)

    assert seen == [{"text": "INVOICE"}]


def test_gate_timeout_cancels_and_absorbs_late_fire() -> None:
    gate = CompletionGate()

    with pytest.raises(TaskCancelledError):
        gate.wait(0.01)

    assert gate.cancelled
    # Поздний сигнал воркера записывается без ошибки, но никому не доставлен
    assert gate.fire("late") is False


def test_gate_cancel_after_fire_is_rejected() -> None:
    gate = CompletionGate()
    gate.fire("done")

    assert gate.cancel() is False
    assert not gate.cancelled
    assert gate.wait(0) == "done"
