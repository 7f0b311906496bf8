"""
Задачи и очередь задач пула воркеров.

Содержит:
    - CompletionGate: одноразовый сигнал завершения задачи, он же слот результата
    - Task: запрос + гейт
    - TaskQueue: потокобезопасная FIFO очередь

Гейт принадлежит задаче, а не обработчику запроса: если обработчик
перестал ждать (таймаут, отключение клиента), поздний сигнал воркера
просто записывается в гейт и никого не будит.
"""

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from ocr_pool.errors import PoolStoppedError, QueueFullError, TaskCancelledError
from ocr_pool.schemas import ImageRequest

logger = logging.getLogger(__name__)

_task_ids = itertools.count(1)


class CompletionGate:
    """
    Одноразовый сигнал завершения задачи.

    Слот результата записывается ровно один раз и строго до того,
    как ожидающий поток будет разбужен. Повторный fire() — ошибка.

    Ожидающая сторона может отменить гейт, пока он не сработал:
    воркер увидит отмену и не станет запускать пайплайн.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._fired = False
        self._cancelled = False
        self._value: Any = None
        self._error: Optional[BaseException] = None

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def fire(self, value: Any = None, error: Optional[BaseException] = None) -> bool:
        """
        Записывает результат (или ошибку) и будит ожидающего.

        Args:
            value: результат задачи
            error: исключение, которое получит ожидающий вместо результата

        Returns:
            bool: False, если ожидающий уже отменил задачу (результат никто не заберёт)

        Raises:
            RuntimeError: если гейт уже сработал
        """
        with self._lock:
            if self._fired:
                raise RuntimeError("Гейт уже сработал")
            self._value = value
            self._error = error
            self._fired = True
            delivered = not self._cancelled
        self._event.set()
        return delivered

    def cancel(self) -> bool:
        """
        Отменяет ожидание.

        Returns:
            bool: True, если отмена принята; False, если гейт уже сработал
                  и результат можно забрать
        """
        with self._lock:
            if self._fired:
                return False
            self._cancelled = True
            return True

    def wait(self, timeout: Optional[float] = None) -> Any:
        """
        Ждёт срабатывания гейта.

        При таймауте гейт отменяется. Если воркер успел записать
        результат между таймаутом и отменой — результат возвращается.

        Args:
            timeout: секунды ожидания (None = без ограничения)

        Returns:
            значение, переданное в fire()

        Raises:
            TaskCancelledError: истёк таймаут
            исключение, переданное в fire(error=...)
        """
        if not self._event.wait(timeout):
            if self.cancel():
                raise TaskCancelledError(f"Результат не получен за {timeout} с")
            # Сработал одновременно с таймаутом
            self._event.wait()

        if self._error is not None:
            raise self._error
        return self._value


@dataclass
class Task:
    """
    Единица работы пула.

    Attributes:
        request: неизменяемый снимок запроса
        gate: сигнал завершения и слот результата
        task_id: уникальный номер задачи в процессе
    """

    request: ImageRequest
    gate: CompletionGate = field(default_factory=CompletionGate)
    task_id: int = field(default_factory=lambda: next(_task_ids))


class TaskQueue:
    """
    Потокобезопасная FIFO очередь задач.

    Один lock защищает и очередь, и флаг остановки.
    Condition будит воркеров при появлении задачи или остановке.

    Args:
        max_size: максимальная длина очереди (0 = без ограничения)
    """

    def __init__(self, max_size: int = 0) -> None:
        self._tasks: deque[Task] = deque()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._stopping = False
        self._max_size = max_size

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    @property
    def stopping(self) -> bool:
        with self._lock:
            return self._stopping

    def push(self, task: Task) -> None:
        """
        Добавляет задачу в конец очереди и будит одного воркера.

        Не блокирует вызывающего.

        Raises:
            PoolStoppedError: очередь остановлена
            QueueFullError: достигнут max_size
        """
        with self._lock:
            if self._stopping:
                raise PoolStoppedError("Сервис останавливается, задачи не принимаются")
            if self._max_size and len(self._tasks) >= self._max_size:
                raise QueueFullError(
                    f"Очередь заполнена: {len(self._tasks)} из {self._max_size}"
                )
            self._tasks.append(task)
            self._not_empty.notify()

    def pop(self) -> Optional[Task]:
        """
        Забирает задачу из начала очереди.

        Блокирует, пока не появится задача или очередь не остановят.

        Returns:
            Task или None — очередь остановлена и пуста, воркеру пора выходить
        """
        with self._not_empty:
            self._not_empty.wait_for(lambda: self._tasks or self._stopping)
            if self._tasks:
                return self._tasks.popleft()
            return None

    def stop(self, drain: bool = True) -> list[Task]:
        """
        Останавливает очередь и будит всех воркеров.

        Args:
            drain: True — оставшиеся задачи будут дообработаны воркерами,
                   False — задачи удаляются из очереди и возвращаются

        Returns:
            list[Task]: отброшенные задачи (пусто при drain=True)
        """
        with self._lock:
            self._stopping = True
            discarded: list[Task] = []
            if not drain:
                discarded = list(self._tasks)
                self._tasks.clear()
            self._not_empty.notify_all()

        if discarded:
            logger.info(f"Очередь остановлена, отброшено задач: {len(discarded)}")
        return discarded
