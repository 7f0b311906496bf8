"""
Пул воркеров OCR.

N долгоживущих потоков забирают задачи из общей TaskQueue,
прогоняют изображение через пайплайн, заполняют ответ
и срабатывают гейт задачи ровно один раз.

Остановка:
    - drain: очередь дообрабатывается, потом потоки выходят
    - discard: необработанные задачи завершаются с PoolStoppedError
В обоих режимах задача, которая уже в работе, доводится до конца.
"""

import logging
import threading
from typing import Callable, Optional

from ocr_pool.errors import PoolStoppedError, TaskCancelledError, TaskFailedError
from ocr_pool.schemas import OCRResponse, PipelineResult
from ocr_pool.services.pipeline import process_image
from ocr_pool.services.task_queue import Task, TaskQueue

logger = logging.getLogger(__name__)

Pipeline = Callable[[bytes], PipelineResult]


class WorkerPool:
    """
    Фиксированный пул потоков над TaskQueue.

    Args:
        num_threads: количество воркеров
        pipeline: функция bytes -> PipelineResult (реентерабельная)
        max_queue_size: ограничение очереди (0 = без ограничения)
        report_sentinel_failures: success=False для sentinel-результатов
    """

    def __init__(
        self,
        num_threads: int,
        pipeline: Pipeline = process_image,
        max_queue_size: int = 0,
        report_sentinel_failures: bool = False,
    ) -> None:
        if num_threads < 1:
            raise ValueError(f"num_threads должен быть >= 1, получено {num_threads}")

        self.num_threads = num_threads
        self._pipeline = pipeline
        self._report_sentinel_failures = report_sentinel_failures
        self._queue = TaskQueue(max_size=max_queue_size)
        self._threads: list[threading.Thread] = []

        self._stats_lock = threading.Lock()
        self._counters = {"completed": 0, "cancelled": 0, "failed": 0}

    @property
    def started(self) -> bool:
        return bool(self._threads)

    def start(self) -> None:
        """Запускает воркеров. Повторный запуск — ошибка."""
        if self._threads:
            raise RuntimeError("Пул уже запущен")

        for worker_id in range(self.num_threads):
            thread = threading.Thread(
                target=self._worker,
                args=(worker_id,),
                name=f"ocr-worker-{worker_id}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

        logger.info(f"[ThreadPool] Запущено воркеров: {self.num_threads}")

    def submit(self, task: Task) -> None:
        """
        Ставит задачу в очередь.

        Raises:
            PoolStoppedError: пул не запущен или останавливается
            QueueFullError: очередь заполнена
        """
        if not self._threads:
            raise PoolStoppedError("Пул не запущен")
        self._queue.push(task)

    def shutdown(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        """
        Останавливает пул и ждёт завершения потоков.

        Args:
            drain: дообработать очередь (True) или отбросить (False)
            timeout: ожидание каждого потока в секундах (None = без ограничения)
        """
        discarded = self._queue.stop(drain=drain)
        for task in discarded:
            task.gate.fire(error=PoolStoppedError("Сервис остановлен до начала обработки"))

        for thread in self._threads:
            thread.join(timeout)

        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            logger.warning(f"[ThreadPool] Не завершились за {timeout} с: {', '.join(alive)}")
        else:
            logger.info("[ThreadPool] Все воркеры остановлены")

    def stats(self) -> dict:
        """
        Статистика пула.

        Returns:
            dict: workers, queue_depth, completed, cancelled, failed
        """
        with self._stats_lock:
            return {
                "workers": self.num_threads,
                "alive_workers": sum(1 for t in self._threads if t.is_alive()),
                "queue_depth": len(self._queue),
                "stopping": self._queue.stopping,
                **self._counters,
            }

    def _worker(self, worker_id: int) -> None:
        """Цикл воркера: pop → пайплайн → ответ → гейт."""
        while True:
            task = self._queue.pop()
            if task is None:
                logger.debug(f"[Worker {worker_id}] Остановлен")
                return

            if task.gate.cancelled:
                logger.info(
                    f"[Worker {worker_id}] Пропуск отменённой задачи: {task.request.filename}"
                )
                self._count("cancelled")
                task.gate.fire(error=TaskCancelledError("Задача отменена до начала обработки"))
                continue

            self._run_task(worker_id, task)

    def _run_task(self, worker_id: int, task: Task) -> None:
        request = task.request
        logger.info(f"[Worker {worker_id}] Обработка: {request.filename} (task={task.task_id})")

        try:
            result = self._pipeline(request.image_data)
        except Exception as e:
            logger.exception(f"[Worker {worker_id}] Ошибка пайплайна: {request.filename}: {e}")
            self._count("failed")
            task.gate.fire(error=TaskFailedError(str(e)))
            return

        response = OCRResponse(
            image_id=request.image_id,
            filename=request.filename,
            extracted_text=result.text,
            processing_time_ms=result.elapsed_ms,
            success=not (self._report_sentinel_failures and result.failed),
            processed_image=result.processed_image,
        )

        logger.info(
            f"[Worker {worker_id}] Готово: {request.filename} - \"{result.text}\" "
            f"({result.elapsed_ms:.0f}ms)"
        )

        self._count("completed")
        if not task.gate.fire(response):
            logger.info(f"[Worker {worker_id}] Результат никто не ждёт: {request.filename}")

    def _count(self, counter: str) -> None:
        with self._stats_lock:
            self._counters[counter] += 1
