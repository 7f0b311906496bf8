"""
Диспетчер запросов ProcessImage.

Единственная операция сервиса — process_one_image(request) -> response.
Диспетчер владеет пулом воркеров: создаёт задачу, ставит в очередь
и блокирует вызывающий поток до срабатывания гейта своей задачи.

Для HTTP слоя та же операция разбита на шаги submit / wait_for / cancel,
чтобы между ними можно было следить за отключением клиента.
"""

import logging
from typing import Optional

from ocr_pool.config import settings
from ocr_pool.schemas import ImageRequest, OCRResponse
from ocr_pool.services.pipeline import process_image
from ocr_pool.services.task_queue import Task
from ocr_pool.services.worker_pool import Pipeline, WorkerPool

logger = logging.getLogger(__name__)


class OCRDispatcher:
    """
    Диспетчер: запрос → задача → пул → ответ.

    Args:
        num_threads: количество воркеров
        pipeline: функция распознавания (по умолчанию полный пайплайн)
        max_queue_size: ограничение очереди (0 = без ограничения)
        drain_on_shutdown: дообрабатывать очередь при остановке
        report_sentinel_failures: success=False для sentinel-результатов
    """

    def __init__(
        self,
        num_threads: int = 4,
        pipeline: Pipeline = process_image,
        max_queue_size: int = 0,
        drain_on_shutdown: bool = True,
        report_sentinel_failures: bool = False,
    ) -> None:
        self._pool = WorkerPool(
            num_threads,
            pipeline=pipeline,
            max_queue_size=max_queue_size,
            report_sentinel_failures=report_sentinel_failures,
        )
        self._drain_on_shutdown = drain_on_shutdown

    @classmethod
    def from_settings(cls, pipeline: Pipeline = process_image) -> "OCRDispatcher":
        """Диспетчер с параметрами из настроек сервиса."""
        return cls(
            num_threads=settings.threads,
            pipeline=pipeline,
            max_queue_size=settings.max_queue_size,
            drain_on_shutdown=settings.shutdown_mode == "drain",
            report_sentinel_failures=settings.report_sentinel_failures,
        )

    @property
    def num_threads(self) -> int:
        return self._pool.num_threads

    def start(self) -> None:
        self._pool.start()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        mode = "drain" if self._drain_on_shutdown else "discard"
        logger.info(f"Остановка пула ({mode})")
        self._pool.shutdown(drain=self._drain_on_shutdown, timeout=timeout)

    def stats(self) -> dict:
        return self._pool.stats()

    def process_one_image(
        self,
        request: ImageRequest,
        timeout: Optional[float] = None,
    ) -> OCRResponse:
        """
        Обрабатывает один запрос целиком.

        Блокирует вызывающий поток ровно на время обработки своей задачи.

        Args:
            request: запрос
            timeout: максимальное ожидание в секундах (None = без ограничения)

        Returns:
            OCRResponse: заполненный воркером ответ

        Raises:
            QueueFullError: очередь заполнена
            PoolStoppedError: сервис останавливается
            TaskCancelledError: истёк timeout
            TaskFailedError: пайплайн упал с непредвиденной ошибкой
        """
        task = self.submit(request)
        return self.wait_for(task, timeout)

    def submit(self, request: ImageRequest) -> Task:
        """Создаёт задачу и ставит её в очередь (не блокирует)."""
        task = Task(request=request)
        self._pool.submit(task)
        logger.debug(f"Задача {task.task_id} в очереди: {request.filename}")
        return task

    def wait_for(self, task: Task, timeout: Optional[float] = None) -> OCRResponse:
        """Блокирует до срабатывания гейта задачи."""
        return task.gate.wait(timeout)

    def cancel(self, task: Task) -> bool:
        """
        Отменяет задачу, если она ещё не завершена.

        Returns:
            bool: True — отмена принята (воркер не будет её обрабатывать,
                  или результат будет отброшен)
        """
        cancelled = task.gate.cancel()
        if cancelled:
            logger.info(f"Задача {task.task_id} отменена: {task.request.filename}")
        return cancelled
