"""
Сервисы OCR Pool.

Модули:
    - image_ops: декодирование и предобработка изображений
    - engine: OCR движок (Tesseract)
    - pipeline: пайплайн распознавания одного изображения
    - task_queue: задачи, гейт завершения, FIFO очередь
    - worker_pool: пул потоков над очередью
    - dispatcher: process_one_image — точка входа для транспорта
"""

from ocr_pool.services.dispatcher import OCRDispatcher
from ocr_pool.services.pipeline import process_image
from ocr_pool.services.task_queue import CompletionGate, Task, TaskQueue
from ocr_pool.services.worker_pool import WorkerPool

__all__ = [
    "OCRDispatcher",
    "process_image",
    "CompletionGate",
    "Task",
    "TaskQueue",
    "WorkerPool",
]
