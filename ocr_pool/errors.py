"""
Исключения OCR Pool.

Две группы:
    - Ошибки пайплайна (DecodeError, EngineInitError, EmptyResultError):
      никогда не выходят за пределы пайплайна, превращаются в sentinel-текст
    - Ошибки диспетчеризации (QueueFullError, PoolStoppedError,
      TaskCancelledError, TaskFailedError): доходят до HTTP слоя
      и возвращаются клиенту как ошибка транспорта
"""

__all__ = [
    "OCRPoolError",
    "DecodeError",
    "EngineInitError",
    "EmptyResultError",
    "QueueFullError",
    "PoolStoppedError",
    "TaskCancelledError",
    "TaskFailedError",
    "OCRClientError",
]


class OCRPoolError(Exception):
    """Базовое исключение сервиса."""


class DecodeError(OCRPoolError):
    """Байты изображения не удалось декодировать."""


class EngineInitError(OCRPoolError):
    """OCR движок (Tesseract) не удалось инициализировать."""


class EmptyResultError(OCRPoolError):
    """Оба прохода распознавания не дали пригодного текста."""


class QueueFullError(OCRPoolError):
    """Очередь задач заполнена, новая задача отклонена."""


class PoolStoppedError(OCRPoolError):
    """Пул остановлен или останавливается, задача не будет обработана."""


class TaskCancelledError(OCRPoolError):
    """Задача отменена обработчиком (таймаут или отключение клиента)."""


class TaskFailedError(OCRPoolError):
    """Пайплайн упал с непредвиденной ошибкой."""


class OCRClientError(OCRPoolError):
    """Ошибка на стороне клиента: сервер вернул не-200 или пустой поток."""
