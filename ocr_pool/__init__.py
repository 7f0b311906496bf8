"""
OCR Pool — сервис распознавания текста на изображениях.

Принимает одно изображение на вызов, прогоняет его через пайплайн
предобработки и Tesseract в фиксированном пуле потоков,
возвращает текст, обработанное изображение и время обработки.
"""

from ocr_pool.config import settings
from ocr_pool.schemas import ImageRequest, OCRResponse, PipelineResult

__all__ = [
    "settings",
    "ImageRequest",
    "OCRResponse",
    "PipelineResult",
]
