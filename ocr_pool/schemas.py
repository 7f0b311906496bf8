"""
Схемы данных OCR Pool.

Включает:
    - Pydantic модели запроса/ответа ProcessImage
    - Внутренний dataclass результата пайплайна
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict


class ImageRequest(BaseModel):
    """
    Запрос на распознавание одного изображения.

    Неизменяемый снимок: после создания задачи воркер видит
    ровно те данные, которые пришли от клиента.

    Attributes:
        filename: имя файла (для логов и ответа)
        image_data: закодированное изображение (PNG, JPEG, TIFF, ...)
        batch_id: номер пачки на стороне клиента
        image_id: номер изображения, по которому клиент сопоставляет ответ
    """

    model_config = ConfigDict(frozen=True)

    filename: str
    image_data: bytes
    batch_id: int = 0
    image_id: int = 0


class OCRResponse(BaseModel):
    """
    Ответ на распознавание одного изображения.

    processed_image в JSON передаётся в base64.

    Attributes:
        image_id: номер изображения из запроса
        filename: имя файла из запроса
        extracted_text: распознанный текст или sentinel-строка
        processing_time_ms: время пайплайна в миллисекундах
        success: True, если запрос обработан (см. report_sentinel_failures)
        processed_image: финальное изображение в PNG (пусто при ошибке)
    """

    model_config = ConfigDict(
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    image_id: int
    filename: str
    extracted_text: str
    processing_time_ms: float
    success: bool = True
    processed_image: bytes = b""


@dataclass
class PipelineResult:
    """
    Результат пайплайна для одного изображения.

    Attributes:
        text: итоговый текст или sentinel
        elapsed_ms: время выполнения шагов 1-11
        processed_image: финальное изображение в PNG
        failed: True, если text — это sentinel
    """

    text: str
    elapsed_ms: float
    processed_image: bytes = b""
    failed: bool = False
