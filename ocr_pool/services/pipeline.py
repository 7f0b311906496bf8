"""
Пайплайн распознавания одного изображения.

Шаги (порядок фиксирован):
    1. Декодирование
    2. Grayscale
    3. Upscale до 500x250, если изображение меньше
    4. Sharpen (unsharp mask)
    5. Нормализация контраста
    6. Бинаризация (фон + Otsu)
    7. PNG финального изображения → processed_image
    8. OCR в режиме "блок текста" + фильтр символов
    9. Повтор в режиме "одно слово", если текста < 2 символов
    10. Чистка \\r, \\t и крайних пробелов/переводов строк
    11. Пустой текст → [UNREADABLE]

Шаги 4-6 — best-effort: если фильтр не дал результата, дальше идёт
предыдущее изображение. Прерывают пайплайн только ошибка декодирования
и ошибка инициализации Tesseract — обе превращаются в sentinel-текст.
К ошибке декодирования относятся и изображения, которые нельзя свести
к grayscale или увеличить без превышения предела по пикселям.

Функция реентерабельна: общего изменяемого состояния нет,
движок OCR создаётся на каждый вызов.
"""

import logging
import time
from typing import Optional

from PIL import Image

from ocr_pool.errors import DecodeError, EmptyResultError, EngineInitError
from ocr_pool.schemas import PipelineResult
from ocr_pool.services.engine import (
    EngineFactory,
    OCREngine,
    PageSegMode,
    default_engine_factory,
)
from ocr_pool.services.image_ops import (
    binarize,
    decode_image,
    encode_png,
    normalize_contrast,
    sharpen,
    to_grayscale,
    upscale_to_minimum,
)

logger = logging.getLogger(__name__)

# Sentinel-тексты: клиент обязан отличать их от распознанного текста
UNABLE_TO_OPEN = "[ERROR: Unable to open image]"
ENGINE_INIT_FAILED = "[ERROR: Tesseract initialization failed]"
UNREADABLE = "[UNREADABLE]"

SENTINELS = frozenset({UNABLE_TO_OPEN, ENGINE_INIT_FAILED, UNREADABLE})

# Tesseract плохо читает мелкий текст: маленькие изображения увеличиваем
MIN_WIDTH = 500
MIN_HEIGHT = 250

# Короче: повторяем распознавание в режиме одного слова
MIN_TEXT_LENGTH = 2


def process_image(
    image_data: bytes,
    engine_factory: Optional[EngineFactory] = None,
) -> PipelineResult:
    """
    Распознаёт текст на изображении.

    Args:
        image_data: закодированное изображение
        engine_factory: фабрика OCR движка (по умолчанию Tesseract из настроек)

    Returns:
        PipelineResult: текст (или sentinel), время, PNG финального изображения
    """
    start = time.perf_counter()
    factory = engine_factory or default_engine_factory

    # 1-6. Декодирование и предобработка
    try:
        final_image = preprocess(decode_image(image_data))
    except DecodeError as e:
        logger.warning(f"Не удалось открыть изображение: {e}")
        return PipelineResult(
            text=UNABLE_TO_OPEN,
            elapsed_ms=_elapsed_ms(start),
            failed=True,
        )

    # 7. Финальное изображение уходит клиенту
    processed_image = encode_png(final_image)

    # 8. Движок создаётся на каждый вызов
    try:
        engine = factory()
    except EngineInitError as e:
        logger.error(f"Ошибка инициализации OCR: {e}")
        return PipelineResult(
            text=ENGINE_INIT_FAILED,
            elapsed_ms=_elapsed_ms(start),
            failed=True,
        )

    # 8-11. Распознавание и чистка текста
    try:
        text = recognize(engine, final_image)
        failed = False
    except EmptyResultError:
        text = UNREADABLE
        failed = True

    return PipelineResult(
        text=text,
        elapsed_ms=_elapsed_ms(start),
        processed_image=processed_image,
        failed=failed,
    )


def preprocess(image: Image.Image) -> Image.Image:
    """
    Шаги 2-6: grayscale → upscale → sharpen → контраст → бинаризация.

    Returns:
        Image.Image: самое обработанное изображение, которое удалось получить

    Raises:
        DecodeError: режим не сводится к grayscale или upscale слишком велик
    """
    gray = to_grayscale(image)
    current = upscale_to_minimum(gray, MIN_WIDTH, MIN_HEIGHT)

    sharpened = sharpen(current)
    if sharpened is not None:
        current = sharpened

    contrasted = normalize_contrast(current)
    if contrasted is not None:
        current = contrasted
    else:
        logger.debug("Нормализация контраста без результата, оставляем как есть")

    binary = binarize(current)
    if binary is None:
        logger.debug("Бинаризация без результата, распознаём небинарное изображение")
        return current

    return binary


def recognize(engine: OCREngine, image: Image.Image) -> str:
    """
    Шаги 8-11: распознавание с повтором и чистка текста.

    Raises:
        EmptyResultError: если после обоих проходов текст пустой
    """
    text = filter_printable(_run_ocr(engine, image, PageSegMode.SINGLE_BLOCK))

    if len(text) < MIN_TEXT_LENGTH:
        logger.debug(f"Мало текста ({len(text)} символов), повтор в режиме одного слова")
        text = filter_printable(_run_ocr(engine, image, PageSegMode.SINGLE_WORD))

    text = clean_text(text)
    if not text:
        raise EmptyResultError("Текст не распознан")

    return text


def filter_printable(text: str) -> str:
    """
    Оставляет только печатный ASCII (0x20-0x7E) и перевод строки.

    Идемпотентна: filter_printable(filter_printable(s)) == filter_printable(s).
    """
    return "".join(ch for ch in text if ch == "\n" or " " <= ch <= "~")


def clean_text(text: str) -> str:
    """Убирает \\r и \\t, обрезает пробелы и переводы строк по краям."""
    text = text.replace("\r", "").replace("\t", "")
    return text.strip(" \n")


def is_sentinel(text: str) -> bool:
    return text in SENTINELS


def _run_ocr(engine: OCREngine, image: Image.Image, mode: PageSegMode) -> str:
    """Один проход OCR; ошибка распознавания = пустой текст."""
    engine.set_page_seg_mode(mode)
    engine.set_image(image)
    try:
        return engine.get_text() or ""
    except Exception as e:
        logger.warning(f"Ошибка OCR (psm={int(mode)}): {e}")
        return ""


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
