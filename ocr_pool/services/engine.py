"""
OCR движок — обёртка над Tesseract (pytesseract).

Пайплайн создаёт отдельный экземпляр движка на каждый вызов:
у движка есть состояние (изображение, режим сегментации),
и делить его между потоками нельзя.

Интерфейс движка повторяет модель Tesseract API:
    инициализация (конструктор) → set_image → set_page_seg_mode → get_text
"""

import logging
from enum import IntEnum
from functools import lru_cache
from typing import Callable, Optional, Protocol

import pytesseract
from PIL import Image

from ocr_pool.config import settings
from ocr_pool.errors import EngineInitError

logger = logging.getLogger(__name__)


class PageSegMode(IntEnum):
    """Режимы сегментации страницы Tesseract (--psm)."""

    SINGLE_BLOCK = 6
    SINGLE_WORD = 8


class OCREngine(Protocol):
    """Интерфейс OCR движка, которым пользуется пайплайн."""

    def set_page_seg_mode(self, mode: PageSegMode) -> None:
        ...

    def set_image(self, image: Image.Image) -> None:
        ...

    def get_text(self) -> str:
        ...


# Фабрика движков: вызывается один раз на каждое изображение
EngineFactory = Callable[[], OCREngine]


class TesseractEngine:
    """
    Tesseract через pytesseract.

    Конструктор проверяет, что бинарник tesseract доступен и нужные
    языковые модели установлены. Иначе — EngineInitError.

    Args:
        lang: языки в формате Tesseract ("eng", "rus+eng")
        oem: OCR Engine Mode (1 = LSTM only)
        tessdata_dir: каталог с моделями (None = системный)
    """

    def __init__(
        self,
        lang: str = "eng",
        oem: int = 1,
        tessdata_dir: Optional[str] = None,
    ) -> None:
        self._lang = lang
        self._base_config = f"--oem {oem}"
        if tessdata_dir:
            self._base_config += f' --tessdata-dir "{tessdata_dir}"'

        self._mode = PageSegMode.SINGLE_BLOCK
        self._image: Optional[Image.Image] = None

        try:
            languages = available_languages(tessdata_dir)
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, OSError) as e:
            raise EngineInitError(f"Tesseract недоступен: {e}") from e

        missing = [code for code in lang.split("+") if code not in languages]
        if missing:
            raise EngineInitError(
                f"Нет языковых моделей Tesseract: {', '.join(missing)}"
            )

    def set_page_seg_mode(self, mode: PageSegMode) -> None:
        self._mode = mode

    def set_image(self, image: Image.Image) -> None:
        self._image = image

    def get_text(self) -> str:
        """
        Распознаёт текст на текущем изображении в текущем режиме.

        Raises:
            RuntimeError: если изображение не задано
            pytesseract.TesseractError: ошибка самого Tesseract
        """
        if self._image is None:
            raise RuntimeError("Изображение не задано (set_image)")

        config = f"{self._base_config} --psm {int(self._mode)}"
        return pytesseract.image_to_string(self._image, lang=self._lang, config=config)


@lru_cache(maxsize=None)
def available_languages(tessdata_dir: Optional[str] = None) -> frozenset[str]:
    """
    Установленные языковые модели Tesseract.

    Список запрашивается у бинарника один раз на каталог tessdata:
    иначе каждый движок запускал бы лишний процесс tesseract --list-langs.
    Ошибки не кэшируются.
    """
    config = f'--tessdata-dir "{tessdata_dir}"' if tessdata_dir else ""
    return frozenset(pytesseract.get_languages(config=config))


def default_engine_factory() -> OCREngine:
    """Движок с параметрами из настроек сервиса."""
    return TesseractEngine(
        lang=settings.ocr_lang,
        oem=settings.ocr_oem,
        tessdata_dir=settings.tessdata_dir,
    )
