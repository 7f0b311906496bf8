"""
Общие фикстуры тестов OCR Pool.

FakeEngine заменяет Tesseract: возвращает заранее заданный текст
для каждого режима сегментации и запоминает вызовы.
"""

import io
import struct
import sys
import threading
import zlib
from pathlib import Path
from typing import Optional

# Корень репозитория: первым в sys.path
_repo_root = Path(__file__).resolve().parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from PIL import Image, ImageDraw

from ocr_pool.schemas import ImageRequest, PipelineResult
from ocr_pool.services.engine import PageSegMode, available_languages


class FakeEngine:
    """OCR движок с заранее заданными ответами."""

    def __init__(self, texts: Optional[dict] = None, error: Optional[Exception] = None):
        self.texts = texts or {}
        self.error = error
        self.mode: Optional[PageSegMode] = None
        self.calls: list[PageSegMode] = []
        self.images: list[Image.Image] = []

    def set_page_seg_mode(self, mode: PageSegMode) -> None:
        self.mode = mode

    def set_image(self, image: Image.Image) -> None:
        self.images.append(image)

    def get_text(self) -> str:
        self.calls.append(self.mode)
        if self.error is not None:
            raise self.error
        return self.texts.get(self.mode, "")


def make_image_bytes(
    size: tuple[int, int] = (600, 300),
    color: str = "white",
    fmt: str = "PNG",
    text_box: bool = False,
) -> bytes:
    """
    Изображение в памяти.

    text_box=True рисует чёрные прямоугольники — имитация строки текста
    (контрастные области для нормализации и бинаризации).
    """
    image = Image.new("RGB", size, color)
    if text_box:
        draw = ImageDraw.Draw(image)
        w, h = size
        for i in range(5):
            left = w // 10 + i * w // 6
            draw.rectangle([left, h // 3, left + w // 12, 2 * h // 3], fill="black")

    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def _png_chunk(chunk_type: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + chunk_type + data + struct.pack(">I", crc)


def make_broken_png(size: tuple[int, int] = (60, 40)) -> bytes:
    """
    PNG, который открывается, но ломается при чтении данных.

    Данные IDAT делятся на два чанка, у второго — невалидный тип.
    Заголовок корректен, поэтому Image.open() проходит, а ошибка
    (SyntaxError "broken PNG file") возникает только в load().
    """
    valid = make_image_bytes(size=size, text_box=True)

    chunks = []
    pos = 8
    while pos < len(valid):
        (length,) = struct.unpack(">I", valid[pos:pos + 4])
        chunk_type = valid[pos + 4:pos + 8]
        chunks.append((chunk_type, valid[pos + 8:pos + 8 + length]))
        pos += 12 + length

    header = b"".join(_png_chunk(t, d) for t, d in chunks if t not in (b"IDAT", b"IEND"))
    idat = b"".join(d for t, d in chunks if t == b"IDAT")
    half = len(idat) // 2

    return (
        valid[:8]
        + header
        + _png_chunk(b"IDAT", idat[:half])
        + _png_chunk(b"I\xdfND", idat[half:])
        + _png_chunk(b"IEND", b"")
    )


def make_lab_tiff(size: tuple[int, int] = (600, 300)) -> bytes:
    """TIFF в режиме LAB: Pillow не умеет convert("L") для него."""
    lightness = Image.new("L", size, 230)
    ImageDraw.Draw(lightness).rectangle([100, 100, 500, 200], fill=20)
    neutral = Image.new("L", size, 128)
    image = Image.merge("LAB", [lightness, neutral, neutral])

    buffer = io.BytesIO()
    image.save(buffer, format="TIFF")
    return buffer.getvalue()


def make_request(image_id: int = 0, filename: Optional[str] = None, data: bytes = b"img") -> ImageRequest:
    return ImageRequest(
        filename=filename or f"image_{image_id}.png",
        image_data=data,
        batch_id=1,
        image_id=image_id,
    )


class RecordingPipeline:
    """
    Пайплайн-заглушка: текст = содержимое байтов.

    Запоминает каждый вызов; если задан gate — ждёт его перед ответом.
    """

    def __init__(self, delay_gate: Optional[threading.Event] = None):
        self.delay_gate = delay_gate
        self.lock = threading.Lock()
        self.calls: list[bytes] = []

    def __call__(self, image_data: bytes) -> PipelineResult:
        with self.lock:
            self.calls.append(image_data)
        if self.delay_gate is not None:
            self.delay_gate.wait(5)
        return PipelineResult(
            text=image_data.decode(),
            elapsed_ms=1.0,
            processed_image=b"png:" + image_data,
        )


@pytest.fixture(autouse=True)
def _clear_languages_cache():
    """Список языков Tesseract кэшируется: тесты подменяют pytesseract."""
    available_languages.cache_clear()
    yield
    available_languages.cache_clear()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine(
        texts={
            PageSegMode.SINGLE_BLOCK: "INVOICE\n",
            PageSegMode.SINGLE_WORD: "INVOICE",
        }
    )


@pytest.fixture
def blank_png() -> bytes:
    """Пустое белое изображение 50x50."""
    return make_image_bytes(size=(50, 50))


@pytest.fixture
def text_png() -> bytes:
    return make_image_bytes(size=(600, 300), text_box=True)


@pytest.fixture
def recording_pipeline() -> RecordingPipeline:
    return RecordingPipeline()
