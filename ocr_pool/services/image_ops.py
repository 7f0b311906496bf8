"""
Операции над изображениями для пайплайна OCR.

Все функции работают в памяти (PIL.Image / numpy), без временных файлов.

Функции улучшения (sharpen, normalize_contrast, binarize) возвращают
None, если результат получить не удалось. Решение, что делать дальше
(обычно — оставить предыдущее изображение), принимает пайплайн.
"""

import io
import logging
import struct
from typing import Optional

import numpy as np
from PIL import Image, ImageFilter, UnidentifiedImageError

from ocr_pool.errors import DecodeError

logger = logging.getLogger(__name__)


def decode_image(image_data: bytes) -> Image.Image:
    """
    Декодирует байты в изображение.

    Args:
        image_data: закодированное изображение

    Returns:
        Image.Image: полностью загруженное изображение

    Raises:
        DecodeError: если байты не являются изображением
    """
    if not image_data:
        raise DecodeError("Пустые данные изображения")

    try:
        image = Image.open(io.BytesIO(image_data))
        # open() ленивый: битые чанки в середине файла видны только после load()
        image.load()
    except (
        UnidentifiedImageError,
        OSError,
        ValueError,
        SyntaxError,
        EOFError,
        struct.error,
        Image.DecompressionBombError,
    ) as e:
        raise DecodeError(str(e)) from e

    return image


def to_grayscale(image: Image.Image) -> Image.Image:
    """
    Одноканальное 8-битное изображение.

    Не все режимы Pillow умеет переводить в "L" (например, LAB из TIFF).
    Для них берётся первый канал: у LAB это яркость.

    Raises:
        DecodeError: если изображение не удалось свести к одному каналу
    """
    if image.mode == "L":
        return image

    try:
        return image.convert("L")
    except ValueError as e:
        logger.debug(f"Режим {image.mode} не конвертируется в L ({e}), берём первый канал")

    try:
        channel = image.getchannel(0)
        if channel.mode != "L":
            channel = channel.convert("L")
        return channel
    except ValueError as e:
        raise DecodeError(f"Режим {image.mode} не поддерживается: {e}") from e


def upscale_to_minimum(
    image: Image.Image,
    min_width: int,
    min_height: int,
    max_pixels: Optional[int] = None,
) -> Image.Image:
    """
    Равномерно увеличивает изображение до минимальных размеров.

    Масштаб — max(min_width / w, min_height / h): после увеличения
    выполняются оба минимума, пропорции сохраняются.
    Если изображение уже достаточно большое — возвращается как есть.

    Args:
        image: исходное изображение
        min_width: минимальная ширина
        min_height: минимальная высота
        max_pixels: предел площади результата (None = Image.MAX_IMAGE_PIXELS)

    Returns:
        Image.Image: увеличенное (или исходное) изображение

    Raises:
        DecodeError: если увеличенное изображение превысит max_pixels
            (узкая полоска 1x4000 превратилась бы в 500x2000000)
    """
    w, h = image.size
    if w >= min_width and h >= min_height:
        return image

    scale = max(min_width / w, min_height / h)
    new_size = (max(1, round(w * scale)), max(1, round(h * scale)))

    limit = max_pixels if max_pixels is not None else Image.MAX_IMAGE_PIXELS
    if limit and new_size[0] * new_size[1] > limit:
        raise DecodeError(
            f"Upscale {w}x{h} -> {new_size[0]}x{new_size[1]} превышает предел {limit} пикселей"
        )

    logger.debug(f"Upscale {w}x{h} -> {new_size[0]}x{new_size[1]} (x{scale:.2f})")
    return image.resize(new_size, Image.Resampling.BILINEAR)


def sharpen(
    image: Image.Image,
    radius: int = 5,
    amount: float = 2.5,
) -> Optional[Image.Image]:
    """
    Unsharp mask.

    Args:
        image: grayscale изображение
        radius: радиус размытия маски
        amount: сила усиления (2.5 = 250%)

    Returns:
        Image.Image или None, если фильтр не отработал
    """
    try:
        return image.filter(
            ImageFilter.UnsharpMask(radius=radius, percent=int(amount * 100), threshold=0)
        )
    except (ValueError, OSError) as e:
        logger.warning(f"Sharpen не выполнен: {e}")
        return None


def normalize_contrast(
    image: Image.Image,
    tile_size: tuple[int, int] = (50, 50),
    min_diff: int = 130,
    smooth: tuple[int, int] = (2, 2),
) -> Optional[Image.Image]:
    """
    Локальная нормализация контраста по тайлам.

    Алгоритм:
        1. Для каждого тайла tile_size считаем min и max яркости
        2. Тайлы с разбросом < min_diff считаются бесконтрастными,
           их min/max заменяются средним по контрастным тайлам
        3. Сетки min/max сглаживаются окном (2*smooth + 1)
        4. Каждый пиксель растягивается в [0, 255] по своему тайлу

    Args:
        image: grayscale изображение
        tile_size: (ширина, высота) тайла
        min_diff: минимальный разброс яркости контрастного тайла
        smooth: (x, y) полуширина окна сглаживания в тайлах

    Returns:
        Image.Image или None, если на изображении нет ни одного контрастного тайла
    """
    arr = np.asarray(image, dtype=np.float32)
    tiles = _split_tiles(arr, tile_size)

    tile_min = tiles.min(axis=(1, 3))
    tile_max = tiles.max(axis=(1, 3))

    valid = (tile_max - tile_min) >= min_diff
    if not valid.any():
        return None

    tile_min[~valid] = tile_min[valid].mean()
    tile_max[~valid] = tile_max[valid].mean()

    mins = _expand_grid(_smooth_grid(tile_min, smooth), tile_size, arr.shape)
    maxs = _expand_grid(_smooth_grid(tile_max, smooth), tile_size, arr.shape)

    span = np.maximum(maxs - mins, 1.0)
    out = np.clip((arr - mins) * 255.0 / span, 0, 255)

    return Image.fromarray(out.astype(np.uint8))


def binarize(
    image: Image.Image,
    tile_size: tuple[int, int] = (10, 10),
    fg_threshold: int = 100,
    min_count: int = 50,
    bg_value: int = 200,
    smooth: tuple[int, int] = (2, 2),
) -> Optional[Image.Image]:
    """
    Бинаризация Otsu после нормализации фона.

    Алгоритм:
        1. Оценка фона: для каждого тайла — средняя яркость пикселей
           светлее fg_threshold (тайлы, где таких меньше min_count,
           заполняются средним по остальным)
        2. Нормализация: пиксель * bg_value / фон — неравномерное
           освещение выравнивается к одному уровню
        3. Глобальный порог Otsu по нормализованной гистограмме

    Args:
        image: grayscale изображение
        tile_size: (ширина, высота) тайла оценки фона
        fg_threshold: пиксели темнее считаются текстом
        min_count: минимум фоновых пикселей в тайле
        bg_value: целевая яркость фона
        smooth: (x, y) полуширина окна сглаживания в тайлах

    Returns:
        Image.Image (значения 0/255) или None, если фон не найден
        или изображение однородно и порог не определён
    """
    arr = np.asarray(image, dtype=np.float32)
    tiles = _split_tiles(arr, tile_size)

    background = tiles > fg_threshold
    counts = background.sum(axis=(1, 3))
    sums = np.where(background, tiles, 0.0).sum(axis=(1, 3))

    valid = counts >= min_count
    if not valid.any():
        return None

    bg = np.zeros_like(sums)
    bg[valid] = sums[valid] / counts[valid]
    bg[~valid] = bg[valid].mean()

    bg_map = _expand_grid(_smooth_grid(bg, smooth), tile_size, arr.shape)
    normalized = np.clip(arr * bg_value / np.maximum(bg_map, 1.0), 0, 255).astype(np.uint8)

    threshold = otsu_threshold(normalized)
    if threshold is None:
        return None

    out = np.where(normalized > threshold, 255, 0).astype(np.uint8)
    return Image.fromarray(out)


def otsu_threshold(values: np.ndarray) -> Optional[int]:
    """
    Порог Otsu для 8-битных значений.

    Returns:
        int: порог (пиксели > порога — фон) или None для однородных данных
    """
    hist = np.bincount(values.ravel(), minlength=256).astype(np.float64)
    prob = hist / hist.sum()

    omega = np.cumsum(prob)
    mu = np.cumsum(prob * np.arange(256))
    mu_total = mu[-1]

    with np.errstate(divide="ignore", invalid="ignore"):
        sigma_b = (mu_total * omega - mu) ** 2 / (omega * (1.0 - omega))
    sigma_b = np.nan_to_num(sigma_b, nan=0.0, posinf=0.0, neginf=0.0)

    if sigma_b.max() <= 0:
        return None
    return int(np.argmax(sigma_b))


def encode_png(image: Image.Image) -> bytes:
    """Сериализует изображение в PNG."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _split_tiles(arr: np.ndarray, tile_size: tuple[int, int]) -> np.ndarray:
    """
    Режет массив (h, w) на тайлы.

    Края дополняются повтором крайних пикселей до кратного размера.

    Returns:
        np.ndarray: массив формы (tiles_y, tile_h, tiles_x, tile_w)
    """
    tile_w, tile_h = tile_size
    h, w = arr.shape
    tiles_y = -(-h // tile_h)
    tiles_x = -(-w // tile_w)

    padded = np.pad(
        arr,
        ((0, tiles_y * tile_h - h), (0, tiles_x * tile_w - w)),
        mode="edge",
    )
    return padded.reshape(tiles_y, tile_h, tiles_x, tile_w)


def _smooth_grid(grid: np.ndarray, smooth: tuple[int, int]) -> np.ndarray:
    """Скользящее среднее по сетке тайлов, окно (2*sy+1) x (2*sx+1)."""
    sx, sy = smooth
    if sx <= 0 and sy <= 0:
        return grid

    rows, cols = grid.shape
    padded = np.pad(grid, ((sy, sy), (sx, sx)), mode="edge")
    out = np.zeros_like(grid, dtype=np.float64)

    for dy in range(2 * sy + 1):
        for dx in range(2 * sx + 1):
            out += padded[dy:dy + rows, dx:dx + cols]

    return out / ((2 * sy + 1) * (2 * sx + 1))


def _expand_grid(
    grid: np.ndarray,
    tile_size: tuple[int, int],
    shape: tuple[int, ...],
) -> np.ndarray:
    """Разворачивает сетку тайлов обратно до размера изображения."""
    tile_w, tile_h = tile_size
    h, w = shape
    full = np.repeat(np.repeat(grid, tile_h, axis=0), tile_w, axis=1)
    return full[:h, :w]
