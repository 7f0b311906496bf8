"""
Конфигурация OCR Pool.

Все значения читаются из .env файла (или переменных окружения).
Единый префикс: OCR_

В отличие от Docker-конфигурации у всех параметров есть дефолты:
сервис должен подниматься одной командой на локальной машине.
Адрес и количество потоков дополнительно можно передать аргументами
командной строки (см. ocr_pool.main).
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки OCR Pool.

    Читает переменные с префиксом OCR_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    # host:port, по умолчанию только loopback
    address: str = "127.0.0.1:50051"

    # --- Пул воркеров ---
    threads: int = Field(default=4, ge=1)
    # 0 = очередь без ограничения (память растёт вместе с очередью)
    max_queue_size: int = Field(default=0, ge=0)
    # drain: дообработать очередь при остановке, discard: отбросить
    shutdown_mode: Literal["drain", "discard"] = "drain"

    # --- Ожидание результата ---
    # None = ждать сколько потребуется
    request_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    # Как часто проверять, не отключился ли клиент
    disconnect_poll_seconds: float = Field(default=0.5, gt=0)

    # --- API: лимиты ---
    max_file_size_mb: int = 20

    # --- OCR: Tesseract ---
    ocr_lang: str = "eng"
    # 1 = LSTM only
    ocr_oem: int = 1
    tessdata_dir: Optional[str] = None

    # --- Ответ ---
    # False: success=True даже для sentinel-текста (совместимость)
    report_sentinel_failures: bool = False


def split_address(address: str) -> tuple[str, int]:
    """
    Разбирает адрес вида host:port.

    Args:
        address: строка "host:port" (IPv6 допускается в виде "[::1]:50051")

    Returns:
        tuple: (host, port)

    Raises:
        ValueError: если порт не указан или не число
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Некорректный адрес (ожидается host:port): {address}")
    return host.strip("[]"), int(port)


# Глобальный экземпляр настроек
settings = Settings()
