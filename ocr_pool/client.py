"""
Клиент OCR Pool.

Заменяет графический фронтенд загрузки: отправляет по одному вызову
ProcessImage на изображение, все вызовы — параллельно, и собирает
результаты по image_id.

Запуск:
    python -m ocr_pool.client 127.0.0.1:50051 scan1.png scan2.jpg
"""

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

import httpx

from ocr_pool.errors import OCRClientError
from ocr_pool.schemas import OCRResponse
from ocr_pool.services.pipeline import is_sentinel

logger = logging.getLogger(__name__)

BatchResult = Union[OCRResponse, Exception]


class OCRClient:
    """
    HTTP клиент сервиса.

    Args:
        base_url: адрес сервиса ("http://127.0.0.1:50051")
        timeout: таймаут одного вызова в секундах
        transport: транспорт httpx (для тестов — httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def __enter__(self) -> "OCRClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def process_image(
        self,
        filename: str,
        image_data: bytes,
        batch_id: int = 0,
        image_id: int = 0,
    ) -> OCRResponse:
        """
        Отправляет одно изображение и читает единственный ответ из потока.

        Returns:
            OCRResponse: ответ сервиса (текст может быть sentinel-строкой)

        Raises:
            OCRClientError: сервер вернул ошибку или поток пуст
            httpx.HTTPError: ошибка соединения
        """
        files = {"file": (filename, image_data, "application/octet-stream")}
        data = {
            "filename": filename,
            "batch_id": str(batch_id),
            "image_id": str(image_id),
        }

        with self._client.stream("POST", "/process_image", files=files, data=data) as response:
            if response.status_code != 200:
                response.read()
                raise OCRClientError(
                    f"Сервер вернул ошибку: {response.status_code} - {response.text}"
                )

            for line in response.iter_lines():
                if line.strip():
                    return OCRResponse.model_validate_json(line)

        raise OCRClientError(f"Пустой ответ для {filename}")

    def process_batch(
        self,
        paths: list[Union[str, Path]],
        batch_id: int = 1,
        max_workers: Optional[int] = None,
    ) -> dict[int, BatchResult]:
        """
        Отправляет все изображения параллельно.

        image_id назначается по порядку во входном списке.

        Args:
            paths: пути к изображениям
            batch_id: номер пачки
            max_workers: количество одновременных вызовов (по умолчанию — все сразу)

        Returns:
            dict: {image_id: OCRResponse или исключение}
        """
        if not paths:
            return {}

        def _send(image_id: int, path: Path) -> BatchResult:
            try:
                return self.process_image(path.name, path.read_bytes(), batch_id, image_id)
            except (OCRClientError, httpx.HTTPError, OSError) as e:
                logger.error(f"Ошибка обработки {path.name}: {e}")
                return e

        with ThreadPoolExecutor(max_workers=max_workers or len(paths)) as executor:
            futures = {
                image_id: executor.submit(_send, image_id, Path(path))
                for image_id, path in enumerate(paths)
            }
            return {image_id: future.result() for image_id, future in futures.items()}


def main(argv: Optional[list[str]] = None) -> int:
    """Точка входа: python -m ocr_pool.client ADDRESS IMAGE..."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [OCR-Client] %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(description="OCR Pool batch client")
    parser.add_argument("address", help="host:port сервиса")
    parser.add_argument("images", nargs="+", help="изображения")
    parser.add_argument("--batch-id", type=int, default=1)
    args = parser.parse_args(argv)

    base_url = args.address if "://" in args.address else f"http://{args.address}"
    failures = 0

    with OCRClient(base_url) as client:
        results = client.process_batch(args.images, batch_id=args.batch_id)

    for image_id, result in sorted(results.items()):
        name = Path(args.images[image_id]).name
        if isinstance(result, Exception):
            failures += 1
            print(f"[{image_id}] {name}: ОШИБКА: {result}")
        elif is_sentinel(result.extracted_text):
            print(f"[{image_id}] {name}: {result.extracted_text}")
        else:
            print(
                f"[{image_id}] {name}: \"{result.extracted_text}\" "
                f"({result.processing_time_ms:.0f}ms)"
            )

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
