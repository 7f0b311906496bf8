"""
OCR Pool — FastAPI приложение.

Эндпоинты:
    POST /process_image — распознавание одного изображения
                          (ответ — поток из одного NDJSON сообщения)
    GET  /health — проверка работоспособности (Tesseract + CPU + конфиг)
    GET  /stats — статистика пула воркеров

Каждый запрос обрабатывается в своём потоке threadpool: поток ставит
задачу в очередь и ждёт гейт. Распознавание выполняют N воркеров пула.

Запуск:
    python -m ocr_pool.main [address] [threads]

    address — host:port (по умолчанию 127.0.0.1:50051)
    threads — количество воркеров (по умолчанию 4)

Или:
    uvicorn ocr_pool.main:app --port 50051
"""

import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import APIRouter, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from ocr_pool.config import settings, split_address
from ocr_pool.errors import (
    PoolStoppedError,
    QueueFullError,
    TaskCancelledError,
    TaskFailedError,
)
from ocr_pool.schemas import ImageRequest, OCRResponse
from ocr_pool.services.dispatcher import OCRDispatcher
from ocr_pool.services.task_queue import Task

# Настройка логгера
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [OCR-Pool] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Клиент закрыл соединение до ответа (nginx-совместимый код)
CLIENT_CLOSED_REQUEST = 499

router = APIRouter()


def create_app(dispatcher: Optional[OCRDispatcher] = None) -> FastAPI:
    """
    Создаёт приложение.

    Пул воркеров запускается при старте приложения и останавливается
    при завершении (drain или discard — по настройкам).

    Args:
        dispatcher: готовый диспетчер (по умолчанию — из настроек)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.dispatcher = dispatcher or OCRDispatcher.from_settings()
        app.state.dispatcher.start()
        try:
            yield
        finally:
            # join потоков блокирует: не держим event loop
            await run_in_threadpool(app.state.dispatcher.shutdown)

    app = FastAPI(
        title="OCR Pool",
        description="Распознавание текста на изображениях (Tesseract OCR, пул потоков)",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


@router.get("/health")
async def health_check(request: Request) -> dict:
    """
    Проверка работоспособности сервиса.

    Returns:
        dict: статус, версия Tesseract, CPU, конфигурация
    """
    tesseract_ok = False
    tesseract_version = "unknown"
    try:
        import pytesseract
        tesseract_version = pytesseract.get_tesseract_version().public
        tesseract_ok = True
    except Exception as e:
        tesseract_version = f"error: {e}"

    dispatcher: OCRDispatcher = request.app.state.dispatcher

    return {
        "status": "ok" if tesseract_ok else "degraded",
        "service": "ocr-pool",
        "cpu_count": os.cpu_count(),
        "tesseract": {
            "available": tesseract_ok,
            "version": tesseract_version,
        },
        "config": {
            "threads": dispatcher.num_threads,
            "max_queue_size": settings.max_queue_size,
            "shutdown_mode": settings.shutdown_mode,
            "request_timeout_seconds": settings.request_timeout_seconds,
            "max_file_size_mb": settings.max_file_size_mb,
            "ocr_lang": settings.ocr_lang,
            "ocr_oem": settings.ocr_oem,
        },
    }


@router.get("/stats")
async def get_stats(request: Request) -> dict:
    """
    Статистика пула: воркеры, глубина очереди, счётчики задач.

    Полезно для мониторинга нагрузки.
    """
    return request.app.state.dispatcher.stats()


@router.post("/process_image")
async def process_image(
    request: Request,
    file: UploadFile = File(..., description="Изображение для распознавания"),
    filename: Optional[str] = Form(default=None, description="Имя файла (по умолчанию — из загрузки)"),
    batch_id: int = Form(default=0),
    image_id: int = Form(default=0),
) -> StreamingResponse:
    """
    Распознаёт текст на одном изображении.

    Ответ — поток ровно из одного JSON сообщения (OCRResponse),
    после которого поток закрывается.

    Ошибки распознавания (битое изображение, пустой текст, Tesseract
    недоступен) возвращаются sentinel-строкой в extracted_text.
    HTTP ошибкой возвращаются только проблемы доставки:
        413 — файл больше max_file_size_mb
        503 — очередь заполнена или сервис останавливается
        504 — истёк request_timeout_seconds
        500 — непредвиденная ошибка пайплайна

    Args:
        file: изображение (multipart/form-data)
        filename: имя файла для ответа
        batch_id: номер пачки
        image_id: номер изображения (клиент сопоставляет ответы по нему)
    """
    dispatcher: OCRDispatcher = request.app.state.dispatcher

    image_data = await _read_image(file)
    image_request = ImageRequest(
        filename=filename or file.filename or "unknown",
        image_data=image_data,
        batch_id=batch_id,
        image_id=image_id,
    )
    logger.info(
        f"Получено изображение: {image_request.filename} "
        f"(batch: {batch_id}, id: {image_id}, {len(image_data)} байт)"
    )

    try:
        task = dispatcher.submit(image_request)
    except QueueFullError as e:
        logger.warning(f"Отказ: {e}")
        raise HTTPException(
            status_code=503,
            detail={"error": "queue_full", "message": str(e)},
        )
    except PoolStoppedError as e:
        raise HTTPException(
            status_code=503,
            detail={"error": "service_stopping", "message": str(e)},
        )

    response = await _await_task(request, dispatcher, task)
    logger.info(f"Ответ готов: {response.filename} (id: {response.image_id})")

    return StreamingResponse(
        _single_message(response),
        media_type="application/x-ndjson",
    )


async def _await_task(
    request: Request,
    dispatcher: OCRDispatcher,
    task: Task,
) -> OCRResponse:
    """
    Ждёт гейт задачи в потоке threadpool.

    Пока ждём — периодически проверяем, не отключился ли клиент.
    Если отключился — задача отменяется: воркер её пропустит,
    а если уже начал — результат будет отброшен.

    Raises:
        HTTPException: 499 / 500 / 503 / 504
    """
    waiter = asyncio.ensure_future(
        run_in_threadpool(dispatcher.wait_for, task, settings.request_timeout_seconds)
    )

    try:
        while True:
            done, _ = await asyncio.wait({waiter}, timeout=settings.disconnect_poll_seconds)
            if done:
                return waiter.result()

            if await request.is_disconnected():
                dispatcher.cancel(task)
                # Поток ожидания доживёт до срабатывания гейта, его результат не нужен
                waiter.add_done_callback(_consume_result)
                raise HTTPException(
                    status_code=CLIENT_CLOSED_REQUEST,
                    detail={"error": "client_disconnected", "message": "Клиент отключился"},
                )
    except TaskCancelledError as e:
        logger.warning(f"Таймаут: {task.request.filename}: {e}")
        raise HTTPException(
            status_code=504,
            detail={"error": "timeout", "message": str(e)},
        )
    except PoolStoppedError as e:
        raise HTTPException(
            status_code=503,
            detail={"error": "service_stopping", "message": str(e)},
        )
    except TaskFailedError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "processing_error", "message": str(e)},
        )


def _consume_result(future: "asyncio.Future[OCRResponse]") -> None:
    if not future.cancelled():
        future.exception()


async def _single_message(response: OCRResponse) -> AsyncIterator[str]:
    yield response.model_dump_json() + "\n"


async def _read_image(file: UploadFile) -> bytes:
    """
    Читает загруженное изображение.

    Содержимое не проверяется: нечитаемые данные — штатный случай
    пайплайна (sentinel "[ERROR: Unable to open image]").

    Raises:
        HTTPException: 413 если файл больше max_file_size_mb
    """
    image_data = await file.read()

    max_size = settings.max_file_size_mb * 1024 * 1024
    if len(image_data) > max_size:
        raise HTTPException(
            status_code=413,
            detail={
                "error": "file_too_large",
                "message": f"Файл слишком большой: {len(image_data)} байт, "
                f"максимум: {settings.max_file_size_mb} МБ",
            },
        )

    return image_data


# Приложение для uvicorn ocr_pool.main:app
app = create_app()


def main(argv: Optional[list[str]] = None) -> None:
    """Точка входа: python -m ocr_pool.main [address] [threads]."""
    import uvicorn

    parser = argparse.ArgumentParser(description="OCR Pool server")
    parser.add_argument(
        "address",
        nargs="?",
        default=settings.address,
        help=f"host:port (по умолчанию {settings.address})",
    )
    parser.add_argument(
        "threads",
        nargs="?",
        type=int,
        default=settings.threads,
        help=f"количество воркеров (по умолчанию {settings.threads})",
    )
    args = parser.parse_args(argv)

    if args.threads < 1:
        parser.error("threads должен быть >= 1")

    settings.address = args.address
    settings.threads = args.threads
    host, port = split_address(args.address)

    logger.info("=== OCR Pool ===")
    logger.info(f"Адрес: {host}:{port}")
    logger.info(f"Воркеров: {args.threads}")

    uvicorn.run(
        create_app(),
        host=host,
        port=port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
