"""Тесты диспетчера ProcessImage."""

import threading

import pytest

from ocr_pool.config import settings
from ocr_pool.errors import TaskCancelledError
from ocr_pool.services.dispatcher import OCRDispatcher
from tests.conftest import RecordingPipeline, make_request


def test_concurrent_callers_get_their_own_responses(recording_pipeline: RecordingPipeline) -> None:
    dispatcher = OCRDispatcher(4, pipeline=recording_pipeline)
    dispatcher.start()

    responses = {}
    lock = threading.Lock()

    def call(image_id: int):
        request = make_request(image_id, data=f"page-{image_id}".encode())
        response = dispatcher.process_one_image(request, timeout=5)
        with lock:
            responses[image_id] = response

    threads = [threading.Thread(target=call, args=(i,)) for i in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)
    dispatcher.shutdown(timeout=5)

    assert sorted(responses) == list(range(10))
    for image_id, response in responses.items():
        assert response.image_id == image_id
        assert response.filename == f"image_{image_id}.png"
        assert response.extracted_text == f"page-{image_id}"

    assert len(recording_pipeline.calls) == 10
    assert dispatcher.stats()["completed"] == 10


def test_timeout_cancels_and_late_result_is_absorbed(recording_pipeline: RecordingPipeline) -> None:
    release = threading.Event()
    recording_pipeline.delay_gate = release
    dispatcher = OCRDispatcher(1, pipeline=recording_pipeline)
    dispatcher.start()

    with pytest.raises(TaskCancelledError):
        dispatcher.process_one_image(make_request(1, data=b"slow"), timeout=0.05)

    # Воркер доделывает задачу и продолжает работать
    release.set()
    response = dispatcher.process_one_image(make_request(2, data=b"next"), timeout=5)
    dispatcher.shutdown(timeout=5)

    assert response.extracted_text == "next"
    assert recording_pipeline.calls == [b"slow", b"next"]


def test_cancel_before_processing(recording_pipeline: RecordingPipeline) -> None:
    release = threading.Event()
    recording_pipeline.delay_gate = release
    dispatcher = OCRDispatcher(1, pipeline=recording_pipeline)
    dispatcher.start()

    first = dispatcher.submit(make_request(1, data=b"first"))
    second = dispatcher.submit(make_request(2, data=b"second"))

    assert dispatcher.cancel(second) is True
    release.set()

    assert dispatcher.wait_for(first, timeout=5).extracted_text == "first"
    dispatcher.shutdown(timeout=5)

    assert b"second" not in recording_pipeline.calls
    # Повторная отмена ничего не меняет
    assert dispatcher.cancel(first) is False


def test_from_settings(monkeypatch, recording_pipeline: RecordingPipeline) -> None:
    monkeypatch.setattr(settings, "threads", 3)
    monkeypatch.setattr(settings, "shutdown_mode", "discard")

    dispatcher = OCRDispatcher.from_settings(pipeline=recording_pipeline)

    assert dispatcher.num_threads == 3
    dispatcher.start()
    assert dispatcher.stats()["workers"] == 3
    dispatcher.shutdown(timeout=5)
    assert dispatcher.stats()["stopping"] is True
