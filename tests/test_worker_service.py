import base64
import json

import pytest

from media_pipeline.errors import InvalidInputError, InvalidJobMessageError
from media_pipeline.services import worker_service

NOW_MS = 1_800_000_000_000


def _payload(**overrides):
    payload = {
        "jobId": "doc-1",
        "ownerId": "user-1",
        "inputRef": "users/user-1/uploads/lecture.mp3",
        "kind": "transcription",
        "language": "en",
        "timestamp": NOW_MS - 60_000,
    }
    payload.update(overrides)
    return payload


def _envelope(data, **message_fields):
    message = {"data": base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")}
    message.update(message_fields)
    return {"message": message, "subscription": "projects/p/subscriptions/jobs"}


def _handle(payload, services, config, pipeline):
    return worker_service.handle_job_message(
        payload,
        services=services,
        config=config,
        now_ms_fn=lambda: NOW_MS,
        sleep_fn=lambda _seconds: None,
        pipelines={"transcription": pipeline, "conversion": pipeline, "synthesis": pipeline},
    )


def test_stale_message_is_dropped_without_writes_or_pipeline_calls(services, config, fake_db):
    calls = []
    stale = _payload(timestamp=NOW_MS - (3 * 60 * 60 + 1) * 1000)

    outcome = _handle(stale, services, config, lambda *args, **kwargs: calls.append(1))

    assert outcome == worker_service.OUTCOME_STALE
    assert calls == []
    assert fake_db.writes == []


def test_invalid_message_is_acknowledged(services, config, fake_db):
    outcome = _handle({"jobId": "doc-1", "kind": "transcription"}, services, config, lambda *a, **k: None)

    assert outcome == worker_service.OUTCOME_INVALID
    assert fake_db.writes == []


def test_completed_pipeline_reports_completed(services, config):
    seen = {}

    def _pipeline(message, *, services, config, recorder, paths, work_dir, sleep_fn):
        seen["message"] = message
        seen["run_id"] = paths.run_id
        recorder.set_completed("users/user-1/docs/doc-1/out.md")
        return {"resultRef": "users/user-1/docs/doc-1/out.md"}

    outcome = _handle(_payload(), services, config, _pipeline)

    assert outcome == worker_service.OUTCOME_COMPLETED
    assert seen["message"].job_id == "doc-1"
    assert seen["run_id"] == str(NOW_MS - 60_000)


def test_fatal_job_error_is_recorded_and_acknowledged(services, config, fake_db):
    def _pipeline(message, **kwargs):
        raise InvalidInputError("Input is not a PDF document.")

    outcome = _handle(_payload(), services, config, _pipeline)

    assert outcome == worker_service.OUTCOME_ERROR
    status = fake_db.job_doc("user-1", "doc-1")["smartStructure"]
    assert status["status"] == "error"
    assert status["error"] == "Input is not a PDF document."


def test_unexpected_exception_requests_redelivery(services, config, fake_db):
    def _pipeline(message, **kwargs):
        raise RuntimeError("connection reset")

    with pytest.raises(RuntimeError):
        _handle(_payload(), services, config, _pipeline)

    status = fake_db.job_doc("user-1", "doc-1")["smartStructure"]
    assert status["status"] == "processing"
    assert status["stage"] == "retrying"
    assert status["lastError"] == "connection reset"


def test_transient_failure_near_max_age_is_recorded_as_error(services, config, fake_db):
    def _pipeline(message, **kwargs):
        raise RuntimeError("connection reset")

    old = _payload(timestamp=NOW_MS - (config.max_message_age_seconds - 60) * 1000)

    outcome = _handle(old, services, config, _pipeline)

    assert outcome == worker_service.OUTCOME_ERROR
    status = fake_db.job_doc("user-1", "doc-1")["smartStructure"]
    assert status["status"] == "error"
    assert status["error"] == "connection reset"


def test_unreadable_pdf_is_a_terminal_error(services, config, fake_db, fake_bucket):
    fake_bucket.put("users/user-1/uploads/slides.pdf", b"%PDF-1.4 garbage", content_type="application/pdf")
    payload = _payload(kind="conversion", inputRef="users/user-1/uploads/slides.pdf")

    outcome = worker_service.handle_job_message(
        payload,
        services=services,
        config=config,
        now_ms_fn=lambda: NOW_MS,
        sleep_fn=lambda _seconds: None,
    )

    assert outcome == worker_service.OUTCOME_ERROR
    status = fake_db.job_doc("user-1", "doc-1")["smartStructure"]
    assert status["status"] == "error"


def test_redelivery_after_terminal_state_is_skipped(services, config, fake_db):
    calls = []

    def _pipeline(message, *, recorder, **kwargs):
        calls.append(1)
        recorder.set_completed("out.md")
        return {"resultRef": "out.md"}

    assert _handle(_payload(), services, config, _pipeline) == worker_service.OUTCOME_COMPLETED
    assert _handle(_payload(), services, config, _pipeline) == worker_service.OUTCOME_DUPLICATE
    assert calls == [1]


def test_new_request_for_completed_job_runs_again(services, config):
    calls = []

    def _pipeline(message, *, recorder, **kwargs):
        calls.append(message.timestamp_ms)
        recorder.set_completed("out.md")
        return {"resultRef": "out.md"}

    _handle(_payload(), services, config, _pipeline)
    _handle(_payload(timestamp=NOW_MS - 1000), services, config, _pipeline)

    assert calls == [NOW_MS - 60_000, NOW_MS - 1000]


def test_decode_push_envelope_reads_base64_json():
    payload = worker_service.decode_push_envelope(_envelope(_payload()))

    assert payload["jobId"] == "doc-1"
    assert payload["timestamp"] == NOW_MS - 60_000


def test_decode_push_envelope_falls_back_to_publish_time():
    data = _payload()
    del data["timestamp"]

    payload = worker_service.decode_push_envelope(
        _envelope(data, publishTime="2026-01-01T00:00:00.123456789Z")
    )

    assert payload["timestamp"] == 1767225600123


@pytest.mark.parametrize("envelope", [None, [], {}, {"message": "nope"}, {"message": {"data": "%%%"}}])
def test_decode_push_envelope_rejects_malformed_bodies(envelope):
    with pytest.raises(InvalidJobMessageError):
        worker_service.decode_push_envelope(envelope)
