import datetime

import pytest

from media_pipeline.errors import ExternalOperationError, NoOutputError, PollingTimeoutError
from media_pipeline.models import Operation, OperationSnapshot
from media_pipeline.paths import JobPaths
from media_pipeline.services import operation_monitor
from media_pipeline.services.operation_monitor import OperationState

STARTED_AT = datetime.datetime(2026, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)


def _paths():
    return JobPaths("user-1", "doc-1", run_id=1767268800000)


def _operation(paths):
    return Operation(
        external_handle="op-handle",
        name="operations/123",
        output_path=paths.synthesis_output,
        started_at=STARTED_AT,
    )


def _monitor(operation, bucket, paths, poll_fn, sleeps, max_attempts=10):
    return operation_monitor.monitor_operation(
        operation,
        poll_fn=poll_fn,
        bucket=bucket,
        output_prefix=paths.synthesis_output_dir,
        final_path_for=paths.final_path_for,
        poll_interval_seconds=5,
        max_attempts=max_attempts,
        sleep_fn=sleeps.append,
    )


def test_next_state_transitions():
    assert operation_monitor.next_state(OperationSnapshot(done=False), 1, 3) == OperationState.PENDING
    assert operation_monitor.next_state(OperationSnapshot(done=True), 1, 3) == OperationState.SUCCEEDED
    assert operation_monitor.next_state(OperationSnapshot(done=True, error="x"), 1, 3) == OperationState.FAILED
    assert operation_monitor.next_state(OperationSnapshot(done=False), 3, 3) == OperationState.TIMED_OUT
    assert operation_monitor.next_state(None, 2, 3) == OperationState.PENDING
    assert operation_monitor.next_state(None, 3, 3) == OperationState.TIMED_OUT


def test_terminal_error_with_four_preserved_artifacts_completes_as_multipart(fake_bucket):
    paths = _paths()
    prefix = paths.synthesis_output_dir
    stale = f"{prefix}old_take.wav"
    fake_bucket.put(stale, b"old", time_created=STARTED_AT - datetime.timedelta(hours=1))
    produced = [f"{prefix}doc-1_audio_part_{index}.wav" for index in range(4)]
    ticks = []

    def _poll(handle):
        ticks.append(handle)
        if len(ticks) == 1:
            fake_bucket.put(produced[0], b"a")
            fake_bucket.put(produced[1], b"b")
            return OperationSnapshot(done=False, progress_percent=40)
        if len(ticks) == 2:
            fake_bucket.put(produced[2], b"c")
            fake_bucket.put(produced[3], b"d")
            return OperationSnapshot(done=False, progress_percent=80)
        for name in produced:
            fake_bucket.delete(name)
        return OperationSnapshot(done=True, progress_percent=90, error="Internal error during synthesis")

    sleeps = []
    operation = _monitor(_operation(paths), fake_bucket, paths, _poll, sleeps)

    assert operation.state == OperationState.FAILED
    assert sleeps == [5, 5, 5]
    record = operation_monitor.resolve_outcome([operation])
    assert record["isMultipart"] is True
    assert record["chunkCount"] == 4
    assert record["degraded"] is True
    assert record["audioPaths"] == [paths.final_path_for(name) for name in produced]
    for final_path in record["audioPaths"]:
        assert final_path in fake_bucket.objects
    assert paths.final_path_for(stale) not in fake_bucket.objects


def test_requested_output_path_wins_when_present(fake_bucket):
    paths = _paths()

    def _poll(_handle):
        fake_bucket.put(paths.synthesis_output, b"wav")
        return OperationSnapshot(done=True, progress_percent=100)

    operation = _monitor(_operation(paths), fake_bucket, paths, _poll, [])

    record = operation_monitor.resolve_outcome([operation])
    assert record["isMultipart"] is False
    assert record["chunkCount"] == 1
    assert record["audioPath"] == paths.final_path_for(paths.synthesis_output)
    assert record["degraded"] is False


def test_terminal_error_with_zero_artifacts_fails_job(fake_bucket):
    paths = _paths()
    operation = _monitor(
        _operation(paths), fake_bucket, paths,
        lambda _handle: OperationSnapshot(done=True, error="Invalid SSML"), [],
    )

    with pytest.raises(ExternalOperationError) as excinfo:
        operation_monitor.resolve_outcome([operation])
    assert "Invalid SSML" in excinfo.value.message


def test_success_without_artifacts_is_reported_as_no_output(fake_bucket):
    paths = _paths()
    operation = _monitor(_operation(paths), fake_bucket, paths, lambda _handle: OperationSnapshot(done=True), [])

    with pytest.raises(NoOutputError):
        operation_monitor.resolve_outcome([operation])


def test_polling_times_out_after_attempt_budget(fake_bucket):
    paths = _paths()
    sleeps = []
    operation = _monitor(
        _operation(paths), fake_bucket, paths,
        lambda _handle: OperationSnapshot(done=False, progress_percent=10), sleeps, max_attempts=3,
    )

    assert operation.state == OperationState.TIMED_OUT
    assert operation.attempts == 3
    assert len(sleeps) == 3
    with pytest.raises(PollingTimeoutError):
        operation_monitor.resolve_outcome([operation])


def test_poll_exceptions_count_as_attempts(fake_bucket):
    paths = _paths()
    calls = []

    def _poll(_handle):
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("transient poll failure")
        return OperationSnapshot(done=True)

    operation = _monitor(_operation(paths), fake_bucket, paths, _poll, [])

    assert operation.state == OperationState.SUCCEEDED
    assert operation.attempts == 3


def test_copy_failure_is_retried_on_next_tick(fake_bucket):
    paths = _paths()
    produced = f"{paths.synthesis_output_dir}doc-1_audio_part_0.wav"
    calls = []

    def _poll(_handle):
        calls.append(1)
        if len(calls) == 1:
            fake_bucket.put(produced, b"a")
            fake_bucket.fail_copies.add(produced)
            return OperationSnapshot(done=False)
        fake_bucket.fail_copies.clear()
        return OperationSnapshot(done=True)

    operation = _monitor(_operation(paths), fake_bucket, paths, _poll, [])

    assert operation.preserved == {produced: paths.final_path_for(produced)}


def test_progress_callback_sees_pending_ticks(fake_bucket):
    paths = _paths()
    snapshots = iter([
        OperationSnapshot(done=False, progress_percent=20),
        OperationSnapshot(done=False, progress_percent=60),
        OperationSnapshot(done=True, progress_percent=100),
    ])
    seen = []

    operation_monitor.monitor_operation(
        _operation(paths),
        poll_fn=lambda _handle: next(snapshots),
        bucket=fake_bucket,
        output_prefix=paths.synthesis_output_dir,
        final_path_for=paths.final_path_for,
        on_progress=lambda op: seen.append(op.progress_percent),
        sleep_fn=lambda _seconds: None,
    )

    assert seen == [20, 60]


def test_copy_failure_on_every_tick_is_not_reported_as_output(fake_bucket):
    paths = _paths()

    def _poll(_handle):
        fake_bucket.put(paths.synthesis_output, b"wav")
        fake_bucket.fail_copies.add(paths.synthesis_output)
        return OperationSnapshot(done=True, progress_percent=100)

    operation = _monitor(_operation(paths), fake_bucket, paths, _poll, [])

    assert operation.discovered_paths == {paths.synthesis_output}
    assert operation.preserved == {}
    with pytest.raises(ExternalOperationError) as excinfo:
        operation_monitor.resolve_outcome([operation])
    assert "durable storage" in excinfo.value.message


def test_partially_preserved_output_reports_only_durable_paths(fake_bucket):
    paths = _paths()
    prefix = paths.synthesis_output_dir
    kept = f"{prefix}doc-1_audio_part_0.wav"
    lost = f"{prefix}doc-1_audio_part_1.wav"

    def _poll(_handle):
        fake_bucket.put(kept, b"a")
        fake_bucket.put(lost, b"b")
        fake_bucket.fail_copies.add(lost)
        return OperationSnapshot(done=True, progress_percent=100)

    operation = _monitor(_operation(paths), fake_bucket, paths, _poll, [])

    record = operation_monitor.resolve_outcome([operation])
    assert record["chunkCount"] == 1
    assert record["audioPath"] == paths.final_path_for(kept)
    assert record["degraded"] is True


def test_monitor_operations_runs_each_and_combines_outcomes(fake_bucket):
    paths = _paths()
    prefix = paths.synthesis_output_dir
    first = Operation(
        external_handle="op-a", name="operations/a", output_path=f"{prefix}part_a.wav", started_at=STARTED_AT,
    )
    second = Operation(
        external_handle="op-b", name="operations/b", output_path=f"{prefix}part_b.wav", started_at=STARTED_AT,
    )
    polled = []

    def _poll(handle):
        polled.append(handle)
        if handle == "op-a":
            fake_bucket.put(first.output_path, b"a")
            return OperationSnapshot(done=True, error="Voice quota exceeded")
        fake_bucket.put(second.output_path, b"b")
        return OperationSnapshot(done=True, progress_percent=100)

    operations = operation_monitor.monitor_operations(
        [first, second],
        poll_fn=_poll,
        bucket=fake_bucket,
        output_prefix=prefix,
        final_path_for=paths.final_path_for,
        sleep_fn=lambda _seconds: None,
    )

    assert polled == ["op-a", "op-b"]
    assert [operation.state for operation in operations] == [OperationState.FAILED, OperationState.SUCCEEDED]
    record = operation_monitor.resolve_outcome(operations)
    assert record["chunkCount"] == 2
    assert record["degraded"] is True
    assert record["audioPaths"] == [
        paths.final_path_for(first.output_path),
        paths.final_path_for(second.output_path),
    ]
