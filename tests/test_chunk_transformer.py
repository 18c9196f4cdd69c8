import pytest

from media_pipeline.errors import ChunkSizeLimitError
from media_pipeline.models import Chunk
from media_pipeline.services.chunk_transformer import ChunkTransformRun, scale_percent, transform_chunks


def _chunks(count):
    return [Chunk(index=index, start=index * 10, end=(index + 1) * 10) for index in range(count)]


def test_results_match_chunk_count_and_order():
    calls = []

    def _transform(chunk):
        calls.append(chunk.index)
        return f"text-{chunk.index}"

    results = transform_chunks(_chunks(4), _transform)

    assert calls == [0, 1, 2, 3]
    assert [result.chunk_index for result in results] == [0, 1, 2, 3]
    assert [result.payload for result in results] == ["text-0", "text-1", "text-2", "text-3"]
    assert all(result.ok for result in results)


def test_failing_chunk_becomes_placeholder_and_processing_continues():
    def _transform(chunk):
        if chunk.index == 1:
            raise RuntimeError("quota exceeded")
        return f"text-{chunk.index}"

    results = transform_chunks(_chunks(3), _transform)

    assert len(results) == 3
    assert results[1].ok is False
    assert results[1].payload is None
    assert "quota exceeded" in results[1].error_note
    assert results[2].payload == "text-2"


def test_fail_fast_errors_propagate():
    def _transform(chunk):
        raise ChunkSizeLimitError("still too large")

    with pytest.raises(ChunkSizeLimitError):
        transform_chunks(_chunks(2), _transform)


def test_snapshot_reports_progress_between_chunks():
    def _transform(chunk):
        if chunk.index == 0:
            raise RuntimeError("nope")
        return "ok"

    run = ChunkTransformRun(_chunks(4), _transform)
    snapshots = []
    for _result in run:
        snapshots.append(run.snapshot())

    assert [snapshot["done"] for snapshot in snapshots] == [1, 2, 3, 4]
    assert [snapshot["percent"] for snapshot in snapshots] == [25, 50, 75, 100]
    assert snapshots[-1]["failed"] == 1
    assert run.results[0].ok is False


def test_empty_chunk_list_produces_empty_results():
    run = ChunkTransformRun([], lambda chunk: "unused")

    assert run.run() == []
    assert run.snapshot()["percent"] == 100


def test_scale_percent_maps_into_stage_range():
    assert scale_percent(0, 10, 70) == 10
    assert scale_percent(50, 10, 70) == 40
    assert scale_percent(100, 10, 70) == 70
    assert scale_percent(250, 10, 70) == 70
