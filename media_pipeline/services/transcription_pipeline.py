"""Long recording -> transcript -> study notes."""

import logging
import os
import time

from media_pipeline.errors import AllChunksFailedError, InputNotFoundError, InvalidInputError, SizeLimitExceededError
from media_pipeline.logging_config import log_event
from media_pipeline.models import Chunk, ChunkUnit
from media_pipeline.repositories import storage_repo
from media_pipeline.services import chunk_planner, file_service, gemini_service
from media_pipeline.services.chunk_transformer import ChunkTransformRun, scale_percent
from media_pipeline.services.overlap_merger import all_failed, merge_sections, merge_text_results

logger = logging.getLogger(__name__)

TRANSCRIPT_FAILURE_MARKER = '[Failed to transcribe chunk {number}]'
SECTION_FAILURE_MARKER = '[Failed to enhance section {number}]'


def _mb(size_bytes):
    return size_bytes / (1024 * 1024)


def plan_transcription_chunks(local_path, size_bytes, *, config, probe_duration_fn):
    if size_bytes <= config.max_direct_audio_bytes:
        return [Chunk(index=0, start=0, end=0, size_bytes=size_bytes, unit=ChunkUnit.SECONDS)]
    duration = probe_duration_fn(local_path, logger=logger)
    try:
        chunks = chunk_planner.plan_audio_chunks(
            size_bytes,
            duration,
            config.max_direct_audio_bytes,
            config.chunk_safety_margin,
            config.audio_chunk_overlap_seconds,
        )
    except ValueError as exc:
        raise InvalidInputError(f'Audio could not be split into chunks ({exc}).') from exc
    if not chunks:
        raise InvalidInputError('Audio file has no playable duration.')
    log_event(
        logger,
        logging.INFO,
        'audio_chunks_planned',
        size_bytes=size_bytes,
        duration_seconds=round(duration, 2),
        chunk_count=len(chunks),
    )
    return chunks


def enhance_transcript(transcript, *, message, services, config, recorder, enhance_fn):
    text_chunks = chunk_planner.plan_text_chunks(
        len(transcript), config.max_text_chunk_chars, config.text_chunk_overlap_chars,
    )
    if not text_chunks:
        return transcript

    def _enhance(chunk):
        return enhance_fn(
            services.gemini,
            chunk_planner.slice_text(transcript, chunk),
            model=config.model_text,
            language=message.language,
        )

    run = ChunkTransformRun(text_chunks, _enhance, label='transcript_section')
    for _result in run:
        recorder.set_progress(scale_percent(run.snapshot()['percent'], 75, 95), 'enhancing')
    if all_failed(run.results):
        raise AllChunksFailedError(f'All {len(text_chunks)} transcript sections failed to enhance.')
    enhanced = merge_sections(run.results, marker_template=SECTION_FAILURE_MARKER).content
    if not enhanced.strip():
        logger.info('Enhancement returned no content for job %s; keeping the raw transcript.', message.job_id)
        return transcript
    return enhanced


def run_transcription(
    message,
    *,
    services,
    config,
    recorder,
    paths,
    work_dir,
    probe_duration_fn=file_service.probe_audio_duration,
    extract_segment_fn=file_service.extract_audio_segment,
    reencode_fn=file_service.reencode_audio,
    transcribe_fn=gemini_service.transcribe_audio_file,
    enhance_fn=gemini_service.enhance_transcript_text,
    sleep_fn=time.sleep,
):
    recorder.set_processing('downloading', 5)
    blob = storage_repo.get_blob(services.bucket, message.input_ref)
    if blob is None:
        raise InputNotFoundError(f'Audio file not found: {message.input_ref}')
    declared_size = int(getattr(blob, 'size', 0) or message.size_hint or 0)
    if declared_size > config.max_audio_input_bytes:
        raise SizeLimitExceededError(
            f'Audio file is {_mb(declared_size):.0f} MB; the maximum supported size is '
            f'{_mb(config.max_audio_input_bytes):.0f} MB.'
        )

    extension = os.path.splitext(message.input_ref)[1].lower() or '.mp3'
    local_path = os.path.join(work_dir, f'source{extension}')
    storage_repo.download_to_file(services.bucket, message.input_ref, local_path)
    size_bytes = file_service.get_saved_file_size(local_path)
    if not file_service.file_has_audio_signature(local_path):
        raise InvalidInputError('Uploaded file is not a supported audio format.')
    mime_type = file_service.get_mime_type(local_path)

    recorder.set_progress(8, 'chunking')
    chunks = plan_transcription_chunks(local_path, size_bytes, config=config, probe_duration_fn=probe_duration_fn)
    direct = len(chunks) == 1 and size_bytes <= config.max_direct_audio_bytes

    def _transcribe(chunk):
        if direct:
            return transcribe_fn(
                services.gemini, local_path, mime_type,
                model=config.model_audio, language=message.language, logger=logger, sleep_fn=sleep_fn,
            )
        segment_path = os.path.join(work_dir, f'chunk_{chunk.index:03d}{extension}')
        upload_path = segment_path
        try:
            extract_segment_fn(local_path, segment_path, chunk.start, chunk.length)
            upload_path = chunk_planner.ensure_chunk_within_limit(
                segment_path,
                chunk,
                hard_limit=config.max_direct_audio_bytes,
                reencode_fn=reencode_fn,
                size_fn=file_service.get_saved_file_size,
                logger=logger,
            )
            return transcribe_fn(
                services.gemini, upload_path, file_service.get_mime_type(upload_path),
                model=config.model_audio, language=message.language, logger=logger, sleep_fn=sleep_fn,
            )
        finally:
            file_service.remove_file(segment_path, logger=logger)
            if upload_path != segment_path:
                file_service.remove_file(upload_path, logger=logger)

    recorder.set_progress(10, 'transcribing')
    run = ChunkTransformRun(chunks, _transcribe, label='audio')
    for _result in run:
        recorder.set_progress(scale_percent(run.snapshot()['percent'], 10, 70), 'transcribing')
    file_service.remove_file(local_path, logger=logger)

    if all_failed(run.results):
        raise AllChunksFailedError(f'All {len(chunks)} audio chunks failed to transcribe.')

    recorder.set_progress(72, 'merging')
    merged = merge_text_results(
        run.results,
        window_chars=config.merge_window_chars,
        min_tokens=config.min_overlap_tokens,
        marker_template=TRANSCRIPT_FAILURE_MARKER,
    )

    recorder.set_progress(75, 'enhancing')
    notes = enhance_transcript(
        merged.content,
        message=message,
        services=services,
        config=config,
        recorder=recorder,
        enhance_fn=enhance_fn,
    )

    recorder.set_progress(97, 'saving')
    output_path = paths.transcription_markdown(message.input_ref)
    storage_repo.upload_text(services.bucket, output_path, notes, metadata={
        'jobId': message.job_id,
        'sourceChunkCount': str(merged.source_chunk_count),
    })
    recorder.set_completed(
        output_path,
        cleanMarkdownPath=output_path,
        type='transcription',
        fileSize=len(notes.encode('utf-8')),
        sourceChunkCount=merged.source_chunk_count,
        failedChunkCount=merged.failed_chunk_count,
    )
    return {
        'resultRef': output_path,
        'sourceChunkCount': merged.source_chunk_count,
        'failedChunkCount': merged.failed_chunk_count,
    }
