"""Study markdown -> SSML -> long-audio synthesis with artifact preservation."""

import datetime
import logging
import time

from media_pipeline.errors import AllChunksFailedError, ExternalOperationError, InputNotFoundError
from media_pipeline.logging_config import log_event
from media_pipeline.models import Operation
from media_pipeline.repositories import jobs_repo, storage_repo
from media_pipeline.services import chunk_planner, gemini_service, operation_monitor, ssml_service, synthesis_service
from media_pipeline.services.chunk_transformer import ChunkTransformRun, scale_percent
from media_pipeline.services.overlap_merger import all_failed

logger = logging.getLogger(__name__)


def _utc_now():
    return datetime.datetime.now(datetime.timezone.utc)


def load_existing_ssml(bucket, job_doc):
    tts = job_doc.get('tts') or {}
    ssml_path = tts.get('ssmlPath')
    if tts.get('status') != 'completed' or not ssml_path:
        return None
    if not storage_repo.blob_exists(bucket, ssml_path):
        return None
    return storage_repo.download_text(bucket, ssml_path)


def resolve_source_markdown_ref(message, job_doc):
    if message.input_ref:
        return message.input_ref
    smart_structure = job_doc.get('smartStructure') or {}
    return smart_structure.get('cleanMarkdownPath') or ''


def generate_ssml(markdown, *, message, services, config, recorder, generate_fn):
    chunks = chunk_planner.plan_paragraph_chunks(markdown, config.max_ssml_chunk_chars)

    def _generate(chunk):
        return generate_fn(
            services.gemini,
            chunk_planner.slice_text(markdown, chunk),
            model=config.model_ssml,
            language=message.language,
        )

    run = ChunkTransformRun(chunks, _generate, label='ssml')
    for _result in run:
        recorder.set_progress(scale_percent(run.snapshot()['percent'], 10, 40), 'generating_ssml')
    if all_failed(run.results):
        raise AllChunksFailedError(f'All {len(chunks)} sections failed to convert to speech markup.')
    return ssml_service.combine_ssml_chunks(run.results)


def run_synthesis(
    message,
    *,
    services,
    config,
    recorder,
    paths,
    work_dir,
    generate_fn=gemini_service.generate_ssml_chunk,
    sleep_fn=time.sleep,
    clock=_utc_now,
):
    recorder.set_processing('loading', 5)
    job_doc = jobs_repo.get_job_doc(services.db, message.owner_id, message.job_id)

    ssml = load_existing_ssml(services.bucket, job_doc)
    if ssml is None:
        source_ref = resolve_source_markdown_ref(message, job_doc)
        if not source_ref or not storage_repo.blob_exists(services.bucket, source_ref):
            raise InputNotFoundError('No converted document found to generate audio from.')
        markdown = storage_repo.download_text(services.bucket, source_ref)
        synthesis_service.check_markdown_size(
            markdown,
            max_ssml_bytes=config.max_ssml_bytes,
            inflation_factor=config.ssml_inflation_factor,
        )
        recorder.set_progress(10, 'generating_ssml')
        ssml = generate_ssml(
            markdown,
            message=message,
            services=services,
            config=config,
            recorder=recorder,
            generate_fn=generate_fn,
        )
        storage_repo.upload_text(services.bucket, paths.ssml, ssml, content_type='application/ssml+xml')
        recorder.record_fields({'tts': {
            'status': 'completed',
            'ssmlPath': paths.ssml,
            'processedAt': time.time(),
        }})
    else:
        logger.info('Reusing existing SSML for job %s', message.job_id)

    request_ssml = ssml_service.prepare_ssml_for_request(ssml)
    synthesis_service.check_ssml_size(request_ssml, max_ssml_bytes=config.max_ssml_bytes)

    recorder.set_progress(40, 'synthesizing')
    started_at = clock()
    output_uri = storage_repo.gcs_uri(services.bucket, paths.synthesis_output)
    try:
        handle = services.synthesizer.dispatch(request_ssml, message.language, output_uri)
    except Exception as exc:
        raise ExternalOperationError(f'Could not start audio synthesis: {str(exc)[:300]}') from exc

    operation = Operation(
        external_handle=handle,
        name=services.synthesizer.operation_name(handle),
        output_path=paths.synthesis_output,
        started_at=started_at,
    )
    log_event(logger, logging.INFO, 'synthesis_dispatched', job_id=message.job_id, operation=operation.name)

    operation_monitor.monitor_operation(
        operation,
        poll_fn=services.synthesizer.poll,
        bucket=services.bucket,
        output_prefix=paths.synthesis_output_dir,
        final_path_for=paths.final_path_for,
        poll_interval_seconds=config.poll_interval_seconds,
        max_attempts=config.max_poll_attempts,
        on_progress=lambda op: recorder.set_progress(scale_percent(op.progress_percent, 40, 95), 'synthesizing'),
        sleep_fn=sleep_fn,
    )
    record = operation_monitor.resolve_outcome(
        [operation],
        timeout_message=(
            f'Audio generation did not finish within '
            f'{config.poll_interval_seconds * config.max_poll_attempts} seconds.'
        ),
    )
    result_ref = record.get('audioPath') or record['audioPaths'][0]
    recorder.set_completed(result_ref, format='wav', generatedAt=time.time(), **record)
    return dict(record, resultRef=result_ref)
