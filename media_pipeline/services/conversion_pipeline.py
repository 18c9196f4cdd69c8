"""Large PDF -> study markdown, converted a few pages at a time."""

import logging
import time

from media_pipeline.errors import AllChunksFailedError, InputNotFoundError, InvalidInputError, SizeLimitExceededError
from media_pipeline.logging_config import log_event
from media_pipeline.repositories import storage_repo
from media_pipeline.services import chunk_planner, gemini_service, pdf_service
from media_pipeline.services.chunk_transformer import ChunkTransformRun, scale_percent
from media_pipeline.services.markdown_service import clean_markdown, create_clean_markdown_for_tts
from media_pipeline.services.overlap_merger import all_failed, merge_page_results

logger = logging.getLogger(__name__)

PAGE_FAILURE_MARKER = '[Failed to convert chunk {number}]'


def run_conversion(
    message,
    *,
    services,
    config,
    recorder,
    paths,
    work_dir,
    convert_fn=gemini_service.convert_pdf_chunk,
    sleep_fn=time.sleep,
):
    recorder.set_processing('downloading', 5)
    blob = storage_repo.get_blob(services.bucket, message.input_ref)
    if blob is None:
        raise InputNotFoundError(f'PDF file not found: {message.input_ref}')
    declared_size = int(getattr(blob, 'size', 0) or message.size_hint or 0)
    if declared_size > config.max_pdf_bytes:
        raise SizeLimitExceededError(
            f'PDF is {declared_size / (1024 * 1024):.0f} MB; the maximum supported size is '
            f'{config.max_pdf_bytes / (1024 * 1024):.0f} MB.'
        )

    pdf_bytes = storage_repo.download_bytes(services.bucket, message.input_ref)
    if not pdf_service.file_has_pdf_signature(pdf_bytes):
        raise InvalidInputError('Uploaded file is not a valid PDF.')

    document = pdf_service.open_pdf(pdf_bytes)
    del pdf_bytes
    try:
        page_count = document.page_count
        try:
            chunks = chunk_planner.plan_page_chunks(page_count, config.pdf_pages_per_chunk)
        except ValueError as exc:
            raise InvalidInputError(f'The PDF could not be split into page ranges ({exc}).') from exc
        if not chunks:
            raise InvalidInputError('The PDF has no pages.')
        log_event(logger, logging.INFO, 'pdf_chunks_planned', page_count=page_count, chunk_count=len(chunks))

        def _convert(chunk):
            if chunk.index > 0 and config.pdf_call_delay_ms:
                sleep_fn(config.pdf_call_delay_ms / 1000)
            excerpt = pdf_service.extract_page_range(document, int(chunk.start), int(chunk.end))
            try:
                markdown = convert_fn(
                    services.gemini,
                    excerpt,
                    first_page=int(chunk.start) + 1,
                    last_page=int(chunk.end),
                    model=config.model_pdf,
                    language=message.language,
                )
            finally:
                del excerpt
            return clean_markdown(markdown)

        recorder.set_progress(10, 'converting')
        run = ChunkTransformRun(chunks, _convert, label='pdf_pages')
        for _result in run:
            recorder.set_progress(scale_percent(run.snapshot()['percent'], 10, 90), 'converting')
    finally:
        document.close()

    if all_failed(run.results):
        raise AllChunksFailedError(f'All {len(chunks)} page ranges failed to convert.')

    recorder.set_progress(92, 'merging')
    merged = merge_page_results(run.results, chunks, marker_template=PAGE_FAILURE_MARKER)
    markdown = clean_markdown(merged.content)
    speech_markdown = create_clean_markdown_for_tts(markdown)

    recorder.set_progress(96, 'saving')
    storage_repo.upload_text(services.bucket, paths.conversion_markdown, markdown)
    storage_repo.upload_text(services.bucket, paths.conversion_clean_markdown, speech_markdown)
    recorder.set_completed(
        paths.conversion_markdown,
        markdownPath=paths.conversion_markdown,
        cleanMarkdownPath=paths.conversion_clean_markdown,
        type='conversion',
        pageCount=page_count,
        sourceChunkCount=merged.source_chunk_count,
        failedChunkCount=merged.failed_chunk_count,
        fileSize=len(markdown.encode('utf-8')),
    )
    recorder.record_fields({'tts': {'status': 'ready'}})
    return {
        'resultRef': paths.conversion_markdown,
        'pageCount': page_count,
        'sourceChunkCount': merged.source_chunk_count,
        'failedChunkCount': merged.failed_chunk_count,
    }
