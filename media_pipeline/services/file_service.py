"""Local media file helpers built on ffmpeg and ffprobe."""

import os
import shutil
import subprocess

import imageio_ffmpeg

# Duration estimate when ffprobe is unavailable: ~128 kbit/s audio.
FALLBACK_BYTES_PER_SECOND = 16 * 1024


def get_saved_file_size(path):
    try:
        return os.path.getsize(path)
    except Exception:
        return -1


def get_ffmpeg_binary(*, which_func=shutil.which, imageio_ffmpeg_module=imageio_ffmpeg):
    ffmpeg_bin = which_func('ffmpeg')
    if ffmpeg_bin:
        return ffmpeg_bin
    if imageio_ffmpeg_module:
        try:
            ffmpeg_bin = imageio_ffmpeg_module.get_ffmpeg_exe()
            if ffmpeg_bin and os.path.exists(ffmpeg_bin):
                return ffmpeg_bin
        except Exception:
            pass
    return ''


def get_ffprobe_binary(*, ffmpeg_binary_getter=get_ffmpeg_binary, which_func=shutil.which):
    ffprobe_bin = which_func('ffprobe')
    if ffprobe_bin:
        return ffprobe_bin
    ffmpeg_bin = ffmpeg_binary_getter()
    if not ffmpeg_bin:
        return ''
    candidate = os.path.join(os.path.dirname(ffmpeg_bin), 'ffprobe')
    if os.path.exists(candidate):
        return candidate
    return ''


# Leading magic bytes of the containers the transcription model accepts.
AUDIO_MAGIC_PREFIXES = (
    b'ID3',
    b'fLaC',
    b'OggS',
    b'\x1a\x45\xdf\xa3',
    b'#!AMR',
)


def _is_mpeg_frame_sync(header):
    # 11-bit frame sync shared by MPEG audio and ADTS AAC.
    return len(header) >= 2 and header[0] == 0xFF and (header[1] & 0xE0) == 0xE0


def file_has_audio_signature(path):
    """True when the file starts like a known audio container."""
    try:
        with open(path, 'rb') as handle:
            header = handle.read(16)
    except OSError:
        return False
    if header.startswith(AUDIO_MAGIC_PREFIXES):
        return True
    if header[:4] == b'RIFF' and header[8:12] == b'WAVE':
        return True
    if header[4:8] == b'ftyp':
        return True
    return _is_mpeg_frame_sync(header)


def probe_audio_duration(path, *, ffprobe_binary_getter=get_ffprobe_binary, subprocess_module=subprocess, logger=None):
    """Duration in seconds, estimated from the file size when ffprobe cannot tell."""
    ffprobe_bin = ffprobe_binary_getter()
    if ffprobe_bin:
        cmd = [
            ffprobe_bin,
            '-v', 'error',
            '-show_entries', 'format=duration',
            '-of', 'default=noprint_wrappers=1:nokey=1',
            path,
        ]
        try:
            result = subprocess_module.run(cmd, check=False, capture_output=True, text=True, timeout=60)
            if result.returncode == 0:
                duration = float((result.stdout or '').strip().splitlines()[0])
                if duration > 0:
                    return duration
        except Exception as exc:
            if logger is not None:
                logger.warning(f"ffprobe duration lookup failed for {path}: {exc}")
    size = max(get_saved_file_size(path), 0)
    estimate = size / FALLBACK_BYTES_PER_SECOND
    if logger is not None:
        logger.warning(f"Using estimated duration {estimate:.1f}s for {path}")
    return estimate


def extract_audio_segment(source_path, target_path, start_seconds, duration_seconds, *,
                          ffmpeg_binary_getter=get_ffmpeg_binary, subprocess_module=subprocess):
    ffmpeg_bin = ffmpeg_binary_getter()
    if not ffmpeg_bin:
        raise RuntimeError('ffmpeg is not installed on the server.')
    cmd = [
        ffmpeg_bin,
        '-y',
        '-ss', f'{float(start_seconds):.3f}',
        '-i', source_path,
        '-t', f'{float(duration_seconds):.3f}',
        '-vn',
        '-c:a', 'copy',
        target_path,
    ]
    result = subprocess_module.run(cmd, check=False, capture_output=True, text=True, timeout=600)
    if result.returncode != 0 or not os.path.exists(target_path):
        stderr = (result.stderr or result.stdout or '').strip().splitlines()
        reason = stderr[-1] if stderr else 'segment extraction failed'
        raise RuntimeError(f'Could not extract audio segment ({reason[:220]}).')
    return target_path


def reencode_audio(source_path, target_path, *, bitrate='24k', sample_rate=16000, channels=1,
                   ffmpeg_binary_getter=get_ffmpeg_binary, subprocess_module=subprocess):
    ffmpeg_bin = ffmpeg_binary_getter()
    if not ffmpeg_bin:
        raise RuntimeError('ffmpeg is not installed on the server.')
    cmd = [
        ffmpeg_bin,
        '-y',
        '-i', source_path,
        '-vn',
        '-codec:a', 'libmp3lame',
        '-b:a', bitrate,
        '-ar', str(sample_rate),
        '-ac', str(channels),
        target_path,
    ]
    result = subprocess_module.run(cmd, check=False, capture_output=True, text=True, timeout=600)
    if result.returncode != 0 or not os.path.exists(target_path):
        stderr = (result.stderr or result.stdout or '').strip().splitlines()
        reason = stderr[-1] if stderr else 're-encoding failed'
        raise RuntimeError(f'Could not re-encode audio ({reason[:220]}).')
    return target_path


def remove_file(path, *, logger=None):
    try:
        if path and os.path.exists(path):
            os.remove(path)
    except Exception as exc:
        if logger is not None:
            logger.warning(f"Could not delete local file {path}: {exc}")


def get_mime_type(filename):
    parts = filename.rsplit('.', 1)
    ext = parts[1].lower() if len(parts) > 1 else ''
    mime_types = {
        'pdf': 'application/pdf',
        'mp3': 'audio/mpeg',
        'm4a': 'audio/mp4',
        'mp4': 'audio/mp4',
        'wav': 'audio/wav',
        'aac': 'audio/aac',
        'ogg': 'audio/ogg',
        'flac': 'audio/flac',
        'webm': 'audio/webm',
        'md': 'text/markdown',
        'ssml': 'application/ssml+xml',
    }
    return mime_types.get(ext, 'application/octet-stream')
