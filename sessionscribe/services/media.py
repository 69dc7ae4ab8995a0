"""ffmpeg-backed conversion to canonical audio and time-based segmentation."""
import os

from flask import current_app

from ..exceptions import ConversionError, ConversionTimeout, SegmentationError
from .naming import safe_base
from .process_runner import run_process, DEFAULT_TIMEOUT_SEC


SAMPLE_RATE = 16000
CHANNELS = 1
SEGMENT_SECONDS = 600
PART_PREFIX = "part-"


def normalize_audio(source_path, work_dir, base_name, *, ffmpeg_path="ffmpeg", timeout=DEFAULT_TIMEOUT_SEC):
    """Convert any input media to mono 16 kHz 16-bit PCM WAV inside ``work_dir``.

    Returns the path of the WAV file. Raises ``ConversionTimeout`` when ffmpeg
    had to be killed and ``ConversionError`` on any other failure.
    """
    os.makedirs(work_dir, exist_ok=True)
    out_path = os.path.join(work_dir, f"{safe_base(base_name)}.wav")
    args = [
        "-hide_banner", "-y",
        "-i", source_path,
        "-vn",
        "-ac", str(CHANNELS),
        "-ar", str(SAMPLE_RATE),
        "-f", "wav",
        "-acodec", "pcm_s16le",
        out_path,
    ]
    result = run_process(ffmpeg_path, args, timeout=timeout)
    if result.timed_out:
        raise ConversionTimeout(f"conversion of {os.path.basename(source_path)} exceeded {timeout}s")
    if not result.ok:
        raise ConversionError(f"conversion of {os.path.basename(source_path)} failed: {result.describe()}")
    if not os.path.exists(out_path) or os.path.getsize(out_path) == 0:
        raise ConversionError(f"conversion produced no audio for {os.path.basename(source_path)}")
    current_app.logger.info("Converted %s -> %s (%.2f MB)", source_path, out_path, os.path.getsize(out_path) / (1024 * 1024))
    return out_path


def list_parts(out_dir):
    """Part files in sequence order (names are zero padded)."""
    return [
        os.path.join(out_dir, f)
        for f in sorted(os.listdir(out_dir))
        if f.startswith(PART_PREFIX) and f.endswith(".wav")
    ]


def segment_audio(wav_path, out_dir, *, segment_seconds=SEGMENT_SECONDS, ffmpeg_path="ffmpeg", timeout=DEFAULT_TIMEOUT_SEC):
    """Split canonical audio into ``segment_seconds`` windows without re-encoding."""
    os.makedirs(out_dir, exist_ok=True)
    pattern = os.path.join(out_dir, f"{PART_PREFIX}%03d.wav")
    args = [
        "-hide_banner", "-y",
        "-i", wav_path,
        "-f", "segment",
        "-segment_time", str(segment_seconds),
        "-c", "copy",
        pattern,
    ]
    result = run_process(ffmpeg_path, args, timeout=timeout)
    if not result.ok:
        raise SegmentationError(f"segmentation of {os.path.basename(wav_path)} failed: {result.describe()}")
    parts = list_parts(out_dir)
    if not parts:
        raise SegmentationError("segmentation produced no parts")
    current_app.logger.info("Split %s into %d parts of <= %ss", wav_path, len(parts), segment_seconds)
    return parts
