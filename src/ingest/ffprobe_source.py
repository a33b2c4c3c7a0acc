"""
FFprobe-backed packet source.

Metadata comes from one ``ffprobe -show_format -show_streams`` call (JSON).
Packets are streamed line by line from a second ffprobe process so that a
multi-hour file never has to be held as one JSON document, and so that
cancellation can kill the process mid-stream.
"""

import json
import logging
import math
import os
import subprocess
import tempfile
import threading
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from analysis.exceptions import (
    IngestionFailed,
    MetadataInvalid,
    NoAnalyzableTrack,
    SourceUnavailable,
)
from models.packet import PacketRecord, RationalTime, VideoMetadata
from .source import IPacketSource, resolve_sync_flag

logger = logging.getLogger(__name__)

FFPROBE = "ffprobe"

# Lines of ffprobe stderr kept as the failure detail
STDERR_TAIL_LINES = 20


def parse_rational(text: Optional[str]) -> Optional[Fraction]:
    """Parse ffprobe's 'num/den' notation ('1/90000', '30000/1001')."""
    if not text:
        return None
    try:
        value = Fraction(str(text))
    except (ValueError, ZeroDivisionError):
        return None
    return value


def parse_packet_line(line: str, time_base: Fraction, index: int) -> Optional[PacketRecord]:
    """
    Parse one ``pts,size,flags`` CSV line.

    A pts of 'N/A' yields a record with an invalid timestamp; it is kept so
    the packet still counts, but it is never analyzed.
    """
    parts = line.strip().split(",")
    if len(parts) < 2 or not parts[0]:
        return None

    pts_text, size_text = parts[0], parts[1]
    flags = parts[2] if len(parts) > 2 else ""

    try:
        size = int(size_text)
    except ValueError:
        return None

    if pts_text == "N/A":
        timestamp = RationalTime.invalid()
    else:
        try:
            pts = int(pts_text)
        except ValueError:
            return None
        timestamp = RationalTime(pts * time_base.numerator, time_base.denominator)

    sync_flag = ('K' in flags) if flags else None
    return PacketRecord(
        index=index,
        timestamp=timestamp,
        size_bytes=size,
        is_keyframe=resolve_sync_flag(sync_flag),
    )


class FFprobeSource(IPacketSource):
    """Reads video packet metadata from any container ffprobe understands."""

    def __init__(self, filepath: str, stream_index: int = 0, ffprobe: str = FFPROBE):
        self.filepath = filepath
        self.stream_index = stream_index
        """Index among the file's video streams (v:N)"""
        self.ffprobe = ffprobe
        self._time_base = Fraction(1, 1)
        self._process: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def _stream_selector(self) -> str:
        return f"v:{self.stream_index}"

    def _probe(self) -> Dict[str, Any]:
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            "-select_streams", self._stream_selector,
            str(self.filepath),
        ]
        logger.debug("Probing %s", self.filepath)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except FileNotFoundError as e:
            raise SourceUnavailable(f"ffprobe not found: {e}") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
            raise SourceUnavailable(f"Unable to access the video file: {detail}") from e

        try:
            return json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise SourceUnavailable(f"Unreadable ffprobe output: {e}") from e

    def open(self) -> VideoMetadata:
        path = Path(self.filepath)
        if not path.exists():
            raise SourceUnavailable(f"Video file not found: {path}")

        data = self._probe()
        streams = [s for s in data.get("streams", []) if s.get("codec_type") == "video"]
        if not streams:
            raise NoAnalyzableTrack()
        stream = streams[0]
        fmt = data.get("format", {})

        time_base = parse_rational(stream.get("time_base"))
        if time_base is None or time_base <= 0:
            raise MetadataInvalid(f"Invalid stream time base: {stream.get('time_base')!r}")
        self._time_base = time_base

        duration = _parse_float(fmt.get("duration")) or _parse_float(stream.get("duration"))
        if duration is None or not math.isfinite(duration) or duration <= 0:
            raise MetadataInvalid()

        file_size = _parse_int(fmt.get("size"))
        if file_size is None:
            file_size = os.path.getsize(path)

        return VideoMetadata(
            duration_seconds=duration,
            frame_count_estimate=_frame_count_estimate(stream, duration),
            codec_description=_codec_description(stream),
            file_name=path.name,
            file_path=str(path),
            file_size_bytes=file_size,
        )

    def _start_process(self, stderr_file) -> subprocess.Popen:
        cmd = [
            self.ffprobe,
            "-v", "error",
            "-select_streams", self._stream_selector,
            "-show_entries", "packet=pts,size,flags",
            "-of", "csv=p=0",
            str(self.filepath),
        ]
        with self._lock:
            if self._closed:
                raise SourceUnavailable("Source already closed")
            try:
                # A file, not a pipe: nothing drains stderr while stdout is read
                self._process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    text=True,
                )
            except OSError as e:
                raise SourceUnavailable(f"Failed to start ffprobe: {e}") from e
            return self._process

    def iter_packets(self) -> Iterator[PacketRecord]:
        with tempfile.TemporaryFile() as stderr_file:
            process = self._start_process(stderr_file)
            index = 0
            try:
                for line in process.stdout:
                    record = parse_packet_line(line, self._time_base, index)
                    if record is None:
                        continue
                    yield record
                    index += 1

                returncode = process.wait()
                if self._closed:
                    return
                if returncode != 0:
                    stderr = _read_tail(stderr_file, STDERR_TAIL_LINES)
                    raise IngestionFailed(stderr or f"ffprobe exited with status {returncode}")
                logger.debug("ffprobe produced %d packets for %s", index, self.filepath)
            finally:
                if process.stdout:
                    process.stdout.close()

    def close(self) -> None:
        """Kill the packet process; the reading side sees EOF and stops."""
        with self._lock:
            self._closed = True
            process = self._process

        if process is not None and process.poll() is None:
            process.kill()
            process.wait()


def _parse_float(value: Any) -> Optional[float]:
    if value in (None, "", "N/A"):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value: Any) -> Optional[int]:
    if value is None or not str(value).isdigit():
        return None
    return int(value)


def _frame_count_estimate(stream: Dict[str, Any], duration: float) -> Optional[int]:
    frames = _parse_int(stream.get("nb_frames"))
    if frames:
        return frames
    rate = parse_rational(stream.get("avg_frame_rate")) or parse_rational(stream.get("r_frame_rate"))
    if not rate or rate <= 0:
        return None
    estimate = duration * float(rate)
    return int(estimate) if math.isfinite(estimate) and estimate >= 0 else None


def _codec_description(stream: Dict[str, Any]) -> Optional[str]:
    """Prefer the container four-character code (avc1, hvc1, apcn...)."""
    tag = stream.get("codec_tag_string") or ""
    if len(tag) == 4 and tag.isprintable() and not tag.startswith("["):
        return tag
    return stream.get("codec_name")


def _read_tail(stream, max_lines: int) -> str:
    """Last ``max_lines`` lines written to a binary temporary file."""
    stream.seek(0)
    text = stream.read().decode("utf-8", errors="replace")
    return "\n".join(text.strip().splitlines()[-max_lines:])
