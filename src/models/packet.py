# Packet data model
"""
Packet data models for Bitrate Reader.

THESE MODELS ARE IMMUTABLE - statistics and viewport computations are shared
between threads without locking. Once created, packet objects are never
modified. Re-indexing creates new objects.
"""

import math
from dataclasses import dataclass, field, replace
from fractions import Fraction
from typing import Optional, Tuple


@dataclass(frozen=True)
class RationalTime:
    """
    Exact presentation time as ``value / timescale`` seconds.

    Demuxers hand out timestamps in the stream's time base (e.g. 1/90000 for
    MPEG-TS, 1/12800 for many MP4 files). Keeping the rational form means
    sorting never suffers from float rounding; ``seconds`` is only for display
    and bucketing.
    """
    value: int
    """Tick count in the stream time base"""

    timescale: int
    """Ticks per second. A timescale <= 0 marks an invalid time."""

    @property
    def is_valid(self) -> bool:
        return self.timescale > 0

    @property
    def seconds(self) -> Optional[float]:
        """Float seconds, or None when the time is invalid or not finite."""
        if not self.is_valid:
            return None
        try:
            seconds = self.value / self.timescale
        except OverflowError:
            return None
        return seconds if math.isfinite(seconds) else None

    def sort_key(self) -> Tuple[int, Fraction]:
        """Exact ordering key. Invalid times sort after every valid time."""
        if not self.is_valid:
            return (1, Fraction(0))
        return (0, Fraction(self.value, self.timescale))

    @classmethod
    def invalid(cls) -> "RationalTime":
        return cls(value=0, timescale=0)

    @classmethod
    def from_seconds(cls, seconds: float, timescale: int = 1_000_000) -> "RationalTime":
        """Quantize float seconds onto ``timescale`` (microseconds by default)."""
        if not math.isfinite(seconds):
            return cls.invalid()
        return cls(value=round(seconds * timescale), timescale=timescale)


@dataclass(frozen=True)
class PacketRecord:
    """
    One compressed video packet (access unit).

    ``index`` is the position in presentation order once the list has been
    through ``analysis.ordering.reorder``; sources assign provisional
    decode-order indices that are discarded there.
    """
    index: int
    timestamp: RationalTime
    size_bytes: int
    """Total compressed size. Must be > 0 for the record to be analyzable."""

    is_keyframe: bool
    """True for sync samples (independently decodable, I/IDR frames)"""

    seconds: Optional[float] = field(init=False, compare=False)
    """Pre-computed once from ``timestamp`` (None if invalid)"""

    def __post_init__(self):
        object.__setattr__(self, 'seconds', self.timestamp.seconds)

    @property
    def is_valid(self) -> bool:
        """Invalid records stay in the raw list but are never analyzed."""
        return self.seconds is not None and self.size_bytes > 0

    def with_index(self, index: int) -> "PacketRecord":
        return replace(self, index=index)


@dataclass(frozen=True)
class VideoMetadata:
    """Metadata about the analyzed video stream. Read-only once loaded."""
    duration_seconds: float
    frame_count_estimate: Optional[int] = None
    codec_description: Optional[str] = None
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    file_size_bytes: Optional[int] = None

    @property
    def has_usable_duration(self) -> bool:
        return math.isfinite(self.duration_seconds) and self.duration_seconds > 0
