"""
Dummy packet source for testing without a demuxer.

Generates a deterministic H.264-like stream: fixed GOP length, optional
B-frames, emitted in decode order so the reordering path is always exercised.
"""
import random
import threading
from typing import Iterator, List, Tuple

from models.packet import PacketRecord, RationalTime, VideoMetadata
from .source import IPacketSource

TIMESCALE = 90000

# Typical compressed sizes per frame type (bytes)
KEYFRAME_SIZE_RANGE = (30000, 50000)
P_FRAME_SIZE_RANGE = (5000, 15000)
B_FRAME_SIZE_RANGE = (2000, 6000)


class DummySource(IPacketSource):
    """Dummy source that generates synthetic packets."""

    def __init__(self, frame_count: int = 300, fps: int = 30, gop_length: int = 30,
                 b_frames: int = 2, seed: int = 0, delay: float = 0.0,
                 codec: str = "avc1"):
        self.frame_count = frame_count
        self.fps = fps
        self.gop_length = max(1, gop_length)
        self.b_frames = max(0, b_frames)
        self.seed = seed
        self.delay = delay
        """Seconds to sleep per packet, to simulate a slow demuxer"""
        self.codec = codec
        self._stop_event = threading.Event()

    def open(self) -> VideoMetadata:
        return VideoMetadata(
            duration_seconds=self.frame_count / self.fps,
            frame_count_estimate=self.frame_count,
            codec_description=self.codec,
            file_name="dummy",
        )

    def frame_type(self, position: int) -> str:
        """'I', 'P' or 'B' for a frame at presentation ``position``."""
        in_gop = position % self.gop_length
        if in_gop == 0:
            return 'I'
        if in_gop % (self.b_frames + 1) == 0:
            return 'P'
        return 'B'

    def _presentation_frames(self) -> List[Tuple[int, str, int]]:
        rng = random.Random(self.seed)
        ranges = {'I': KEYFRAME_SIZE_RANGE, 'P': P_FRAME_SIZE_RANGE, 'B': B_FRAME_SIZE_RANGE}
        frames = []
        for position in range(self.frame_count):
            kind = self.frame_type(position)
            frames.append((position, kind, rng.randint(*ranges[kind])))
        return frames

    def decode_order(self) -> List[Tuple[int, str, int]]:
        """Anchors (I/P) are emitted before the B-frames that precede them."""
        ordered = []
        pending_b = []
        for frame in self._presentation_frames():
            if frame[1] == 'B':
                pending_b.append(frame)
            else:
                ordered.append(frame)
                ordered.extend(pending_b)
                pending_b = []
        ordered.extend(pending_b)
        return ordered

    def iter_packets(self) -> Iterator[PacketRecord]:
        ticks_per_frame = TIMESCALE // self.fps
        for decode_index, (position, kind, size) in enumerate(self.decode_order()):
            if self._stop_event.is_set():
                return
            if self.delay:
                self._stop_event.wait(self.delay)
            yield PacketRecord(
                index=decode_index,
                timestamp=RationalTime(position * ticks_per_frame, TIMESCALE),
                size_bytes=size,
                is_keyframe=(kind == 'I'),
            )

    def close(self) -> None:
        self._stop_event.set()
