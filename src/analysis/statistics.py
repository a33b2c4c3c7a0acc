"""
Global packet statistics and GOP structure.

CRITICAL: Must produce identical output for identical input. Sums are done
in integers; every float field comes from exactly one division.
"""

import math
from typing import List, Sequence

from models.packet import PacketRecord
from models.statistics import StatisticsSnapshot

# Above this keyframe percentage a stream is treated as all-intra
# (ProRes, DNxHD, MJPEG...). Not 100: a malformed stream with a couple of
# non-sync packets must still classify as all-intra.
ALL_INTRA_KEYFRAME_PERCENT = 90.0


def compute_statistics(ordered: Sequence[PacketRecord], duration: float) -> StatisticsSnapshot:
    """
    Compute the statistics snapshot for a presentation-ordered packet list.

    Args:
        ordered: Output of ``reorder`` (invalid records allowed)
        duration: Stream duration in seconds, used for the bitrate

    Returns:
        StatisticsSnapshot. All numeric fields are zero when no record is valid.
    """
    valid = [record for record in ordered if record.is_valid]
    if not valid:
        return StatisticsSnapshot(packet_count=len(ordered))

    sizes = [record.size_bytes for record in valid]
    total = sum(sizes)
    valid_count = len(valid)

    keyframe_positions = [i for i, record in enumerate(valid) if record.is_keyframe]
    keyframe_count = len(keyframe_positions)
    keyframe_percent = keyframe_count / valid_count * 100.0
    is_all_intra = keyframe_percent > ALL_INTRA_KEYFRAME_PERCENT

    gop_lengths: List[int] = []
    if not is_all_intra and keyframe_count > 1:
        gop_lengths = gop_lengths_from_positions(keyframe_positions)

    return StatisticsSnapshot(
        packet_count=len(ordered),
        valid_count=valid_count,
        total_bytes=total,
        min_size=min(sizes),
        max_size=max(sizes),
        avg_size=total // valid_count,
        avg_bitrate_bps=average_bitrate(total, duration),
        keyframe_count=keyframe_count,
        keyframe_percent=keyframe_percent,
        is_all_intra=is_all_intra,
        gop_count=len(gop_lengths),
        min_gop_length=min(gop_lengths) if gop_lengths else 0,
        max_gop_length=max(gop_lengths) if gop_lengths else 0,
        avg_gop_length=sum(gop_lengths) / len(gop_lengths) if gop_lengths else 0.0,
    )


def average_bitrate(total_bytes: int, duration: float) -> int:
    """Bits per second over ``duration``; 0 when the duration is unusable."""
    if not math.isfinite(duration) or duration <= 0:
        return 0
    return math.floor(total_bytes * 8 / duration)


def gop_lengths_from_positions(keyframe_positions: Sequence[int]) -> List[int]:
    """Distances between consecutive keyframe positions."""
    return [
        later - earlier
        for earlier, later in zip(keyframe_positions, keyframe_positions[1:])
    ]
