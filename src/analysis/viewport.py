"""
Zoom/pan viewport and peak-preserving downsampling for the bitrate chart.

Everything here is pure: identical ``(records, zoom, pan)`` input gives
identical output, and inputs are never mutated, so rendering and other
observers may call these concurrently on a published packet list.
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models.packet import PacketRecord
from .config import DEFAULT_CHART_WIDTH, MIN_PIXELS_PER_PACKET


@dataclass(frozen=True)
class ViewportSeries:
    """Display-ready series for one zoom/pan position."""
    start: float
    end: float
    packets: Tuple[PacketRecord, ...]
    aggregated: bool
    """True when ``packets`` holds one peak packet per time bucket"""


def valid_packets(records: Iterable[PacketRecord]) -> List[PacketRecord]:
    return [record for record in records if record.is_valid]


def visible_range(timestamps: Iterable[float], zoom: float, pan: float) -> Tuple[float, float]:
    """
    Compute the visible time window.

    Args:
        timestamps: Seconds of the valid packets (any order)
        zoom: Magnification >= 1 (1 shows everything)
        pan: Position of the window inside the scrollable span, 0..1

    Returns:
        (start, end) in seconds; (0.0, 0.0) when there are no timestamps.
    """
    times = list(timestamps)
    if not times:
        return (0.0, 0.0)

    t_min = min(times)
    t_max = max(times)
    zoom = zoom if math.isfinite(zoom) and zoom > 1.0 else 1.0
    pan = min(max(pan, 0.0), 1.0) if math.isfinite(pan) else 0.0

    full_span = t_max - t_min
    visible_span = full_span / zoom
    if visible_span >= full_span:
        return (t_min, t_max)

    max_pan = max(0.0, full_span - visible_span)
    start = t_min + max_pan * pan
    end = min(t_max, start + visible_span)
    return (start, end)


def visible_packets(records: Iterable[PacketRecord], start: float, end: float,
                    hide_keyframes: bool = False) -> List[PacketRecord]:
    """
    Valid records with ``start <= seconds <= end``, sorted by time.

    ``hide_keyframes`` drops sync samples so P/B-frame patterns can be
    inspected without the I-frame spikes dominating the scale.
    """
    selected = [
        record for record in records
        if record.is_valid
        and start <= record.seconds <= end
        and not (hide_keyframes and record.is_keyframe)
    ]
    # Filtering may be applied to arbitrary subsets, so re-establish order
    selected.sort(key=lambda record: record.seconds)
    return selected


def downsample(packets: Sequence[PacketRecord], target_bucket_count: int) -> List[PacketRecord]:
    """
    Aggregate packets into ``target_bucket_count`` equal-width time buckets,
    keeping the largest packet of each bucket.

    Keeping the peak (never the mean, never the first) is what lets a
    zoomed-out chart still show bitrate spikes. Empty buckets are simply
    absent from the output.

    Returns the input unchanged when it already fits, when all packets share
    one instant, or when a bucket index cannot be computed.
    """
    if target_bucket_count <= 0 or len(packets) <= target_bucket_count:
        return list(packets)

    # Records without a usable time cannot be placed in a bucket
    timed = [packet for packet in packets if packet.seconds is not None]
    if not timed:
        return list(packets)

    start = min(packet.seconds for packet in timed)
    end = max(packet.seconds for packet in timed)
    bucket_width = (end - start) / target_bucket_count
    if not bucket_width > 0:
        return list(packets)

    buckets: Dict[int, PacketRecord] = {}
    for packet in timed:
        raw_index = (packet.seconds - start) / bucket_width
        if not math.isfinite(raw_index):
            return list(packets)
        bucket = min(max(math.floor(raw_index), 0), target_bucket_count - 1)

        existing = buckets.get(bucket)
        if existing is None or packet.size_bytes > existing.size_bytes:
            buckets[bucket] = packet

    return [buckets[bucket] for bucket in sorted(buckets)]


def display_series(records: Sequence[PacketRecord], zoom: float = 1.0, pan: float = 0.0,
                   chart_width: int = DEFAULT_CHART_WIDTH,
                   min_pixels_per_packet: float = MIN_PIXELS_PER_PACKET,
                   hide_keyframes: bool = False) -> ViewportSeries:
    """Compute the series a chart of ``chart_width`` pixels should draw."""
    valid = valid_packets(records)
    start, end = visible_range((record.seconds for record in valid), zoom, pan)
    visible = visible_packets(valid, start, end, hide_keyframes=hide_keyframes)

    if not visible:
        return ViewportSeries(start=start, end=end, packets=(), aggregated=False)

    pixels_per_packet = chart_width / len(visible)
    if pixels_per_packet < min_pixels_per_packet:
        aggregated = downsample(visible, int(chart_width))
        return ViewportSeries(start=start, end=end, packets=tuple(aggregated),
                              aggregated=len(aggregated) < len(visible))

    return ViewportSeries(start=start, end=end, packets=tuple(visible), aggregated=False)


def nearest_packet(packets: Iterable[PacketRecord], seconds: float) -> Optional[PacketRecord]:
    """The displayed packet closest in time to a cursor position."""
    best = None
    best_distance = math.inf
    for packet in packets:
        if packet.seconds is None:
            continue
        distance = abs(packet.seconds - seconds)
        if distance < best_distance:
            best = packet
            best_distance = distance
    return best
