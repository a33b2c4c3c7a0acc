"""
Analysis configuration.
"""

from dataclasses import dataclass

# Nominal chart width in pixels used to decide whether to aggregate
DEFAULT_CHART_WIDTH = 800

# Below this many pixels per packet the chart is aggregated into buckets
MIN_PIXELS_PER_PACKET = 0.5

# Minimum gap between published progress updates (10 updates/sec)
PROGRESS_INTERVAL_S = 0.1


@dataclass
class AnalysisConfig:
    progress_interval: float = PROGRESS_INTERVAL_S
    chart_width: int = DEFAULT_CHART_WIDTH
    min_pixels_per_packet: float = MIN_PIXELS_PER_PACKET
    hide_keyframes: bool = False
    join_timeout: float = 1.0
    """Seconds to wait for a superseded worker thread to exit"""
