"""
Statistics snapshot model.

Computed exactly once per finished analysis by
``analysis.statistics.compute_statistics`` and never modified afterwards.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

# A GOP spread up to this many packets still reads as a fixed pattern to a user
MOSTLY_FIXED_GOP_SPREAD = 2


@dataclass(frozen=True)
class StatisticsSnapshot:
    packet_count: int = 0
    """All records, including invalid ones"""

    valid_count: int = 0
    total_bytes: int = 0

    min_size: int = 0
    max_size: int = 0
    avg_size: int = 0
    avg_bitrate_bps: int = 0

    keyframe_count: int = 0
    keyframe_percent: float = 0.0
    is_all_intra: bool = False

    # GOP structure - only meaningful for inter-frame codecs
    gop_count: int = 0
    min_gop_length: int = 0
    max_gop_length: int = 0
    avg_gop_length: float = 0.0

    @property
    def has_gop_structure(self) -> bool:
        return not self.is_all_intra and self.gop_count > 0

    @property
    def gop_pattern(self) -> Optional[str]:
        """'fixed', 'mostly_fixed' or 'variable'; None without GOPs."""
        if not self.has_gop_structure:
            return None
        if self.min_gop_length == self.max_gop_length:
            return "fixed"
        if self.max_gop_length - self.min_gop_length <= MOSTLY_FIXED_GOP_SPREAD:
            return "mostly_fixed"
        return "variable"

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["gop_pattern"] = self.gop_pattern
        return result
