"""
Packet timeline data models.
"""

from .packet import RationalTime, PacketRecord, VideoMetadata
from .statistics import StatisticsSnapshot
from .state import (
    AnalysisPhase,
    AnalysisState,
    Idle,
    LoadingMetadata,
    Analyzing,
    Finished,
    Failed,
    CANCELLED_REASON,
)

__all__ = [
    'RationalTime',
    'PacketRecord',
    'VideoMetadata',
    'StatisticsSnapshot',
    'AnalysisPhase',
    'AnalysisState',
    'Idle',
    'LoadingMetadata',
    'Analyzing',
    'Finished',
    'Failed',
    'CANCELLED_REASON',
]
