"""
Packet timeline analysis engine.
"""

from .exceptions import (
    AnalysisError,
    SourceUnavailable,
    NoAnalyzableTrack,
    MetadataInvalid,
    IngestionFailed,
    AnalysisCancelled,
)
from .config import AnalysisConfig
from .ordering import reorder
from .statistics import compute_statistics
from .viewport import (
    ViewportSeries,
    visible_range,
    visible_packets,
    downsample,
    display_series,
    nearest_packet,
)
from .orchestrator import AnalysisOrchestrator

__all__ = [
    'AnalysisError',
    'SourceUnavailable',
    'NoAnalyzableTrack',
    'MetadataInvalid',
    'IngestionFailed',
    'AnalysisCancelled',
    'AnalysisConfig',
    'reorder',
    'compute_statistics',
    'ViewportSeries',
    'visible_range',
    'visible_packets',
    'downsample',
    'display_series',
    'nearest_packet',
    'AnalysisOrchestrator',
]
