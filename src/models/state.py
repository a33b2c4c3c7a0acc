"""
Analysis state machine variants.

Each state is its own frozen dataclass carrying only the payload that state
needs; ``AnalysisState`` is the union of them. Observers switch on ``phase``
(or ``isinstance``).

    Idle -> LoadingMetadata -> Analyzing(p) -> Finished | Failed
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Tuple, Union

from .packet import PacketRecord, VideoMetadata


class AnalysisPhase(Enum):
    IDLE = "idle"
    LOADING_METADATA = "loading_metadata"
    ANALYZING = "analyzing"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass(frozen=True)
class Idle:
    phase: ClassVar[AnalysisPhase] = AnalysisPhase.IDLE


@dataclass(frozen=True)
class LoadingMetadata:
    phase: ClassVar[AnalysisPhase] = AnalysisPhase.LOADING_METADATA


@dataclass(frozen=True)
class Analyzing:
    phase: ClassVar[AnalysisPhase] = AnalysisPhase.ANALYZING
    progress: float = 0.0
    """Fraction in [0, 1], non-decreasing within one run"""


@dataclass(frozen=True)
class Finished:
    phase: ClassVar[AnalysisPhase] = AnalysisPhase.FINISHED
    packets: Tuple[PacketRecord, ...]
    """Presentation-ordered, re-indexed. Tuple keeps it immutable once published."""
    metadata: VideoMetadata

    def __post_init__(self):
        if not isinstance(self.packets, tuple):
            object.__setattr__(self, 'packets', tuple(self.packets))


@dataclass(frozen=True)
class Failed:
    phase: ClassVar[AnalysisPhase] = AnalysisPhase.FAILED
    reason: str

    @property
    def was_cancelled(self) -> bool:
        return self.reason == CANCELLED_REASON


CANCELLED_REASON = "cancelled"

AnalysisState = Union[Idle, LoadingMetadata, Analyzing, Finished, Failed]

# States from which a new analysis may be started
STARTABLE_PHASES = frozenset({
    AnalysisPhase.IDLE,
    AnalysisPhase.FAILED,
    AnalysisPhase.FINISHED,
})

# States with a worker in flight
ACTIVE_PHASES = frozenset({
    AnalysisPhase.LOADING_METADATA,
    AnalysisPhase.ANALYZING,
})
