"""
Ingestion source interface.

A source is the demuxing collaborator: it yields packet metadata for one video
elementary stream, in whatever order the container stores it (usually decode
order). The orchestrator always reorders, so sources must not bother.
"""

from abc import ABC, abstractmethod
from typing import Iterator, Optional

from models.packet import PacketRecord, VideoMetadata


def resolve_sync_flag(flag: Optional[bool]) -> bool:
    """
    Map a possibly-missing sync flag to ``is_keyframe``.

    A packet without sync information is treated as a keyframe, the same as
    a sample with no sample attachments in an MP4/MOV track. On malformed
    streams this can tip all-intra detection.
    """
    return True if flag is None else bool(flag)


class IPacketSource(ABC):
    """
    Abstract packet source.

    Lifecycle: ``open()`` once, iterate ``iter_packets()`` once, ``close()``.
    ``close()`` must be safe to call at any time, more than once, and from
    another thread while iteration is suspended; it is how a cancelled
    analysis releases the underlying resource.
    """

    @abstractmethod
    def open(self) -> VideoMetadata:
        """
        Open the source and load its metadata.

        Raises:
            SourceUnavailable, NoAnalyzableTrack, MetadataInvalid
        """

    @abstractmethod
    def iter_packets(self) -> Iterator[PacketRecord]:
        """
        Yield packet records with provisional (decode-order) indices.

        Raises:
            IngestionFailed: the source broke mid-stream
            AnalysisCancelled: the source itself was cancelled
        """

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
