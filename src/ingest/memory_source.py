"""
In-memory packet source.

Replays records that are already resident, e.g. packets handed over by an
embedding application or prepared by a test.
"""

from typing import Iterable, Iterator

from analysis.exceptions import MetadataInvalid, SourceUnavailable
from models.packet import PacketRecord, VideoMetadata
from .source import IPacketSource


class InMemorySource(IPacketSource):

    def __init__(self, packets: Iterable[PacketRecord], metadata: VideoMetadata):
        self._packets = list(packets)
        self._metadata = metadata
        self._opened = False
        self._closed = False

    def open(self) -> VideoMetadata:
        if self._closed:
            raise SourceUnavailable()
        if not self._metadata.has_usable_duration:
            raise MetadataInvalid()
        self._opened = True
        return self._metadata

    def iter_packets(self) -> Iterator[PacketRecord]:
        if not self._opened:
            raise SourceUnavailable()
        for packet in self._packets:
            if self._closed:
                return
            yield packet

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
