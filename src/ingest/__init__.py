"""
Packet ingestion sources.
"""

from .source import IPacketSource, resolve_sync_flag
from .memory_source import InMemorySource
from .dummy_source import DummySource
from .ffprobe_source import FFprobeSource
from .rtp_pcap_source import RtpPcapSource

__all__ = [
    'IPacketSource',
    'resolve_sync_flag',
    'InMemorySource',
    'DummySource',
    'FFprobeSource',
    'RtpPcapSource',
]
