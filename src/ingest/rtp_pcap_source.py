"""
RTP/H.264 capture source.

Reconstructs video frames from a pcap/pcapng capture of an RTP stream and
reports each frame as one packet record: RTP timestamp as presentation time,
summed RTP payload bytes as size, IDR presence as the keyframe flag.

Frames are emitted in arrival order, which for H.264 with B-frames is decode
order; the RTP timestamp is the presentation time.
"""
import logging
import os
import statistics
import threading
from collections import Counter
from typing import Dict, Iterator, List, Optional

from analysis.exceptions import MetadataInvalid, NoAnalyzableTrack, SourceUnavailable
from models.packet import PacketRecord, RationalTime, VideoMetadata
from .source import IPacketSource

try:
    from scapy.error import Scapy_Exception
    from scapy.layers.inet import UDP
    from scapy.layers.rtp import RTP, RTPExtension
    from scapy.utils import PcapReader
    SCAPY_AVAILABLE = True
except ImportError:
    SCAPY_AVAILABLE = False

logger = logging.getLogger(__name__)

VIDEO_CLOCK_RATE = 90000
RTP_TS_MODULUS = 1 << 32

# H.264 NAL unit types (RFC 6184)
NAL_IDR_SLICE = 5
NAL_STAP_A = 24
NAL_FU_A = 28

# Second header byte values of RTCP packets seen through an RTP parser
RTCP_PAYLOAD_TYPES = range(72, 77)


def nal_has_idr(payload: bytes) -> bool:
    """True if an RTP H.264 payload carries (part of) an IDR slice."""
    if not payload:
        return False
    nal_type = payload[0] & 0x1F

    if nal_type == NAL_IDR_SLICE:
        return True

    if nal_type == NAL_FU_A:
        return len(payload) >= 2 and (payload[1] & 0x1F) == NAL_IDR_SLICE

    if nal_type == NAL_STAP_A:
        offset = 1
        while offset + 2 <= len(payload):
            size = int.from_bytes(payload[offset:offset + 2], 'big')
            offset += 2
            if size and offset < len(payload) and (payload[offset] & 0x1F) == NAL_IDR_SLICE:
                return True
            offset += size

    return False


def rtp_payload(rtp) -> bytes:
    """Media payload of a parsed RTP packet, without header extension or padding."""
    layer = rtp.payload
    if rtp.extension and RTPExtension in rtp:
        layer = rtp[RTPExtension].payload
    payload = bytes(layer)
    if rtp.padding and payload:
        pad = payload[-1]
        payload = payload[:len(payload) - pad] if pad <= len(payload) else b""
    return payload


class _Frame:
    __slots__ = ('rtp_ts', 'size', 'is_idr')

    def __init__(self, rtp_ts: int):
        self.rtp_ts = rtp_ts
        self.size = 0
        self.is_idr = False


def reconstruct_frames(rtp_packets: List[Dict]) -> List[_Frame]:
    """
    Group RTP packets into frames using timestamp changes and the marker bit
    as frame boundaries.
    """
    frames: List[_Frame] = []
    current: Optional[_Frame] = None

    for pkt in rtp_packets:
        if current is not None and pkt['ts'] != current.rtp_ts:
            frames.append(current)
            current = None
        if current is None:
            current = _Frame(pkt['ts'])

        current.size += len(pkt['payload'])
        current.is_idr = current.is_idr or nal_has_idr(pkt['payload'])

        if pkt['marker']:
            frames.append(current)
            current = None

    if current is not None:
        frames.append(current)
    return frames


def unwrap_timestamps(values: List[int]) -> List[int]:
    """Extend 32-bit RTP timestamps across wraparound (reordering-safe)."""
    if not values:
        return []
    extended = [values[0]]
    for value in values[1:]:
        delta = (value - extended[-1]) % RTP_TS_MODULUS
        if delta >= RTP_TS_MODULUS // 2:
            delta -= RTP_TS_MODULUS
        extended.append(extended[-1] + delta)
    return extended


class RtpPcapSource(IPacketSource):
    """Reads an H.264 RTP stream out of a packet capture."""

    def __init__(self, filepath: str, port: Optional[int] = None,
                 clock_rate: int = VIDEO_CLOCK_RATE):
        if not SCAPY_AVAILABLE:
            raise RuntimeError("Scapy not available. Install with: pip install scapy")

        self.filepath = filepath
        self.port = port
        """Only consider UDP packets to/from this port"""
        self.clock_rate = clock_rate
        self._records: List[PacketRecord] = []
        self._closed = threading.Event()

    def _read_rtp_packets(self) -> List[Dict]:
        packets = []
        try:
            with PcapReader(self.filepath) as reader:
                for pkt in reader:
                    if self._closed.is_set():
                        break
                    if UDP not in pkt:
                        continue
                    udp = pkt[UDP]
                    if self.port is not None and self.port not in (udp.sport, udp.dport):
                        continue
                    raw = bytes(udp.payload)
                    if len(raw) < 12 or (raw[0] >> 6) != 2:
                        continue
                    rtp = RTP(raw)
                    if rtp.payload_type in RTCP_PAYLOAD_TYPES:
                        continue
                    packets.append({
                        'ssrc': rtp.sourcesync,
                        'ts': rtp.timestamp,
                        'marker': bool(rtp.marker),
                        'payload': rtp_payload(rtp),
                    })
        except (OSError, Scapy_Exception) as e:
            raise SourceUnavailable(f"Unable to read capture: {e}") from e
        return packets

    def open(self) -> VideoMetadata:
        if not os.path.exists(self.filepath):
            raise SourceUnavailable(f"Capture file not found: {self.filepath}")

        packets = self._read_rtp_packets()
        if not packets:
            raise NoAnalyzableTrack()

        # Keep the busiest stream; captures often carry audio or RTCP alongside
        ssrc, count = Counter(p['ssrc'] for p in packets).most_common(1)[0]
        stream = [p for p in packets if p['ssrc'] == ssrc]
        logger.debug("Selected SSRC %#010x (%d of %d RTP packets)", ssrc, count, len(packets))

        frames = reconstruct_frames(stream)
        extended = unwrap_timestamps([frame.rtp_ts for frame in frames])
        origin = min(extended)

        self._records = [
            PacketRecord(
                index=i,
                timestamp=RationalTime(ts - origin, self.clock_rate),
                size_bytes=frame.size,
                is_keyframe=frame.is_idr,
            )
            for i, (frame, ts) in enumerate(zip(frames, extended))
        ]

        duration = self._duration(extended)
        if duration <= 0:
            raise MetadataInvalid()

        return VideoMetadata(
            duration_seconds=duration,
            frame_count_estimate=len(frames),
            codec_description="H264",
            file_name=os.path.basename(self.filepath),
            file_path=os.path.abspath(self.filepath),
            file_size_bytes=os.path.getsize(self.filepath),
        )

    def _duration(self, extended: List[int]) -> float:
        """Timestamp span plus one typical frame interval."""
        unique = sorted(set(extended))
        if len(unique) < 2:
            return 0.0
        intervals = [b - a for a, b in zip(unique, unique[1:])]
        span = unique[-1] - unique[0]
        return (span + statistics.median(intervals)) / self.clock_rate

    def iter_packets(self) -> Iterator[PacketRecord]:
        for record in self._records:
            if self._closed.is_set():
                return
            yield record

    def close(self) -> None:
        self._closed.set()
