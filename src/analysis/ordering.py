"""
Presentation-order normalization.

Containers frequently store packets in decode order (DTS). With B-frames
that differs from presentation order (PTS), which is what a bitrate timeline
has to show. The sort must be stable: packets sharing a timestamp keep their
relative input order.
"""

from typing import Iterable, List

from models.packet import PacketRecord


def reorder(records: Iterable[PacketRecord]) -> List[PacketRecord]:
    """
    Sort records by exact timestamp and re-index them 0..N-1.

    Any incoming ``index`` is discarded. Invalid timestamps sort last.
    """
    ordered = sorted(records, key=lambda record: record.timestamp.sort_key())
    return [record.with_index(i) for i, record in enumerate(ordered)]
