"""
CLI command for packet timeline analysis.
"""
import json
import logging
import sys
from typing import Optional

import click

from analysis.config import DEFAULT_CHART_WIDTH, AnalysisConfig
from analysis.orchestrator import AnalysisOrchestrator
from ingest.dummy_source import DummySource
from ingest.ffprobe_source import FFprobeSource
from ingest.rtp_pcap_source import RtpPcapSource
from models.state import Analyzing, Failed, Finished
from .formatting import format_bitrate, format_bytes, format_duration, format_gop_pattern

_PCAP_MAGIC = {
    b"\xa1\xb2\xc3\xd4",
    b"\xd4\xc3\xb2\xa1",
    b"\xa1\xb2\x3c\x4d",
    b"\x4d\x3c\xb2\xa1",
}
_PCAPNG_MAGIC = b"\x0a\x0d\x0d\x0a"


def _is_capture_file(filepath: str) -> bool:
    lower = filepath.lower()
    if lower.endswith((".pcap", ".pcapng")):
        return True
    try:
        with open(filepath, "rb") as f:
            magic = f.read(4)
    except OSError as e:
        raise click.ClickException(f"Failed to open file: {e}")
    return magic == _PCAPNG_MAGIC or magic in _PCAP_MAGIC


def _select_source(filepath: Optional[str], source: str, port: Optional[int]):
    if source == "dummy":
        return DummySource()
    if not filepath:
        raise click.UsageError(f"FILEPATH is required for the '{source}' source")
    if source == "auto":
        source = "rtp-pcap" if _is_capture_file(filepath) else "ffprobe"
    if source == "rtp-pcap":
        try:
            return RtpPcapSource(filepath, port=port)
        except RuntimeError as e:
            raise click.ClickException(str(e))
    return FFprobeSource(filepath)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s - %(name)s - %(message)s",
        stream=sys.stderr,
    )


def _echo_statistics(finished: Finished, stats) -> None:
    metadata = finished.metadata
    click.echo("=" * 50)
    click.echo("VIDEO")
    click.echo("=" * 50)
    if metadata.file_path:
        click.echo(f"File:          {metadata.file_path}")
    if metadata.codec_description:
        click.echo(f"Codec:         {metadata.codec_description}")
    click.echo(f"Duration:      {format_duration(metadata.duration_seconds)}")
    if metadata.file_size_bytes is not None:
        click.echo(f"File Size:     {format_bytes(metadata.file_size_bytes)}")
    click.echo(f"Packets:       {stats.packet_count:,}")

    click.echo("\n" + "=" * 50)
    click.echo("STATISTICS")
    click.echo("=" * 50)
    click.echo(f"Avg Bitrate:   {format_bitrate(stats.avg_bitrate_bps)}")
    click.echo(f"Min Size:      {format_bytes(stats.min_size)}")
    click.echo(f"Max Size:      {format_bytes(stats.max_size)}")
    click.echo(f"Avg Size:      {format_bytes(stats.avg_size)}")
    click.echo(f"Keyframes:     {stats.keyframe_count:,} ({stats.keyframe_percent:.1f}%)")
    if stats.is_all_intra:
        click.echo("Structure:     All-Intra")

    if stats.has_gop_structure:
        click.echo("\n" + "=" * 50)
        click.echo("GOP STRUCTURE")
        click.echo("=" * 50)
        click.echo(f"GOP Count:     {stats.gop_count}")
        click.echo(f"Avg GOP Size:  {stats.avg_gop_length:.1f} frames")
        click.echo(f"Min GOP:       {stats.min_gop_length} frames")
        click.echo(f"Max GOP:       {stats.max_gop_length} frames")
        click.echo(f"Pattern:       {format_gop_pattern(stats.gop_pattern, stats.min_gop_length)}")


def _echo_series(series, limit: int) -> None:
    mode = "peak per bucket" if series.aggregated else "all packets"
    click.echo(f"\nVIEWPORT {series.start:.3f}s - {series.end:.3f}s "
               f"({len(series.packets)} points, {mode})")
    click.echo(f"{'Index':>7} {'Time(s)':>10} {'Size':>10} Key")
    click.echo("-" * 34)
    for count, packet in enumerate(series.packets):
        if limit > 0 and count >= limit:
            click.echo(f"... {len(series.packets) - limit} more")
            break
        key = "K" if packet.is_keyframe else "-"
        click.echo(f"{packet.index:>7} {packet.seconds:>10.3f} {packet.size_bytes:>10} {key}")


def _to_json(finished: Finished, stats, series) -> str:
    metadata = finished.metadata
    payload = {
        "metadata": {
            "duration_seconds": metadata.duration_seconds,
            "frame_count_estimate": metadata.frame_count_estimate,
            "codec": metadata.codec_description,
            "file_name": metadata.file_name,
            "file_path": metadata.file_path,
            "file_size_bytes": metadata.file_size_bytes,
        },
        "statistics": stats.to_dict(),
        "viewport": {
            "start": series.start,
            "end": series.end,
            "aggregated": series.aggregated,
            "packets": [
                {
                    "index": p.index,
                    "time": p.seconds,
                    "size": p.size_bytes,
                    "keyframe": p.is_keyframe,
                }
                for p in series.packets
            ],
        },
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True)


@click.command()
@click.argument("filepath", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("--source", "source", type=click.Choice(["auto", "ffprobe", "rtp-pcap", "dummy"]),
              default="auto", show_default=True, help="Packet source to read from")
@click.option("--port", type=int, help="RTP UDP port (rtp-pcap source)")
@click.option("--zoom", type=click.FloatRange(min=1.0), default=1.0, show_default=True,
              help="Zoom factor for the viewport")
@click.option("--pan", type=click.FloatRange(0.0, 1.0), default=0.0, show_default=True,
              help="Pan position of the viewport (0 = start, 1 = end)")
@click.option("--width", type=click.IntRange(min=1), default=DEFAULT_CHART_WIDTH,
              show_default=True, help="Chart width in pixels")
@click.option("--hide-keyframes", is_flag=True, help="Leave keyframes out of the series")
@click.option("--limit", type=int, default=50, show_default=True,
              help="Max series rows in table output (0 = no limit)")
@click.option("--format", "format", type=click.Choice(["table", "json"]),
              default="table", show_default=True, help="Output format")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def analyze(filepath: Optional[str], source: str, port: Optional[int], zoom: float, pan: float,
            width: int, hide_keyframes: bool, limit: int, format: str, verbose: bool):
    """
    Analyze the video packets of a file.

    Examples:
      bitrate analyze movie.mp4
      bitrate analyze camera.pcap --port 5600 --zoom 4 --pan 0.5
      bitrate analyze --source dummy --format json
    """
    _configure_logging(verbose)
    packet_source = _select_source(filepath, source, port)

    config = AnalysisConfig(chart_width=width, hide_keyframes=hide_keyframes)
    orchestrator = AnalysisOrchestrator(config)
    show_progress = format == "table"

    def on_state(state):
        if show_progress and isinstance(state, Analyzing):
            click.echo(f"\rAnalyzing... {state.progress * 100:5.1f}%", nl=False, err=True)

    orchestrator.subscribe(on_state)
    orchestrator.start(packet_source)

    try:
        while orchestrator.is_analyzing:
            orchestrator.wait(timeout=0.1)
    except KeyboardInterrupt:
        orchestrator.cancel()
        click.echo("\n\nAnalysis cancelled.", err=True)
        sys.exit(1)

    if show_progress:
        click.echo("", err=True)

    state = orchestrator.state
    if isinstance(state, Failed):
        raise click.ClickException(state.reason)
    if not isinstance(state, Finished):
        raise click.ClickException("Analysis did not finish")

    stats = orchestrator.statistics()
    series = orchestrator.display_series(zoom=zoom, pan=pan)

    if format == "json":
        click.echo(_to_json(state, stats, series))
        return

    _echo_statistics(state, stats)
    _echo_series(series, limit)
