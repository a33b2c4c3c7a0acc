"""
Tests for the analysis orchestrator state machine.
Run with: pytest tests/test_orchestrator.py
"""
import itertools
import os
import sys
import threading

import pytest

# Add src to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
src_path = os.path.join(project_root, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from models.packet import PacketRecord, RationalTime, VideoMetadata
from models.state import AnalysisPhase, Analyzing, Failed, Finished, Idle
from analysis.config import AnalysisConfig
from analysis.exceptions import AnalysisCancelled, IngestionFailed, NoAnalyzableTrack
from analysis.orchestrator import AnalysisOrchestrator
from analysis.viewport import ViewportSeries
from ingest.dummy_source import DummySource
from ingest.memory_source import InMemorySource
from ingest.source import IPacketSource

TIMEOUT = 5.0


def _make_packet(index: int, ticks: int, size: int = 1000, key: bool = False) -> PacketRecord:
    return PacketRecord(index=index, timestamp=RationalTime(ticks, 10), size_bytes=size, is_keyframe=key)


def _metadata(duration: float = 10.0) -> VideoMetadata:
    return VideoMetadata(duration_seconds=duration, codec_description="avc1", file_name="test.mp4")


def _linear_packets(count: int = 100):
    """Packets at 0.1s steps over a 10s stream."""
    return [_make_packet(i, i, key=(i % 10 == 0)) for i in range(count)]


class _Recorder:
    def __init__(self):
        self.states = []
        self._lock = threading.Lock()

    def __call__(self, state):
        with self._lock:
            self.states.append(state)

    def phases(self):
        return [s.phase for s in self.states]

    def progress(self):
        return [s.progress for s in self.states if isinstance(s, Analyzing)]


class _GatedSource(IPacketSource):
    """Yields one packet, then blocks until released or closed."""

    def __init__(self, packets, metadata):
        self.packets = packets
        self.metadata = metadata
        self.started = threading.Event()
        self.gate = threading.Event()
        self.closed = threading.Event()

    def open(self):
        return self.metadata

    def iter_packets(self):
        for i, packet in enumerate(self.packets):
            yield packet
            if i == 0:
                self.started.set()
                while not (self.gate.is_set() or self.closed.is_set()):
                    self.gate.wait(0.01)

    def close(self):
        self.closed.set()


class _FailingSource(IPacketSource):
    def __init__(self, open_error=None, stream_error=None, after: int = 3):
        self.open_error = open_error
        self.stream_error = stream_error
        self.after = after
        self.closed = False

    def open(self):
        if self.open_error:
            raise self.open_error
        return _metadata()

    def iter_packets(self):
        for packet in _linear_packets(self.after):
            yield packet
        if self.stream_error:
            raise self.stream_error

    def close(self):
        self.closed = True


def _join_workers():
    for thread in threading.enumerate():
        if thread.name.startswith("analysis-") and thread is not threading.current_thread():
            thread.join(TIMEOUT)


def test_successful_analysis_publishes_all_phases():
    orchestrator = AnalysisOrchestrator()
    recorder = _Recorder()
    orchestrator.subscribe(recorder)
    packets = [_make_packet(0, 20), _make_packet(1, 0, key=True), _make_packet(2, 10)]

    assert orchestrator.start(InMemorySource(packets, _metadata(3.0)))
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Finished)
    assert [p.index for p in state.packets] == [0, 1, 2]
    assert [p.seconds for p in state.packets] == [0.0, 1.0, 2.0]
    assert state.metadata.file_name == "test.mp4"

    phases = recorder.phases()
    assert phases[0] == AnalysisPhase.LOADING_METADATA
    assert phases[1] == AnalysisPhase.ANALYZING
    assert phases[-1] == AnalysisPhase.FINISHED
    assert set(phases[1:-1]) == {AnalysisPhase.ANALYZING}
    assert recorder.progress()[0] == 0.0
    assert recorder.progress()[-1] == 1.0


def test_dummy_stream_is_reordered_and_analyzed():
    orchestrator = AnalysisOrchestrator()
    recorder = _Recorder()
    orchestrator.subscribe(recorder)

    orchestrator.start(DummySource(frame_count=300, fps=30, gop_length=30, b_frames=2, seed=1))
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Finished)
    times = [p.seconds for p in state.packets]
    assert times == sorted(times)
    assert [p.index for p in state.packets] == list(range(300))

    progress = recorder.progress()
    assert progress == sorted(progress)
    assert all(0.0 <= p <= 1.0 for p in progress)

    stats = orchestrator.statistics()
    assert stats.keyframe_count == 10
    assert stats.gop_count == 9
    assert stats.gop_pattern == "fixed"
    assert stats.min_gop_length == 30


def test_statistics_are_computed_once():
    orchestrator = AnalysisOrchestrator()
    orchestrator.start(InMemorySource(_linear_packets(), _metadata()))
    orchestrator.wait(TIMEOUT)

    first = orchestrator.statistics()

    assert first is orchestrator.statistics()
    assert first.packet_count == 100


def test_results_unavailable_before_finish():
    orchestrator = AnalysisOrchestrator()

    assert orchestrator.statistics() is None
    assert orchestrator.display_series(zoom=2.0) is None


def test_display_series_after_finish():
    orchestrator = AnalysisOrchestrator(AnalysisConfig(chart_width=20))
    orchestrator.start(InMemorySource(_linear_packets(), _metadata()))
    orchestrator.wait(TIMEOUT)

    series = orchestrator.display_series(zoom=1.0, pan=0.0)

    assert isinstance(series, ViewportSeries)
    # 20 px for 100 packets is 0.2 px per packet: aggregated into 20 buckets
    assert series.aggregated is True
    assert len(series.packets) <= 20


def test_start_is_ignored_while_analyzing():
    orchestrator = AnalysisOrchestrator()
    source = _GatedSource(_linear_packets(), _metadata())

    assert orchestrator.start(source)
    assert source.started.wait(TIMEOUT)

    assert orchestrator.is_analyzing
    assert orchestrator.start(InMemorySource([], _metadata())) is False

    source.gate.set()
    assert isinstance(orchestrator.wait(TIMEOUT), Finished)


def test_cancel_returns_to_idle_and_stops_progress():
    orchestrator = AnalysisOrchestrator()
    recorder = _Recorder()
    orchestrator.subscribe(recorder)
    source = _GatedSource(_linear_packets(), _metadata())

    orchestrator.start(source)
    assert source.started.wait(TIMEOUT)

    orchestrator.cancel()
    published_at_cancel = len(recorder.states)
    _join_workers()

    assert isinstance(orchestrator.state, Idle)
    assert source.closed.is_set()
    assert len(recorder.states) == published_at_cancel
    assert isinstance(recorder.states[-1], Idle)


def test_cancel_is_a_no_op_when_not_running():
    orchestrator = AnalysisOrchestrator()
    recorder = _Recorder()
    orchestrator.subscribe(recorder)

    orchestrator.cancel()

    assert isinstance(orchestrator.state, Idle)
    assert recorder.states == []


def test_cancel_then_restart():
    orchestrator = AnalysisOrchestrator()
    source = _GatedSource(_linear_packets(), _metadata())
    orchestrator.start(source)
    assert source.started.wait(TIMEOUT)
    orchestrator.cancel()

    assert orchestrator.start(InMemorySource(_linear_packets(5), _metadata()))
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Finished)
    assert len(state.packets) == 5


def test_slow_source_cancellation():
    orchestrator = AnalysisOrchestrator()
    source = DummySource(frame_count=10000, delay=0.001)

    orchestrator.start(source)
    orchestrator.cancel()
    _join_workers()

    assert isinstance(orchestrator.state, Idle)


def test_reset_discards_finished_results():
    orchestrator = AnalysisOrchestrator()
    orchestrator.start(InMemorySource(_linear_packets(), _metadata()))
    orchestrator.wait(TIMEOUT)
    assert orchestrator.statistics() is not None

    orchestrator.reset()

    assert isinstance(orchestrator.state, Idle)
    assert orchestrator.statistics() is None
    assert orchestrator.display_series() is None


def test_restart_after_finish():
    orchestrator = AnalysisOrchestrator()
    orchestrator.start(InMemorySource(_linear_packets(10), _metadata()))
    orchestrator.wait(TIMEOUT)

    assert orchestrator.start(InMemorySource(_linear_packets(20), _metadata()))
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Finished)
    assert len(state.packets) == 20
    assert orchestrator.statistics().packet_count == 20


def test_open_error_fails_analysis():
    orchestrator = AnalysisOrchestrator()
    source = _FailingSource(open_error=NoAnalyzableTrack())

    orchestrator.start(source)
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Failed)
    assert state.reason == "No video track found in the file."
    assert source.closed


def test_stream_error_fails_analysis():
    orchestrator = AnalysisOrchestrator()
    recorder = _Recorder()
    orchestrator.subscribe(recorder)

    orchestrator.start(_FailingSource(stream_error=IngestionFailed("disk went away")))
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Failed)
    assert state.reason == "Reader failed: disk went away"
    assert AnalysisPhase.FINISHED not in recorder.phases()


def test_unexpected_error_fails_analysis():
    orchestrator = AnalysisOrchestrator()

    orchestrator.start(_FailingSource(stream_error=KeyError("pts")))
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Failed)
    assert state.reason.startswith("An unexpected error occurred")


def test_invalid_duration_fails_analysis():
    orchestrator = AnalysisOrchestrator()

    orchestrator.start(InMemorySource(_linear_packets(), _metadata(duration=0.0)))
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Failed)
    assert state.reason == "Failed to load video metadata."


def test_source_reported_cancellation_is_a_failure():
    orchestrator = AnalysisOrchestrator()

    orchestrator.start(_FailingSource(stream_error=AnalysisCancelled()))
    state = orchestrator.wait(TIMEOUT)

    assert isinstance(state, Failed)
    assert state.reason == "cancelled"
    assert state.was_cancelled


def test_start_after_failure():
    orchestrator = AnalysisOrchestrator()
    orchestrator.start(_FailingSource(open_error=NoAnalyzableTrack()))
    orchestrator.wait(TIMEOUT)

    assert orchestrator.start(InMemorySource(_linear_packets(3), _metadata()))
    assert isinstance(orchestrator.wait(TIMEOUT), Finished)


def test_progress_is_throttled_but_terminal_update_is_delivered():
    # Frozen clock: after Analyzing(0) nothing passes the interval check
    orchestrator = AnalysisOrchestrator(clock=lambda: 0.0)
    recorder = _Recorder()
    orchestrator.subscribe(recorder)

    orchestrator.start(InMemorySource(_linear_packets(), _metadata()))
    orchestrator.wait(TIMEOUT)

    assert recorder.progress() == pytest.approx([0.0, 1.0])


def test_first_progress_update_waits_a_full_interval():
    # 0.06s per clock read against a 0.1s interval: every second packet publishes
    ticks = itertools.count()
    orchestrator = AnalysisOrchestrator(clock=lambda: next(ticks) * 0.06)
    recorder = _Recorder()
    orchestrator.subscribe(recorder)

    orchestrator.start(InMemorySource(_linear_packets(), _metadata()))
    orchestrator.wait(TIMEOUT)

    assert recorder.progress()[:4] == pytest.approx([0.0, 0.02, 0.04, 0.06])
    assert recorder.progress()[-1] == 1.0


def test_progress_updates_when_interval_elapsed():
    ticks = itertools.count()
    orchestrator = AnalysisOrchestrator(clock=lambda: float(next(ticks)))
    recorder = _Recorder()
    orchestrator.subscribe(recorder)

    orchestrator.start(InMemorySource(_linear_packets(), _metadata()))
    orchestrator.wait(TIMEOUT)

    progress = recorder.progress()
    # Initial 0.0, one update per packet after the first, terminal 1.0
    assert len(progress) == 101
    assert progress == sorted(progress)
    assert progress[-1] == 1.0


def test_failing_observer_does_not_break_analysis():
    orchestrator = AnalysisOrchestrator()

    def broken(state):
        raise RuntimeError("observer bug")

    orchestrator.subscribe(broken)
    orchestrator.start(InMemorySource(_linear_packets(), _metadata()))

    assert isinstance(orchestrator.wait(TIMEOUT), Finished)


def test_unsubscribe():
    orchestrator = AnalysisOrchestrator()
    recorder = _Recorder()
    unsubscribe = orchestrator.subscribe(recorder)
    unsubscribe()

    orchestrator.start(InMemorySource(_linear_packets(), _metadata()))
    orchestrator.wait(TIMEOUT)

    assert recorder.states == []
