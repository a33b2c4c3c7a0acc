"""
Analysis orchestrator.

Owns the ``AnalysisState`` machine and the single background worker that
ingests packets from a source. Observers subscribe to state transitions;
they are called with the orchestrator lock held, so every observer sees the
same serialized sequence of states.

Threading model:
- one daemon worker thread per analysis run
- one ``threading.Event`` per run for cooperative cancellation
- a generation counter: a worker whose run was cancelled, reset or
  superseded can never publish again
"""
import logging
import math
import threading
import time
from typing import Callable, List, Optional

from models.packet import PacketRecord, VideoMetadata
from models.state import (
    ACTIVE_PHASES,
    CANCELLED_REASON,
    STARTABLE_PHASES,
    AnalysisPhase,
    AnalysisState,
    Analyzing,
    Failed,
    Finished,
    Idle,
    LoadingMetadata,
)
from models.statistics import StatisticsSnapshot
from ingest.source import IPacketSource
from .config import AnalysisConfig
from .exceptions import AnalysisCancelled, AnalysisError, MetadataInvalid
from .ordering import reorder
from .statistics import compute_statistics
from .viewport import ViewportSeries, display_series

logger = logging.getLogger(__name__)

StateObserver = Callable[[AnalysisState], None]


class AnalysisOrchestrator:
    """Drives one analysis at a time and publishes its state."""

    def __init__(self, config: Optional[AnalysisConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or AnalysisConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._state: AnalysisState = Idle()
        self._observers: List[StateObserver] = []

        self._generation = 0
        self._cancel_event: Optional[threading.Event] = None
        self._worker: Optional[threading.Thread] = None
        self._source: Optional[IPacketSource] = None
        self._last_progress_update = -math.inf
        self._statistics: Optional[StatisticsSnapshot] = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> AnalysisState:
        with self._lock:
            return self._state

    @property
    def is_analyzing(self) -> bool:
        return self.state.phase in ACTIVE_PHASES

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register ``observer``; returns a callable that unsubscribes it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe():
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _publish(self, state: AnalysisState) -> None:
        # Caller holds self._lock
        self._state = state
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                logger.exception("State observer failed")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start(self, source: IPacketSource) -> bool:
        """
        Start analyzing ``source``.

        Returns:
            False (and does nothing) while another analysis is in flight.
        """
        with self._lock:
            if self._state.phase not in STARTABLE_PHASES:
                logger.debug("start() ignored in state %s", self._state.phase.value)
                return False

            previous = self._supersede_run()

            self._generation += 1
            generation = self._generation
            cancel_event = threading.Event()
            self._cancel_event = cancel_event
            self._source = source
            self._statistics = None
            self._last_progress_update = -math.inf
            self._publish(LoadingMetadata())

            self._worker = threading.Thread(
                target=self._run,
                args=(generation, source, cancel_event),
                name=f"analysis-{generation}",
                daemon=True,
            )
            self._worker.start()

        if previous is not None and previous is not threading.current_thread():
            previous.join(timeout=self.config.join_timeout)
        logger.info("Analysis %d started", generation)
        return True

    def cancel(self) -> None:
        """Cancel the in-flight analysis and return to Idle."""
        with self._lock:
            if self._state.phase not in ACTIVE_PHASES:
                return
            self._supersede_run()
            self._publish(Idle())
        logger.info("Analysis cancelled")

    def reset(self) -> None:
        """Cancel if needed and discard everything held."""
        with self._lock:
            self._supersede_run()
            self._statistics = None
            if self._state.phase != AnalysisPhase.IDLE:
                self._publish(Idle())

    def wait(self, timeout: Optional[float] = None) -> AnalysisState:
        """Block until the current worker exits; returns the resulting state."""
        with self._lock:
            worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)
        return self.state

    def _supersede_run(self) -> Optional[threading.Thread]:
        """Invalidate the current run, signal it and release its source."""
        # Caller holds self._lock
        self._generation += 1
        if self._cancel_event is not None:
            self._cancel_event.set()
        source = self._source
        self._source = None
        self._cancel_event = None
        if source is not None:
            _close_quietly(source)
        worker = self._worker
        self._worker = None
        return worker

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def statistics(self) -> Optional[StatisticsSnapshot]:
        """Statistics of the finished analysis, computed once and cached."""
        with self._lock:
            state = self._state
            if not isinstance(state, Finished):
                return None
            if self._statistics is None:
                self._statistics = compute_statistics(state.packets,
                                                      state.metadata.duration_seconds)
            return self._statistics

    def display_series(self, zoom: float = 1.0, pan: float = 0.0,
                       hide_keyframes: Optional[bool] = None) -> Optional[ViewportSeries]:
        state = self.state
        if not isinstance(state, Finished):
            return None
        if hide_keyframes is None:
            hide_keyframes = self.config.hide_keyframes
        # Pure computation over an immutable tuple: no lock needed
        return display_series(
            state.packets,
            zoom=zoom,
            pan=pan,
            chart_width=self.config.chart_width,
            min_pixels_per_packet=self.config.min_pixels_per_packet,
            hide_keyframes=hide_keyframes,
        )

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _publish_if_current(self, generation: int, state: AnalysisState) -> bool:
        with self._lock:
            if not self._is_current(generation):
                return False
            self._publish(state)
            return True

    def _report_progress(self, generation: int, fraction: float) -> None:
        """Publish progress, throttled to one update per progress_interval."""
        with self._lock:
            if not self._is_current(generation):
                return
            state = self._state
            if not isinstance(state, Analyzing):
                return

            fraction = max(state.progress, min(max(fraction, 0.0), 1.0))
            if fraction == state.progress:
                return
            now = self._clock()
            # The terminal update is never throttled
            if fraction < 1.0 and now - self._last_progress_update < self.config.progress_interval:
                return
            self._last_progress_update = now
            self._publish(Analyzing(progress=fraction))

    def _run(self, generation: int, source: IPacketSource,
             cancel_event: threading.Event) -> None:
        try:
            metadata = source.open()
            if not metadata.has_usable_duration:
                raise MetadataInvalid()
            if cancel_event.is_set():
                raise AnalysisCancelled()

            with self._lock:
                # Analyzing(0) opens the first progress interval
                if self._publish_if_current(generation, Analyzing(progress=0.0)):
                    self._last_progress_update = self._clock()
            packets = self._ingest(generation, source, metadata, cancel_event)

            self._report_progress(generation, 1.0)
            ordered = reorder(packets)
            if self._publish_if_current(generation, Finished(packets=ordered, metadata=metadata)):
                logger.info("Analysis %d finished: %d packets", generation, len(ordered))

        except AnalysisCancelled:
            if self._publish_if_current(generation, Failed(reason=CANCELLED_REASON)):
                logger.warning("Analysis %d cancelled during ingestion", generation)
        except AnalysisError as e:
            if self._publish_if_current(generation, Failed(reason=str(e))):
                logger.warning("Analysis %d failed: %s", generation, e)
        except Exception as e:
            if self._publish_if_current(generation, Failed(reason=f"An unexpected error occurred: {e}")):
                logger.exception("Analysis %d crashed", generation)
        finally:
            _close_quietly(source)
            with self._lock:
                if self._is_current(generation):
                    self._source = None
                    self._cancel_event = None

    def _ingest(self, generation: int, source: IPacketSource, metadata: VideoMetadata,
                cancel_event: threading.Event) -> List[PacketRecord]:
        duration = metadata.duration_seconds
        packets: List[PacketRecord] = []

        for packet in source.iter_packets():
            packets.append(packet)
            # Checked after consuming each packet, not only at loop entry
            if cancel_event.is_set():
                raise AnalysisCancelled()
            if packet.seconds is not None:
                self._report_progress(generation, min(packet.seconds / duration, 1.0))

        if cancel_event.is_set():
            raise AnalysisCancelled()
        return packets


def _close_quietly(source: IPacketSource) -> None:
    try:
        source.close()
    except Exception:
        logger.exception("Failed to close packet source")
