"""
Analysis error taxonomy.

Only the orchestrator's interaction with an ingestion source produces these.
The ordering, statistics and viewport functions never raise for well-typed
input; they degrade to empty/zero results instead.
"""

from typing import Optional


class AnalysisError(Exception):
    """Base class. ``str(error)`` is the user-facing message."""

    message = "Analysis failed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class SourceUnavailable(AnalysisError):
    """The ingestion source could not be opened or read."""

    message = "Unable to access the video file."


class NoAnalyzableTrack(AnalysisError):
    message = "No video track found in the file."


class MetadataInvalid(AnalysisError):
    """Duration missing, non-finite or <= 0."""

    message = "Failed to load video metadata."


class IngestionFailed(AnalysisError):
    """The source failed mid-stream. ``detail`` is opaque source text."""

    def __init__(self, detail: str = "Unknown error"):
        self.detail = detail
        super().__init__(f"Reader failed: {detail}")


class AnalysisCancelled(AnalysisError):
    message = "Analysis was cancelled."
