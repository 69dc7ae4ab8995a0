"""Error types raised by the session pipeline.

Everything derives from ``PipelineError`` so background job wrappers can
tell expected pipeline failures apart from programming errors.
"""


class PipelineError(Exception):
    """Base class for pipeline failures."""


class ValidationError(PipelineError):
    """Bad or missing input; the job is never created."""


class ConversionError(PipelineError):
    """The media could not be converted to canonical audio."""


class ConversionTimeout(ConversionError):
    """The transcoding tool ran past its deadline and was killed."""


class SegmentationError(PipelineError):
    """Canonical audio could not be split into parts."""


class ChunkTranscriptionError(PipelineError):
    """A transcription unit failed; the whole job is aborted."""

    def __init__(self, message, index=None):
        super().__init__(message)
        self.index = index


class AnalysisError(PipelineError):
    """The language service returned nothing usable."""


class PersistenceError(PipelineError):
    """The local transcript store could not be written."""


class ReprocessInProgress(PipelineError):
    """A bulk reprocessing sweep is already running."""


class RecordNotFound(PipelineError):
    pass


class InvalidTransition(PipelineError):
    pass
