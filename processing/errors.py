"""
errors.py -- Stage errors raised by the recording pipeline.

MediaError is fatal to a recording's run. ClassificationError and
TranscriptionError are caught at their stage boundary and logged.
"""


class MediaError(Exception):
    """The recording has no usable audio track or cannot be read."""


class ClassificationError(Exception):
    """The sound classifier failed before signalling completion."""


class TranscriptionError(Exception):
    """Speech recognition failed or is unavailable for the locale."""
