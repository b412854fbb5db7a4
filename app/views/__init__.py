"""Pydantic schemas used as views in the MVC architecture."""

from .audio import ProcessAudioRequest, ProcessAudioResponse, RecordingStatusResponse
from .common import ErrorResponse

__all__ = [
    "ErrorResponse",
    "ProcessAudioRequest",
    "ProcessAudioResponse",
    "RecordingStatusResponse",
]
