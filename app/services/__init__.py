"""Service layer helpers for external integrations."""

from .llm_client import ChatCompletionClient, LlmInvocationError
from .response_contract import AnnotationParseFailure, AnnotationResult
from .transcoding import TranscodeFailure, normalize_to_pcm
from .transcribe import (
    SpeechProtocolError,
    SpeechTimeoutError,
    SpeechTransportError,
    TerminationReason,
    TranscriptionError,
    TranscriptionResult,
    UpstreamAuthMissing,
    XunfeiSpeechClient,
    get_speech_client,
)

__all__ = [
    "AnnotationParseFailure",
    "AnnotationResult",
    "ChatCompletionClient",
    "LlmInvocationError",
    "SpeechProtocolError",
    "SpeechTimeoutError",
    "SpeechTransportError",
    "TerminationReason",
    "TranscodeFailure",
    "TranscriptionError",
    "TranscriptionResult",
    "UpstreamAuthMissing",
    "XunfeiSpeechClient",
    "get_speech_client",
    "normalize_to_pcm",
]
