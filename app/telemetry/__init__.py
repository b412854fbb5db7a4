"""Telemetry helpers and metrics."""

from .metrics import (
    ANNOTATION_RESULTS,
    ERROR_COUNTER,
    PIPELINE_RUNS,
    PIPELINE_STAGE_LATENCY,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    SPEECH_TERMINATIONS,
    observe_request,
    observe_stage,
    record_annotation,
    record_pipeline_run,
    record_speech_termination,
)

__all__ = [
    "ANNOTATION_RESULTS",
    "ERROR_COUNTER",
    "PIPELINE_RUNS",
    "PIPELINE_STAGE_LATENCY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "SPEECH_TERMINATIONS",
    "observe_request",
    "observe_stage",
    "record_annotation",
    "record_pipeline_run",
    "record_speech_termination",
]
