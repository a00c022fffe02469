from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for errors surfaced to HTTP callers."""

    status_code = 500


class InvalidStreamKeyError(OrchestratorError, ValueError):
    status_code = 400


class ProcessSpawnError(OrchestratorError):
    status_code = 500


class InvalidSegmentPathError(OrchestratorError, ValueError):
    status_code = 400


class SegmentNotFoundError(OrchestratorError, FileNotFoundError):
    status_code = 404


class InvalidRelayUrlError(OrchestratorError, ValueError):
    status_code = 400
