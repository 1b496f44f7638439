from __future__ import annotations


class AlertServerError(Exception):
    """Base class; nothing in this package treats these as fatal."""


class PermissionDenied(AlertServerError):
    pass


class NetworkFailure(AlertServerError):
    pass


class AnalysisError(NetworkFailure):
    pass


class CameraBindFailure(AlertServerError):
    pass


class RecordingFinalizeError(AlertServerError):
    pass


class ConcurrentOperationRejected(AlertServerError):
    pass
