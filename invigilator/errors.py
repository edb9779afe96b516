"""
Invigilator error types

Sampler boundaries catch everything and classify it into one of these;
nothing raised by a capability reaches the host.
"""

from __future__ import annotations

from typing import Optional


class ProctoringError(Exception):
    """Base class for proctoring errors."""


class TransientDetectionError(ProctoringError):
    """Model runtime not ready or a single bad frame. The tick is skipped."""


class ResourceUnavailable(ProctoringError):
    """Camera stream or track is gone. Routed into the camera-absence rule."""


class EvidenceCaptureFailure(ProctoringError):
    """Evidence frame could not be captured or encoded."""


class ReportSubmissionFailure(ProctoringError):
    """Violation report could not be delivered."""


class BackendError(ProctoringError):
    """Backend HTTP call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
