from __future__ import annotations
"""
Frame encoding helpers.
"""

import base64

import numpy as np

from invigilator.errors import EvidenceCaptureFailure


def encode_jpeg(frame: np.ndarray, quality: int = 80) -> bytes:
    """
    Encode an RGB frame as JPEG.

    Args:
        frame: RGB image as numpy array (H, W, 3)
        quality: JPEG quality 0-100

    Returns:
        JPEG bytes
    """
    import cv2

    if frame is None or frame.ndim != 3 or frame.shape[2] != 3:
        raise EvidenceCaptureFailure("Frame must be an RGB image")

    bgr = cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)
    ok, buffer = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise EvidenceCaptureFailure("JPEG encoding failed")
    return buffer.tobytes()


def to_data_url(jpeg: bytes) -> str:
    """Wrap JPEG bytes as a ``data:`` URL, the form the backend stores."""
    return "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")
