"""
QR code handling for the FabLab scanner
Decodes camera frames (OpenCV), renders material QR labels (qrcode) and
keeps the last decoded payload for polling clients.
"""

import io
import logging
import threading
from datetime import datetime
from typing import Dict, Optional, Tuple

import cv2
import numpy as np
import qrcode
from qrcode.constants import ERROR_CORRECT_H

logger = logging.getLogger(__name__)


def decode_qr_image(image_bytes: bytes) -> Optional[str]:
    """
    Decode a QR payload from an encoded image (PNG/JPEG camera frame)

    Args:
        image_bytes (bytes): Raw file content

    Returns:
        str or None: Decoded text, None when no QR code is readable
    """
    if not image_bytes:
        return None

    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    frame = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if frame is None:
        logger.warning("QR decode: frame is not a valid image")
        return None

    detector = cv2.QRCodeDetector()
    text, points, _ = detector.detectAndDecode(frame)
    if points is None or not text:
        # Retry on grayscale, helps with low-contrast phone frames
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        text, points, _ = detector.detectAndDecode(gray)

    if not text:
        logger.debug("QR decode: no code found in frame")
        return None

    logger.info(f"QR decode: {text}")
    return text


def generate_qr_png(value: str, box_size: int = 10, border: int = 4) -> bytes:
    """
    Render a QR code as PNG bytes (error correction level H)

    Args:
        value (str): Payload, the material's qr_code
        box_size (int): Pixels per module
        border (int): Quiet zone in modules

    Returns:
        bytes: PNG image
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(value)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


class ScanBuffer:
    """
    Holds the most recent decoded QR payload of each user for a short window.
    One detection per user at a time: a new scan replaces that user's previous one.
    """

    def __init__(self, hold_seconds: int = 5):
        self.hold_seconds = hold_seconds
        # user key -> (code, scan time)
        self._scans: Dict[str, Tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def record(self, user_key, code: str, now: Optional[datetime] = None):
        """Store a freshly decoded payload for one user"""
        with self._lock:
            self._scans[str(user_key)] = (code, now or datetime.now())
        logger.info(f"Scan buffer: recorded {code} for user {user_key}")

    def get_current_code(self, user_key, now: Optional[datetime] = None) -> Optional[str]:
        """
        Get a user's buffered payload

        Returns:
            str or None: The code if still within the hold window
        """
        key = str(user_key)
        with self._lock:
            entry = self._scans.get(key)
            if entry is None:
                return None

            code, scanned_at = entry
            elapsed = ((now or datetime.now()) - scanned_at).total_seconds()
            if elapsed > self.hold_seconds:
                logger.debug(f"Scan buffer: expired {code}")
                del self._scans[key]
                return None

            return code

    def clear(self, user_key=None):
        """Drop one user's payload, or every payload when no user is given"""
        with self._lock:
            if user_key is None:
                self._scans.clear()
                return
            entry = self._scans.pop(str(user_key), None)
            if entry:
                logger.info(f"Scan buffer: cleared {entry[0]}")


# Shared buffer for the scanner blueprint
scan_buffer = ScanBuffer()
