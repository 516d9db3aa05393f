"""
Tests for QR rendering, frame decoding and the scan buffer
"""

from datetime import datetime, timedelta

from utils.qr_handler import ScanBuffer, decode_qr_image, generate_qr_png


def test_generated_label_is_readable():
    code = "MAT-1718000000000-k3j9x0a1b"
    png = generate_qr_png(code)
    assert png.startswith(b"\x89PNG")
    assert decode_qr_image(png) == code


def test_decode_rejects_non_images():
    assert decode_qr_image(b"") is None
    assert decode_qr_image(b"not an image") is None


class TestScanBuffer:
    def test_holds_code_within_window(self):
        buffer = ScanBuffer(hold_seconds=5)
        start = datetime(2025, 3, 3, 9, 0, 0)
        buffer.record("1", "MAT-1", now=start)
        assert buffer.get_current_code("1", now=start + timedelta(seconds=4)) == "MAT-1"

    def test_expires_after_window(self):
        buffer = ScanBuffer(hold_seconds=5)
        start = datetime(2025, 3, 3, 9, 0, 0)
        buffer.record("1", "MAT-1", now=start)
        assert buffer.get_current_code("1", now=start + timedelta(seconds=6)) is None
        # Stays cleared after expiry
        assert buffer.get_current_code("1", now=start) is None

    def test_new_scan_replaces_previous(self):
        buffer = ScanBuffer()
        buffer.record("1", "MAT-1")
        buffer.record("1", "MAT-2")
        assert buffer.get_current_code("1") == "MAT-2"

    def test_users_do_not_see_each_other(self):
        buffer = ScanBuffer()
        buffer.record("1", "MAT-1")
        buffer.record(2, "MAT-2")
        assert buffer.get_current_code("1") == "MAT-1"
        assert buffer.get_current_code("2") == "MAT-2"
        assert buffer.get_current_code("3") is None

    def test_clear_one_user(self):
        buffer = ScanBuffer()
        buffer.record("1", "MAT-1")
        buffer.record("2", "MAT-2")
        buffer.clear("1")
        assert buffer.get_current_code("1") is None
        assert buffer.get_current_code("2") == "MAT-2"

    def test_clear_all(self):
        buffer = ScanBuffer()
        buffer.record("1", "MAT-1")
        buffer.record("2", "MAT-2")
        buffer.clear()
        assert buffer.get_current_code("1") is None
        assert buffer.get_current_code("2") is None
