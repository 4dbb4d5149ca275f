"""QR code generation for the install page URL."""

import io

import qrcode
from qrcode.main import QRCode


class QrGenerator:
    """Generate QR codes pointing an accepter at the install page."""

    def __init__(self, data: str):
        """Initialize QR generator.

        Args:
            data: Text to encode, normally the install page URL.
        """
        self.data = data

    def _create_qr(self, box_size: int = 6) -> QRCode:
        qr = qrcode.QRCode(
            version=None,  # Auto-size
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=box_size,
            border=1,
        )
        qr.add_data(self.data)
        qr.make(fit=True)
        return qr

    def to_terminal(self) -> str:
        """Render with Unicode block characters for terminal display."""
        qr = self._create_qr()
        output = io.StringIO()
        qr.print_ascii(out=output, invert=True)
        return output.getvalue()

    def to_png_bytes(self) -> bytes:
        """Render as PNG image bytes."""
        qr = self._create_qr()
        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()
