import base64
import io

import qrcode


def qr_png_bytes(text: str, box_size: int = 20, border: int = 0) -> bytes:
    """Render text as a black-on-white QR code PNG."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_Q,
        box_size=box_size,
        border=border,
    )
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def qr_png_base64(text: str) -> str:
    """QR PNG for text, base64-encoded for JSON transport."""
    return base64.b64encode(qr_png_bytes(text)).decode("ascii")
