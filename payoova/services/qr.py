"""QR codes for payment links."""
import base64
from io import BytesIO

import qrcode


def render_qr_data_url(payload: str) -> str:
    """PNG QR code for ``payload`` as a ``data:`` URL."""
    image = qrcode.make(payload)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
