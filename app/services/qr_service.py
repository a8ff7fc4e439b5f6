# app/services/qr_service.py
"""
Renders a wire credential as a QR code PNG, returned as a data URL the app can
show directly (same shape the mobile client already displays).
"""

import base64
import io

import qrcode


def render_data_url(wire: str) -> str:
    img = qrcode.make(wire)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
