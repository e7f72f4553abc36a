"""
Completion code generation
The provider shows the code as a QR image; the owner scans or types it to
confirm the work was done.
"""

import base64
import json
import secrets
from datetime import datetime
from io import BytesIO
from typing import Dict
import uuid

import qrcode


def generate_completion_code() -> str:
    """128-bit random token as 32 hex characters"""
    return secrets.token_hex(16)


def completion_payload(
    booking_id: uuid.UUID, completion_code: str, provider_id: uuid.UUID, issued_at: datetime
) -> Dict[str, str]:
    return {
        "booking_id": str(booking_id),
        "completion_code": completion_code,
        "provider_id": str(provider_id),
        "issued_at": issued_at.isoformat(),
    }


def render_qr_data_url(data: Dict, box_size: int = 10, border: int = 4) -> str:
    """Encode ``data`` as JSON in a PNG QR code and return it as a data URL"""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(json.dumps(data, separators=(",", ":")))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def codes_match(submitted: str, stored: str) -> bool:
    if not submitted or not stored:
        return False
    return secrets.compare_digest(submitted.encode(), stored.encode())
