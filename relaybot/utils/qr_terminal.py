"""
Render pairing codes as scannable QR codes in the terminal.
"""

import sys
from typing import Optional, TextIO

import qrcode
from qrcode.constants import ERROR_CORRECT_L


def render_qr(data: str, out: Optional[TextIO] = None) -> None:
    """Print `data` as a half-block QR code followed by the raw payload."""
    out = out or sys.stdout
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_L, border=1)
    qr.add_data(data)
    qr.make(fit=True)
    # Inverted so the code reads dark-on-light on dark terminal themes
    qr.print_ascii(out=out, invert=True)
    out.write(f"\n{data}\n\n")
    out.flush()
