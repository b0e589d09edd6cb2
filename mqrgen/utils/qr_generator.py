import base64
import binascii
import io
import os
import uuid

import qrcode
from flask import current_app
from PIL import Image, ImageColor, UnidentifiedImageError
from qrcode.exceptions import DataOverflowError
from qrcode.image.styledpil import StyledPilImage
from qrcode.image.styles.colormasks import SolidFillColorMask
from qrcode.image.styles.moduledrawers import (
    CircleModuleDrawer,
    GappedSquareModuleDrawer,
    RoundedModuleDrawer,
    SquareModuleDrawer,
)

from ..errors import RenderError, ValidationError

DRAWERS = {
    "square": SquareModuleDrawer,
    "dots": GappedSquareModuleDrawer,
    "circle": CircleModuleDrawer,
    "rounded": RoundedModuleDrawer,
}

ERROR_CORRECTION = {
    "L": qrcode.constants.ERROR_CORRECT_L,
    "M": qrcode.constants.ERROR_CORRECT_M,
    "Q": qrcode.constants.ERROR_CORRECT_Q,
    "H": qrcode.constants.ERROR_CORRECT_H,
}

MIN_SIZE, MAX_SIZE = 100, 2000


def _color(styling: dict, key: str, default: str):
    value = styling.get(key) or default
    try:
        return ImageColor.getrgb(value)
    except ValueError:
        raise ValidationError(f"Invalid color for {key}", field=key, value=value)


def _int_option(styling: dict, key: str, default: int, low: int, high: int) -> int:
    value = styling.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ValidationError(f"{key} must be an integer between {low} and {high}", field=key, value=value)
    return value


def _decode_logo(logo_data: str):
    if "," in logo_data:
        logo_data = logo_data.split(",", 1)[1]
    try:
        return Image.open(io.BytesIO(base64.b64decode(logo_data)))
    except (binascii.Error, UnidentifiedImageError, OSError) as exc:
        current_app.logger.warning(f"Logo data embedding failed: {exc}")
        return None


def output_dir() -> str:
    return current_app.config.get("QR_OUTPUT_DIR") or os.path.join(current_app.static_folder or "static", "qrcodes")


def generate_styled_qr(content: str, styling: dict | None = None) -> str:
    """
    Render ``content`` as a styled PNG under the QR output directory.

    Returns the path relative to the static root, e.g. ``qrcodes/qr_<hex>.png``.

    Styling keys: foreground_color, background_color, style (square, dots,
    circle, rounded), margin, size (pixels), error_correction (L/M/Q/H),
    logo_data (base64, optionally a data URI).
    """
    styling = styling or {}
    fill_rgb = _color(styling, "foreground_color", "#000000")
    back_rgb = _color(styling, "background_color", "#FFFFFF")
    margin = _int_option(styling, "margin", 2, 0, 20)
    size = _int_option(styling, "size", 300, MIN_SIZE, MAX_SIZE)

    drawer_cls = DRAWERS.get(str(styling.get("style", "square")).lower(), SquareModuleDrawer)
    logo_img = _decode_logo(styling["logo_data"]) if styling.get("logo_data") else None
    # Logos cover modules; use the highest correction level when present.
    level = "H" if logo_img else str(styling.get("error_correction", "M")).upper()

    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECTION.get(level, qrcode.constants.ERROR_CORRECT_M),
        box_size=10,
        border=margin,
    )
    try:
        qr.add_data(content)
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as exc:
        # qrcode 8 reports overflow as an invalid version (> 40)
        raise RenderError("Content is too long to encode as a QR code") from exc

    qr_img = qr.make_image(
        image_factory=StyledPilImage,
        module_drawer=drawer_cls(),
        color_mask=SolidFillColorMask(back_color=back_rgb, front_color=fill_rgb),
    ).convert("RGB")

    if logo_img:
        qr_w, qr_h = qr_img.size
        logo_size = int(qr_w * 0.25)
        logo_img = logo_img.resize((logo_size, logo_size))
        pos = ((qr_w - logo_size) // 2, (qr_h - logo_size) // 2)
        if logo_img.mode == "RGBA":
            qr_img.paste(logo_img, pos, logo_img)
        else:
            qr_img.paste(logo_img, pos)

    qr_img = qr_img.resize((size, size), Image.NEAREST)

    qr_dir = output_dir()
    os.makedirs(qr_dir, exist_ok=True)
    qr_filename = f"qr_{uuid.uuid4().hex}.png"
    try:
        qr_img.save(os.path.join(qr_dir, qr_filename))
    except OSError as exc:
        raise RenderError("Could not write QR image") from exc
    return f"qrcodes/{qr_filename}"
