import base64
import binascii
from typing import Optional

import settings


def validate_image(data_uri: str) -> Optional[str]:
    """Check an encoded image blob. Returns an error message, or None when acceptable."""
    if not isinstance(data_uri, str) or not data_uri.startswith("data:") or "," not in data_uri:
        return "La imagen debe enviarse como data URI (data:<tipo>;base64,...)"
    header, payload = data_uri[5:].split(",", 1)
    parts = header.split(";")
    mime = parts[0].lower()
    if mime not in settings.ALLOWED_IMAGE_TYPES:
        return f"Formato no permitido. Solo se aceptan: {', '.join(settings.ALLOWED_IMAGE_TYPES)}"
    if "base64" not in parts[1:]:
        return "La imagen debe estar codificada en base64"
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        return "La imagen no es un base64 válido"
    if len(raw) > settings.MAX_IMAGE_SIZE:
        return f"La imagen supera el tamaño máximo permitido de {settings.MAX_IMAGE_SIZE // 1024 // 1024}MB"
    return None
