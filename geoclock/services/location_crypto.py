from __future__ import annotations

import base64
import hashlib
import json
import logging

from cryptography.fernet import Fernet, InvalidToken

from geoclock.settings import get_settings, is_production

logger = logging.getLogger("geoclock.location_crypto")

ENCRYPTION_VERSION = 1
ENCRYPTION_MARKER = f"ENCRYPTED_V{ENCRYPTION_VERSION}"
_DEV_KEY_MATERIAL = "dev-only-location-key-do-not-use-in-production"


class LocationDecryptionError(ValueError):
    pass


def is_encryption_configured() -> bool:
    return bool((get_settings().location_encryption_key or "").strip())


def _location_cipher() -> Fernet:
    raw_key = (get_settings().location_encryption_key or "").strip()
    if not raw_key:
        if is_production():
            raise RuntimeError("LOCATION_ENCRYPTION_KEY is required in production.")
        logger.warning("location_encryption_dev_key_in_use")
        raw_key = _DEV_KEY_MATERIAL
    derived = base64.urlsafe_b64encode(hashlib.sha256(raw_key.encode("utf-8")).digest())
    return Fernet(derived)


def encrypt_location_for_storage(latitude: float, longitude: float) -> tuple[str, str]:
    """Return ``(payload, marker)`` for the latitude/longitude column pair."""
    raw = json.dumps({"latitude": latitude, "longitude": longitude}, separators=(",", ":")).encode("utf-8")
    token = _location_cipher().encrypt(raw).decode("utf-8")
    return token, ENCRYPTION_MARKER


def is_location_encrypted(stored_longitude: str | None) -> bool:
    return bool(stored_longitude) and str(stored_longitude).startswith("ENCRYPTED_V")


def decrypt_location_from_storage(stored_latitude: str, stored_longitude: str) -> tuple[float, float]:
    if not is_location_encrypted(stored_longitude):
        # Rows written before encryption hold plain coordinates.
        try:
            return float(stored_latitude), float(stored_longitude)
        except (TypeError, ValueError) as exc:
            raise LocationDecryptionError("Stored location is not readable.") from exc

    if stored_longitude != ENCRYPTION_MARKER:
        raise LocationDecryptionError(f"Unsupported location encryption marker: {stored_longitude}")

    try:
        decoded = _location_cipher().decrypt(stored_latitude.encode("utf-8"))
        payload = json.loads(decoded.decode("utf-8"))
        return float(payload["latitude"]), float(payload["longitude"])
    except (InvalidToken, ValueError, TypeError, KeyError) as exc:
        raise LocationDecryptionError("Stored location could not be decrypted.") from exc
