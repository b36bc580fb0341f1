"""Best-effort GPS position and capture time from embedded EXIF data."""

from __future__ import annotations

import io
import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from PIL import ExifTags, Image

from .models import GeoTag

logger = logging.getLogger(__name__)

GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4
TAG_DATETIME = 306
TAG_DATETIME_ORIGINAL = 36867
EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def _to_degrees(value: Sequence[Any], ref: Optional[str]) -> Optional[float]:
    """Convert an EXIF (degrees, minutes, seconds) triple of rationals to decimal degrees."""
    if not value or len(value) != 3:
        return None
    degrees, minutes, seconds = (float(part) for part in value)
    result = degrees + minutes / 60.0 + seconds / 3600.0
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if ref and ref.strip().upper() in ("S", "W"):
        result = -result
    return round(result, 7)


def _to_iso(raw: Any) -> Optional[str]:
    if not raw:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="ignore")
    try:
        return datetime.strptime(str(raw).strip("\x00 "), EXIF_DATETIME_FORMAT).isoformat()
    except ValueError:
        return None


def read_geotag(content: bytes) -> GeoTag:
    """Return whatever position and capture time the image carries; empty on any failure."""
    tag = GeoTag()
    try:
        with Image.open(io.BytesIO(content)) as img:
            exif = img.getexif()
            if not exif:
                return tag

            gps = exif.get_ifd(ExifTags.IFD.GPSInfo)
            if gps:
                tag.latitude = _to_degrees(gps.get(GPS_LATITUDE), gps.get(GPS_LATITUDE_REF))
                tag.longitude = _to_degrees(gps.get(GPS_LONGITUDE), gps.get(GPS_LONGITUDE_REF))

            details = exif.get_ifd(ExifTags.IFD.Exif)
            tag.captured_at = _to_iso(details.get(TAG_DATETIME_ORIGINAL)) or _to_iso(exif.get(TAG_DATETIME))
    except Exception as e:  # noqa: BLE001
        logger.debug(f"No EXIF geotag available: {e}")
        return GeoTag()

    return tag
