"""
Image metadata helpers.

Photo batches use the moment the picture was taken as their dominant
date when the caller does not supply one. Only EXIF is consulted; the
pixels are never analysed here.
"""

from datetime import datetime, timezone
from io import BytesIO
from typing import Optional

import structlog
from PIL import ExifTags, Image, UnidentifiedImageError


logger = structlog.get_logger(__name__)

EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


def read_image_date(image_bytes: bytes) -> Optional[datetime]:
    """
    Return the capture time stored in the image's EXIF, in UTC.

    DateTimeOriginal wins over the IFD0 DateTime. EXIF carries no zone,
    so the value is taken as UTC. Unreadable images and missing or
    malformed tags give None.
    """
    try:
        img = Image.open(BytesIO(image_bytes))
        exif = img.getexif()
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("image_exif_unreadable", error=str(e))
        return None

    raw = exif.get_ifd(ExifTags.IFD.Exif).get(ExifTags.Base.DateTimeOriginal)
    if not raw:
        raw = exif.get(ExifTags.Base.DateTime)
    if not raw:
        return None

    try:
        taken = datetime.strptime(str(raw).strip("\x00 "), EXIF_DATE_FORMAT)
    except ValueError:
        logger.debug("image_exif_date_invalid", value=str(raw))
        return None
    return taken.replace(tzinfo=timezone.utc)
