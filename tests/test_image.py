"""Tests for reading capture dates from photos."""

from datetime import datetime, timezone
from io import BytesIO

from PIL import ExifTags, Image

from ledger_reconciler.services.image import read_image_date


def _jpeg(exif=None) -> bytes:
    buf = BytesIO()
    img = Image.new("RGB", (8, 8), "white")
    if exif is None:
        img.save(buf, format="JPEG")
    else:
        img.save(buf, format="JPEG", exif=exif)
    return buf.getvalue()


class TestReadImageDate:
    """Tests for read_image_date."""

    def test_datetime_tag(self):
        """Test the IFD0 DateTime is read as UTC."""
        exif = Image.Exif()
        exif[ExifTags.Base.DateTime] = "2026:10:01 08:30:00"
        assert read_image_date(_jpeg(exif)) == datetime(2026, 10, 1, 8, 30, tzinfo=timezone.utc)

    def test_malformed_tag(self):
        """Test a date that does not follow the EXIF format is ignored."""
        exif = Image.Exif()
        exif[ExifTags.Base.DateTime] = "yesterday"
        assert read_image_date(_jpeg(exif)) is None

    def test_no_exif(self):
        """Test an image without metadata has no date."""
        assert read_image_date(_jpeg()) is None

    def test_not_an_image(self):
        """Test garbage bytes give no date instead of an error."""
        assert read_image_date(b"not an image") is None
