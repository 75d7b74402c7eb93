"""Lossy re-encoding of downloaded images."""

from __future__ import annotations

import io
import logging

from PIL import Image


LOGGER = logging.getLogger(__name__)

RECODABLE_FORMATS = {"JPEG", "PNG"}


class ImageRecoder:
    """Re-encode JPEG and opaque PNG images as JPEG at a given quality.

    The re-encoded bytes are only kept when they are smaller than the input.
    """

    def recode(self, data: bytes, quality: int, *, url: str = "") -> bytes:
        if quality == 0 or not data:
            return data
        if not 0 < quality <= 100:
            raise ValueError(f"image quality must be within 1..100, got {quality}")

        try:
            with Image.open(io.BytesIO(data)) as image:
                if image.format not in RECODABLE_FORMATS:
                    return data
                if image.format == "PNG" and _has_transparency(image):
                    return data

                out = io.BytesIO()
                image.convert("RGB").save(out, format="JPEG", quality=quality, optimize=True)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            LOGGER.warning("Image re-encoding skipped for %s: %s", url or "<bytes>", exc)
            return data

        recoded = out.getvalue()
        if len(recoded) >= len(data):
            return data

        LOGGER.debug("Re-encoded %s: %d -> %d bytes", url or "<bytes>", len(data), len(recoded))
        return recoded


def _has_transparency(image: Image.Image) -> bool:
    if image.mode in {"RGBA", "LA", "PA"}:
        return True
    return "transparency" in image.info


__all__ = ["ImageRecoder"]
