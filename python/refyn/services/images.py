"""Image previews for title generation.

Title generation only needs a small rendition of the image, so the bytes are
downscaled and re-encoded as JPEG before they are sent to the model.

Security:
- Pillow's decompression bomb limit is enforced and its warning is an error
- Images Pillow cannot decode are passed through unchanged; the model may
  still understand formats Pillow lacks a codec for
"""

import io
import warnings

from PIL import Image, ImageOps, UnidentifiedImageError

from refyn.logging import get_logger

logger = get_logger(__name__)

# Long edge of the preview sent to the model
PREVIEW_MAX_EDGE = 768

# Pixel ceiling for decoding (Pillow decompression bomb guard)
MAX_IMAGE_DIMENSION = 8192

PREVIEW_JPEG_QUALITY = 85


class ImagePreviewError(Exception):
    """Image was rejected (e.g. decompression bomb)."""


def build_preview(data: bytes, mime_type: str) -> tuple[str, bytes]:
    """Downscale an image for a title prompt.

    Blocking: call through the threadpool from async code.

    Args:
        data: Original image bytes.
        mime_type: MIME type recorded for the file.

    Returns:
        (mime_type, bytes) of the preview, or of the original when Pillow
        cannot decode it.

    Raises:
        ImagePreviewError: If the image exceeds the pixel limit.
    """
    Image.MAX_IMAGE_PIXELS = MAX_IMAGE_DIMENSION * MAX_IMAGE_DIMENSION

    with warnings.catch_warnings():
        warnings.simplefilter("error", Image.DecompressionBombWarning)
        try:
            with Image.open(io.BytesIO(data)) as img:
                img = ImageOps.exif_transpose(img)
                img.thumbnail((PREVIEW_MAX_EDGE, PREVIEW_MAX_EDGE))
                if img.mode not in ("RGB", "L"):
                    img = img.convert("RGB")
                out = io.BytesIO()
                img.save(out, format="JPEG", quality=PREVIEW_JPEG_QUALITY)
        except (Image.DecompressionBombWarning, Image.DecompressionBombError) as e:
            raise ImagePreviewError("Image exceeds dimension limits") from e
        # Pillow reports some truncated or corrupt PNG chunks as SyntaxError
        except (UnidentifiedImageError, OSError, ValueError, SyntaxError) as e:
            logger.info("image.preview.passthrough", mime_type=mime_type, error_type=type(e).__name__)
            return mime_type, data

    return "image/jpeg", out.getvalue()
