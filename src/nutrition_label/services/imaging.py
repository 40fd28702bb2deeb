"""Image normalization ahead of text recognition."""

import io

from PIL import Image, ImageOps, UnidentifiedImageError

from nutrition_label.errors import ProcessingError

DEFAULT_WIDTH = 800


def normalize_image(image_bytes: bytes, width: int = DEFAULT_WIDTH) -> bytes:
    """Resize an image to a canonical width and return it as PNG bytes."""
    if width <= 0:
        raise ValueError("width must be positive")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.load()
            oriented = ImageOps.exif_transpose(image)
            converted = oriented.convert("RGB")
            height = max(1, round(converted.height * width / converted.width))
            resized = converted.resize((width, height), Image.Resampling.LANCZOS)
            output = io.BytesIO()
            resized.save(output, format="PNG")
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ProcessingError(f"Unable to normalize image: {exc}") from exc
    return output.getvalue()
