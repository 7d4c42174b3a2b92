"""Image loading shared by the analysis providers."""
from __future__ import annotations

from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..core.errors import ItemProcessingError


# Formats the analysis providers accept
IMAGE_EXTENSIONS = frozenset({
    '.jpg', '.jpeg', '.png', '.webp', '.gif', '.bmp'
})


def check_image_path(item: str, extensions: frozenset[str] = IMAGE_EXTENSIONS) -> Path:
    """Validate that an item is an existing file with a supported extension.

    Raises:
        ItemProcessingError: missing file, not a file, or unsupported format
    """
    path = Path(item)
    if not path.exists():
        raise ItemProcessingError(item, f"File not found: {item}")
    if not path.is_file():
        raise ItemProcessingError(item, f"Not a file: {item}")
    suffix = path.suffix.lower()
    if suffix not in extensions:
        raise ItemProcessingError(item, f"Unsupported image format: {suffix or '(none)'}")
    return path


def load_image(item: str, extensions: frozenset[str] = IMAGE_EXTENSIONS) -> Image.Image:
    """Open an image fully into memory, converted to RGB.

    Raises:
        ItemProcessingError: invalid path or undecodable image
    """
    path = check_image_path(item, extensions)
    try:
        with Image.open(path) as img:
            # Load into memory to prevent file handle issues
            img.load()
            return img.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise ItemProcessingError(item, f"Cannot decode image {path.name}: {e}") from e


def dominant_colors(image: Image.Image, count: int = 3) -> tuple[str, ...]:
    """Most frequent colors as #rrggbb strings, most frequent first."""
    small = image.copy()
    small.thumbnail((128, 128))
    quantized = small.quantize(colors=count)
    palette = quantized.getpalette() or []
    counts = sorted(quantized.getcolors() or [], reverse=True)

    colors = []
    for _, index in counts[:count]:
        r, g, b = palette[index * 3:index * 3 + 3]
        colors.append(f"#{r:02x}{g:02x}{b:02x}")
    return tuple(colors)
