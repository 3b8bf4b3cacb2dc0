"""Side-by-side before/after preview."""

from PIL import Image, ImageDraw, ImageFont

from wmerase.image_buffer import ImageBuffer


def build_comparison_image(
    original: ImageBuffer,
    cleaned: ImageBuffer,
    gap: int = 20,
    labels: tuple[str, str] = ("Original", "Cleaned"),
) -> ImageBuffer:
    """Place `original` and `cleaned` next to each other on a white canvas with labels."""
    assert gap >= 0, f"gap must be >= 0; got {gap}"
    width = original.width + gap + cleaned.width
    height = max(original.height, cleaned.height)
    canvas = Image.new("RGBA", (width, height), (255, 255, 255, 255))
    canvas.paste(original.to_pil(), (0, 0))
    canvas.paste(cleaned.to_pil(), (original.width + gap, 0))

    draw = ImageDraw.Draw(canvas)
    font = ImageFont.load_default()
    draw.text((10, 10), labels[0], fill=(0, 0, 0, 255), font=font)
    draw.text((original.width + gap + 10, 10), labels[1], fill=(0, 0, 0, 255), font=font)
    return ImageBuffer.from_pil(canvas)
