"""Cut a long 3:1 carousel background into square slides."""

import io

from PIL import Image

from ..exceptions import ValidationError

MAX_SLIDES = 10


def calculate_slice_data(slide_count: int) -> list[dict[str, float]]:
    """Relative crop boxes (x, y, width, height in 0..1) for each slide."""
    if slide_count < 1:
        raise ValidationError("slide_count must be at least 1")
    width = 1 / slide_count
    return [
        {"x": index * width, "y": 0.0, "width": width, "height": 1.0}
        for index in range(slide_count)
    ]


def crop_css(image_url: str, crop: dict[str, float]) -> dict[str, str]:
    """Background styles that show one slice of the long image at 1:1."""
    return {
        "backgroundImage": f"url({image_url})",
        "backgroundPosition": f"{crop['x'] * 100}% {crop['y'] * 100}%",
        "backgroundSize": f"{100 / crop['width']}% {100 / crop['height']}%",
        "backgroundRepeat": "no-repeat",
        "aspectRatio": "1 / 1",
    }


def slice_long_image(data: bytes, slide_count: int) -> list[bytes]:
    """Crop the image into ``slide_count`` equal vertical strips, each made square.

    A strip wider or taller than square is centre-cropped to its shorter side.
    """
    if not 1 <= slide_count <= MAX_SLIDES:
        raise ValidationError(f"slide_count must be between 1 and {MAX_SLIDES}")

    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except OSError as e:
        raise ValidationError(f"Unreadable carousel image: {e}") from e

    slides = []
    with image:
        strip_width = image.width / slide_count
        for index in range(slide_count):
            left = round(index * strip_width)
            right = round((index + 1) * strip_width)
            side = min(right - left, image.height)
            x_offset = left + ((right - left) - side) // 2
            y_offset = (image.height - side) // 2
            slide = image.crop((x_offset, y_offset, x_offset + side, y_offset + side))
            output = io.BytesIO()
            slide.save(output, format="PNG")
            slides.append(output.getvalue())
    return slides
