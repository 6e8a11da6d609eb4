import io

from PIL import Image


def image_bytes(width: int = 40, height: int = 20, fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    mode = "RGBA" if fmt == "PNG" else "RGB"
    Image.new(mode, (width, height), color=(200, 120, 40)).save(buffer, format=fmt)
    return buffer.getvalue()


def write_image(path: str, width: int = 40, height: int = 20, fmt: str = "PNG") -> str:
    with open(path, "wb") as f:
        f.write(image_bytes(width, height, fmt))
    return path
