import io

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from shortly.core.exceptions import QrGenerationError
from shortly.services.logger import setup_logger

logger = setup_logger()


def generate_qr_png(content: str, size: int) -> bytes:
    """Render content as a square QR code PNG.

    Args:
        content (str): Text to encode, typically a short URL.
        size (int): Width and height of the image in pixels.

    Returns:
        bytes: PNG image data.

    Raises:
        QrGenerationError: If the content cannot be encoded or written.
    """
    logger.info("Generating QR code for content: %s", content)
    logger.debug("QR code dimensions: %dx%d", size, size)

    try:
        qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, border=2)
        qr.add_data(content)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white").get_image()
        img = img.resize((size, size))

        buf = io.BytesIO()
        img.save(buf, format="PNG")
    except (ValueError, OSError) as e:
        logger.error("Failed to generate QR code: %s", e)
        raise QrGenerationError(f"Failed to generate QR code: {e}") from e

    qr_bytes = buf.getvalue()
    logger.info("QR code generated successfully, size: %d bytes", len(qr_bytes))
    return qr_bytes
