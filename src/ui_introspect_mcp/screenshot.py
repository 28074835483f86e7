"""Window screenshots as MCP image content."""

from __future__ import annotations

import base64
import io
import json
import logging

from mcp import types
from PIL import Image, UnidentifiedImageError

from .client import IntrospectionClient
from .errors import ProtocolError
from .models import Handle

logger = logging.getLogger(__name__)


class ScreenshotEncoder:
    """Captures a window and wraps the encoded image as a base64 content block."""

    def __init__(self, client: IntrospectionClient) -> None:
        self.client = client

    async def capture(
        self, window: Handle
    ) -> list[types.ImageContent | types.TextContent]:
        """Capture ``window`` in a single round trip.

        Returns an image block followed by a text block with format, pixel
        size and byte count.
        """
        data = await self.client.screenshot(window)

        try:
            with Image.open(io.BytesIO(data)) as img:
                image_format = img.format or "PNG"
                width, height = img.size
        except (UnidentifiedImageError, OSError) as e:
            self.client.connection.reset("undecodable screenshot")
            raise ProtocolError(f"Screenshot is not a readable image: {e}") from e

        mime_type = Image.MIME.get(image_format, "image/png")
        logger.debug(
            "Screenshot of window %s: %s %dx%d, %d bytes",
            window,
            image_format,
            width,
            height,
            len(data),
        )
        meta = {
            "format": image_format.lower(),
            "width": width,
            "height": height,
            "size_bytes": len(data),
        }
        return [
            types.ImageContent(
                type="image",
                data=base64.b64encode(data).decode(),
                mimeType=mime_type,
            ),
            types.TextContent(type="text", text=json.dumps(meta, indent=2)),
        ]
