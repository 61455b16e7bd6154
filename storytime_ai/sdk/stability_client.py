"""
Stability AI image generation client.

Unlike the text clients, this one raises ProviderError on failure: its
callers want image bytes, not a result to inspect.
"""

import logging
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

import requests

from ..config.loader import StabilityConfig
from ..core.errors import ProviderError

logger = logging.getLogger(__name__)

BASE_NEGATIVE_PROMPT = (
    "malformed, missing limbs, topless, bare shoulders, nude, posed, dead eyes, scary eyes, "
    "vibrant eyes, fluorescent iris, flat background, airbrushhed, flash photography, full lighting."
)
IMAGE_TO_IMAGE_STRENGTH = 0.2


class StabilityApiClient:
    """Client for the Stable Image Ultra endpoint."""

    provider_name = "stability"

    def __init__(
        self,
        config: StabilityConfig,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self._session = session or requests.Session()
        self._clock = clock

    def generate_image(
        self,
        prompt: str,
        aspect_ratio: str = "1:1",
        base_prompt: str = "",
        end_prompt: str = "",
        negative: str = "",
        existing_image_path: Optional[str] = None,
    ) -> bytes:
        """Generate an image and return its bytes.

        Args:
            prompt: Text prompt, wrapped by ``base_prompt`` and ``end_prompt``
            aspect_ratio: Aspect ratio of the output image
            negative: Extra negative prompt, prepended to the base one
            existing_image_path: Source image for image-to-image mode; ignored
                with a warning when the file does not exist

        Raises:
            ProviderError: If the API call fails
        """
        request_id = f"req_{uuid.uuid4().hex[:13]}"
        data = {
            "prompt": f"{base_prompt}{prompt} {end_prompt}",
            "negative_prompt": negative + BASE_NEGATIVE_PROMPT,
            "output_format": "jpeg",
            "aspect_ratio": aspect_ratio,
        }
        files = {}

        if existing_image_path:
            source = Path(existing_image_path)
            if source.is_file():
                logger.debug("[%s] image-to-image mode path=%s", request_id, source)
                data["mode"] = "image-to-image"
                data["strength"] = str(IMAGE_TO_IMAGE_STRENGTH)
                files["image"] = (source.name, source.read_bytes())
            else:
                logger.warning("[%s] existing image not found path=%s", request_id, source)

        # the endpoint requires multipart even without an image part
        files.setdefault("none", (None, ""))
        headers = {
            "Authorization": f"Bearer {self.config.api_key or ''}",
            "Accept": "image/*",
        }

        logger.debug("[%s] stability request aspect_ratio=%s fields=%d", request_id, aspect_ratio, len(data))
        try:
            response = self._session.post(
                self.config.endpoint, headers=headers, data=data, files=files, timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.error("[%s] stability request failed error=%s", request_id, e)
            raise ProviderError(f"Request failed: {e}", status_code=500)

        if not response.ok:
            logger.error("[%s] stability request failed status=%s body=%s", request_id, response.status_code, response.text)
            raise ProviderError(response.text or "No response", status_code=response.status_code)

        logger.debug("[%s] stability request successful bytes=%d", request_id, len(response.content))
        return response.content

    def get_image(self, prompt: str, directory: str, **kwargs) -> str:
        """Generate an image and save it under ``directory``; returns the file path."""
        return self.save_image(self.generate_image(prompt, **kwargs), directory)

    def save_image(self, contents: bytes, directory: str) -> str:
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"{int(self._clock())}.png"
        path.write_bytes(contents)
        return str(path)
