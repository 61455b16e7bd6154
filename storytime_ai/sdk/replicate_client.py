"""
Replicate image generation client.

Runs synchronous predictions (``Prefer: wait``) against Flux models or a
custom LoRA model version, retries on rate limiting and, when a tracking
context is given, dispatches a TrackImageRequestJob for usage accounting.
"""

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from ..config.loader import ReplicateConfig
from ..core.jobs import Dispatcher, InlineDispatcher, TrackImageRequestJob
from ..core.outcome import ImageResult

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "black-forest-labs/flux-2-max"
KREA_MODEL = "black-forest-labs/flux-krea-dev"
MAX_INPUT_IMAGES = 8
MAX_RETRIES = 3
MIN_RATE_LIMIT_WAIT = 5

_WAIT_PATTERNS = (
    re.compile(r"resets in ~?(\d+)s"),
    re.compile(r"resets in ~?(\d+)\s*seconds?"),
)


def extract_wait_time(message: str) -> int:
    """Seconds until the rate limit resets, as announced by the API (default 5)."""
    for pattern in _WAIT_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return int(match.group(1))
    return 5


def first_output_url(output: Any) -> Optional[str]:
    if isinstance(output, list):
        return output[0] if output else None
    return output


class ReplicateApiClient:
    """Client for Replicate predictions."""

    provider_name = "replicate"

    def __init__(
        self,
        config: ReplicateConfig,
        dispatcher: Optional[Dispatcher] = None,
        accounting=None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.dispatcher = dispatcher or InlineDispatcher()
        self.accounting = accounting
        self._session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock

    def generate_image(
        self,
        prompt: str,
        input_images: Optional[List[str]] = None,
        aspect_ratio: str = "16:9",
        tracking_context: Optional[Dict[str, Any]] = None,
    ) -> ImageResult:
        """Generate an image with Flux 2, optionally conditioned on reference images.

        Args:
            prompt: Text prompt
            input_images: Reference image URLs, at most eight are sent
            aspect_ratio: Aspect ratio of the output image
            tracking_context: user_id, profile_id, book_id, chapter_id,
                character_id and item_type used for the request log

        Returns:
            ImageResult with the output URL, or the error
        """
        if self.config.use_custom_model:
            return self.generate_image_with_custom_model(prompt, aspect_ratio, tracking_context=tracking_context)

        payload: Dict[str, Any] = {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "safety_tolerance": 5,
        }
        input_images_count = 0
        if input_images:
            payload["input_images"] = list(input_images[:MAX_INPUT_IMAGES])
            input_images_count = len(payload["input_images"])
            logger.info("replicate adding reference images input_images_count=%d", input_images_count)

        return self._run(
            DEFAULT_MODEL, self._model_url(DEFAULT_MODEL), {"input": payload},
            prompt, input_images_count, tracking_context,
        )

    def generate_image_with_krea(
        self,
        prompt: str,
        aspect_ratio: str = "1:1",
        tracking_context: Optional[Dict[str, Any]] = None,
    ) -> ImageResult:
        """Generate a photographic image with Flux Krea Dev."""
        if self.config.use_custom_model:
            return self.generate_image_with_custom_model(prompt, aspect_ratio, tracking_context=tracking_context)

        payload = {
            "prompt": prompt,
            "go_fast": True,
            "guidance": 2.5,
            "megapixels": "1",
            "num_outputs": 1,
            "aspect_ratio": aspect_ratio,
            "disable_safety_checker": True,
            "output_format": "webp",
            "output_quality": 95,
            "prompt_strength": 0.8,
            "num_inference_steps": 28,
        }
        return self._run(KREA_MODEL, self._model_url(KREA_MODEL), {"input": payload}, prompt, 0, tracking_context)

    def generate_image_with_custom_model(
        self,
        prompt: str,
        aspect_ratio: str = "1:1",
        custom_params: Optional[Dict[str, Any]] = None,
        tracking_context: Optional[Dict[str, Any]] = None,
    ) -> ImageResult:
        """Generate an image with the configured custom LoRA model version."""
        payload: Dict[str, Any] = {
            "prompt": prompt,
            "model": "dev",
            "go_fast": False,
            "lora_scale": 1,
            "megapixels": "1",
            "num_outputs": 1,
            "aspect_ratio": aspect_ratio,
            "output_format": "webp",
            "guidance_scale": 2,
            "output_quality": 80,
            "prompt_strength": 0.8,
            "extra_lora_scale": self.config.custom_model_lora_scale,
            "num_inference_steps": 30,
            "disable_safety_checker": True,
        }
        if self.config.custom_model_lora:
            payload["extra_lora"] = self.config.custom_model_lora
        payload.update(custom_params or {})

        body = {"version": self.config.custom_model_version, "input": payload}
        model = f"custom/{self.config.custom_model_version}"
        return self._run(model, self.config.base_url.rstrip("/") + "/predictions", body, prompt, 0, tracking_context)

    def _model_url(self, model: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/models/{model}/predictions"

    def _run(
        self,
        model: str,
        url: str,
        body: Dict[str, Any],
        prompt: str,
        input_images_count: int,
        tracking_context: Optional[Dict[str, Any]],
    ) -> ImageResult:
        logger.debug(
            "replicate request model=%s prompt_length=%d aspect_ratio=%s input_images_count=%d",
            model, len(prompt), body["input"].get("aspect_ratio"), input_images_count,
        )
        start = self._clock()
        try:
            response = self._post_with_retry(model, url, body)
        except requests.RequestException as e:
            logger.error("replicate request failed model=%s error=%s", model, e)
            result = ImageResult(url=None, error=f"Request failed: {e}")
        else:
            if not response.ok:
                logger.error("replicate error model=%s status=%s body=%s", model, response.status_code, response.text)
                result = ImageResult(url=None, error=_detail(response) or "Failed to generate image")
            else:
                result = ImageResult(url=first_output_url(_json(response).get("output")))
        response_time = self._clock() - start

        self._track(
            model, tracking_context, result, prompt, input_images_count,
            1 if result.url else 0, response_time,
        )
        return result

    def _post_with_retry(self, model: str, url: str, body: Dict[str, Any]) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {self.config.api_key or ''}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }
        attempt = 0
        while True:
            response = self._session.post(url, json=body, headers=headers, timeout=self.config.timeout)
            if response.status_code != 429:
                return response

            attempt += 1
            if attempt > MAX_RETRIES:
                logger.warning("replicate max retries reached for rate limit model=%s", model)
                return response

            wait_seconds = max(extract_wait_time(_detail(response) or "") + 1, MIN_RATE_LIMIT_WAIT)
            logger.info(
                "replicate rate limited model=%s attempt=%d max_retries=%d wait_seconds=%d",
                model, attempt, MAX_RETRIES, wait_seconds,
            )
            self._sleep(wait_seconds)

    def _track(
        self,
        model: str,
        context: Optional[Dict[str, Any]],
        result: ImageResult,
        prompt: str,
        input_images_count: int,
        output_images_count: int,
        response_time: float,
    ) -> None:
        if context is None:
            return
        if self.accounting is None:
            logger.warning("replicate tracking context given without accounting, request not logged model=%s", model)
            return

        self.dispatcher.dispatch(TrackImageRequestJob(
            self.accounting,
            model=model,
            item_type=context.get("item_type") or "image_generation",
            response=result.to_dict(),
            prompt=prompt,
            input_images_count=input_images_count,
            output_images_count=output_images_count,
            response_time=response_time,
            user_id=context.get("user_id"),
            profile_id=context.get("profile_id"),
            book_id=context.get("book_id"),
            chapter_id=context.get("chapter_id"),
            character_id=context.get("character_id"),
        ))


def _json(response: requests.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _detail(response: requests.Response) -> Optional[str]:
    return _json(response).get("detail")
