from __future__ import annotations

import asyncio
import json
import logging
import math
import random
import re
from typing import Any, List, Optional, Sequence

import httpx
import numpy as np
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from balloonfuse.pipeline.errors import RemoteServiceTerminal, RemoteServiceTransient
from balloonfuse.pipeline.model import BalloonShape, SemanticBalloon
from balloonfuse.pipeline.utils.io import encode_jpeg, resize_long_edge

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class ResponseBalloon(BaseModel):
    """Schema handed to the model for one balloon."""

    original_text: str
    translated_text: str
    should_translate: bool
    shape: str
    box_2d: List[int]
    center_point: Optional[List[int]] = None


# Wrapper object: the SDK handles an object root more reliably than List[...].
class ResponseBalloonList(BaseModel):
    balloons: List[ResponseBalloon]


class BalloonItem(BaseModel):
    """Lenient parser for one returned balloon."""

    model_config = ConfigDict(extra="ignore")

    original_text: str = ""
    translated_text: str = Field(
        default="",
        validation_alias=AliasChoices("translated_text", "italian_translation", "translation"),
    )
    should_translate: bool = True
    shape: Optional[str] = None
    box_2d: List[float]
    center_point: Optional[List[float]] = None

    @field_validator("box_2d")
    @classmethod
    def _four_coordinates(cls, value: List[float]) -> List[float]:
        if len(value) != 4:
            raise ValueError("box_2d must have exactly 4 values [ymin, xmin, ymax, xmax]")
        if not all(math.isfinite(v) for v in value):
            raise ValueError("box_2d values must be finite")
        return value

    @field_validator("center_point")
    @classmethod
    def _two_coordinates(cls, value: Optional[List[float]]) -> Optional[List[float]]:
        if value is not None and (len(value) != 2 or not all(math.isfinite(v) for v in value)):
            return None
        return value


def _grid(value: float) -> int:
    return int(min(1000, max(0, round(float(value)))))


def _to_semantic(item: BalloonItem) -> SemanticBalloon:
    ymin, xmin, ymax, xmax = (_grid(v) for v in item.box_2d)
    ymin, ymax = sorted((ymin, ymax))
    xmin, xmax = sorted((xmin, xmax))
    center = None
    if item.center_point is not None:
        center = (_grid(item.center_point[0]), _grid(item.center_point[1]))
    return SemanticBalloon(
        original_text=item.original_text,
        translated_text=item.translated_text,
        should_translate=item.should_translate,
        shape=BalloonShape.parse(item.shape),
        approx_box=(ymin, xmin, ymax, xmax),
        center_point=center,
    )


def strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()


def parse_balloons(text: str) -> List[SemanticBalloon]:
    """
    Decode the model's JSON answer into semantic balloons.

    Accepts an object with a ``balloons`` list or a bare list, optionally wrapped
    in markdown fences. Items that fail validation are skipped; a payload that is
    not JSON at all is a terminal error.
    """
    try:
        data: Any = json.loads(strip_fences(text or ""))
    except json.JSONDecodeError as exc:
        raise RemoteServiceTerminal(f"semantic response is not valid JSON: {exc}") from exc

    items = data.get("balloons") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise RemoteServiceTerminal("semantic response has no balloon list")

    balloons: List[SemanticBalloon] = []
    for index, raw in enumerate(items):
        try:
            item = BalloonItem.model_validate(raw)
        except ValidationError as exc:
            logger.warning("semantic_item_invalid", extra={"index": index, "errors": exc.error_count()})
            continue
        balloons.append(_to_semantic(item))
    return balloons


def build_prompt(target_language: str) -> str:
    return (
        "Analyze this comic book page and detect every speech balloon and caption.\n"
        "For each balloon:\n"
        "1. Extract the original text (OCR).\n"
        f"2. Translate it into {target_language}.\n"
        "3. Identify the shape (OVAL, RECTANGLE, CLOUD, JAGGED).\n"
        "4. Provide the bounding box [ymin, xmin, ymax, xmax] normalized to a 1000x1000 grid.\n"
        "5. Provide the center point [y, x] of the balloon interior on the same grid.\n"
        "6. Set should_translate to false for sound effects, signatures and text that must stay as drawn.\n\n"
        "Respond with a JSON object containing a 'balloons' key holding an array of objects with the keys "
        "'original_text', 'translated_text', 'should_translate', 'shape', 'box_2d' and 'center_point'."
    )


class GeminiSemanticSource:
    """OCR, translation and rough balloon geometry from a Gemini vision model."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "gemini-2.5-flash",
        target_language: str = "Italian",
        max_dimension: int = 1560,
        jpeg_quality: int = 85,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        jitter_seconds: float = 0.25,
        retry_status_codes: Sequence[int] = (500, 502, 503, 504),
    ) -> None:
        self._api_key = api_key
        self._client: Optional[genai.Client] = None
        self.model = model
        self.target_language = target_language
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = backoff_seconds
        self.jitter_seconds = jitter_seconds
        self.retry_status_codes = frozenset(int(c) for c in retry_status_codes)
        self._generation_config = types.GenerateContentConfig(
            temperature=0.2,
            response_mime_type="application/json",
            response_schema=ResponseBalloonList,
        )

    def _get_client(self) -> genai.Client:
        if not self._api_key:
            raise RemoteServiceTerminal("GOOGLE_API_KEY is required for the Gemini semantic source")
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1)) + random.uniform(0, self.jitter_seconds)

    async def _generate(self, image_bytes: bytes) -> str:
        client = self._get_client()
        contents = [
            types.Part.from_bytes(data=image_bytes, mime_type="image/jpeg"),
            build_prompt(self.target_language),
        ]

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=self._generation_config,
                )
                return response.text or ""
            except genai_errors.APIError as exc:
                status = getattr(exc, "code", None)
                if status not in self.retry_status_codes:
                    logger.error("semantic_request_rejected", extra={"status": status, "attempt": attempt})
                    raise RemoteServiceTerminal(f"gemini request failed: {exc}", status_code=status) from exc
                last_status: Optional[int] = status
                last_exc: BaseException = exc
            except httpx.TransportError as exc:
                last_status = None
                last_exc = exc

            if attempt >= self.max_attempts:
                logger.error("semantic_unavailable", extra={"attempts": attempt, "status": last_status})
                raise RemoteServiceTransient(
                    f"gemini unavailable after {attempt} attempts", status_code=last_status
                ) from last_exc

            delay = self._backoff(attempt)
            logger.warning(
                "semantic_retry",
                extra={"attempt": attempt, "status": last_status, "delay_s": round(delay, 3)},
            )
            await asyncio.sleep(delay)

    async def fetch(self, image_bgr: np.ndarray) -> List[SemanticBalloon]:
        resized = resize_long_edge(image_bgr, self.max_dimension)
        payload = encode_jpeg(resized, self.jpeg_quality)
        logger.info(
            "semantic_request",
            extra={"model": self.model, "size": [int(resized.shape[1]), int(resized.shape[0])], "bytes": len(payload)},
        )
        text = await self._generate(payload)
        balloons = parse_balloons(text)
        logger.info("semantic_response", extra={"num_balloons": len(balloons)})
        return balloons
