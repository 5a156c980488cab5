"""Clients for the generative image-judgment service."""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import Settings
from ..errors import IncompleteImageSet, OracleUnavailable
from ..frames import CapturedFrame
from ..liveness.steps import BLINK, NEUTRAL, TURN_RIGHT
from ..schemas import LivenessJudgment, PhotoValidationResult, VerificationVerdict
from .prompts import JSON_ONLY_SUFFIX, VALIDATE_PHOTO_PROMPT, VERIFY_LIVENESS_PROMPT

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
LabeledImage = Tuple[str, CapturedFrame]

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", re.DOTALL)


class ImageJudgmentOracle:
    """Images plus instructions in, structured judgment out."""

    async def judge(
        self,
        *,
        instructions: str,
        images: Sequence[LabeledImage],
        schema: Type[ModelT],
    ) -> ModelT:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class GeminiJudgmentOracle(ImageJudgmentOracle):
    """Thin wrapper around the Generative Language ``generateContent`` endpoint."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self.model = settings.oracle_model
        self._client = httpx.AsyncClient(
            base_url=settings.oracle_api_url,
            timeout=settings.oracle_timeout_seconds,
            transport=transport,
        )

    async def judge(
        self,
        *,
        instructions: str,
        images: Sequence[LabeledImage],
        schema: Type[ModelT],
    ) -> ModelT:
        payload = self._build_payload(instructions, images, schema)
        path = f"/models/{self.model}:generateContent"
        logger.info("oracle.judge: %s with %d image(s) -> %s", self.model, len(images), schema.__name__)
        try:
            response = await self._client.post(
                path,
                json=payload,
                headers={"x-goog-api-key": self.settings.oracle_api_key},
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error("oracle.judge: request timeout")
            raise OracleUnavailable("judgment request timed out") from e
        except httpx.NetworkError as e:
            logger.error("oracle.judge: network error - %s", e)
            raise OracleUnavailable(f"network error: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.error("oracle.judge: HTTP %d - %s", e.response.status_code, e.response.text[:500])
            raise OracleUnavailable(f"judgment service returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("oracle.judge: transport error - %s", e)
            raise OracleUnavailable(f"transport error: {e}") from e

        text = self._extract_text(response)
        try:
            return schema.model_validate_json(_strip_code_fence(text))
        except ValidationError as e:
            logger.error("oracle.judge: unparseable %s response - %s", schema.__name__, text[:500])
            raise OracleUnavailable(f"judgment service returned an unusable {schema.__name__}") from e

    @staticmethod
    def _build_payload(instructions: str, images: Sequence[LabeledImage], schema: Type[BaseModel]) -> Dict[str, Any]:
        schema_json = json.dumps(schema.model_json_schema(by_alias=True))
        parts: List[Dict[str, Any]] = [
            {"text": instructions},
            {"text": JSON_ONLY_SUFFIX.format(schema=schema_json)},
        ]
        for label, frame in images:
            parts.append({"text": f"{label}:"})
            parts.append({"inlineData": {"mimeType": frame.mime_type, "data": frame.base64_body}})

        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": 0.0,
            },
        }

    @staticmethod
    def _extract_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise OracleUnavailable("judgment service returned non-JSON body") from e
        if not isinstance(data, dict):
            raise OracleUnavailable("judgment service returned an unexpected body")

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise OracleUnavailable(f"judgment request blocked: {block_reason}")

        candidates = data.get("candidates") or []
        if not candidates:
            raise OracleUnavailable("judgment service returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise OracleUnavailable("judgment service returned an empty answer")
        return text

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing oracle HTTP client: %s", e)


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    match = _CODE_FENCE_RE.match(text)
    return match.group("body") if match else text


class VerificationOracleClient:
    """Packages the reference photo plus the three step frames into one judgment."""

    def __init__(self, oracle: ImageJudgmentOracle) -> None:
        self.oracle = oracle

    async def verify(self, reference_photo: CapturedFrame, images: Mapping[str, CapturedFrame]) -> VerificationVerdict:
        missing = [label for label in (NEUTRAL, BLINK, TURN_RIGHT) if label not in images]
        if missing:
            raise IncompleteImageSet(f"missing frames for {', '.join(missing)}")

        labeled: List[LabeledImage] = [
            ("Original Photo", reference_photo),
            ("Neutral Photo", images[NEUTRAL]),
            ("Blink Photo", images[BLINK]),
            ("Turn Right Photo", images[TURN_RIGHT]),
        ]
        try:
            judgment = await self.oracle.judge(
                instructions=VERIFY_LIVENESS_PROMPT,
                images=labeled,
                schema=LivenessJudgment,
            )
        except OracleUnavailable:
            raise
        except Exception as e:
            logger.exception("verify_liveness: oracle call failed - %s", e)
            raise OracleUnavailable(f"liveness judgment failed: {e}") from e

        verdict = VerificationVerdict.from_judgment(judgment)
        logger.info(
            "verify_liveness: same_person=%s live=%s feedback=%r",
            verdict.is_same_person,
            verdict.is_live,
            verdict.feedback,
        )
        return verdict


class PhotoValidationClient:
    """Checks a single profile photo against the ID photo guidelines."""

    def __init__(self, oracle: ImageJudgmentOracle) -> None:
        self.oracle = oracle

    async def validate(self, photo: CapturedFrame) -> PhotoValidationResult:
        try:
            result = await self.oracle.judge(
                instructions=VALIDATE_PHOTO_PROMPT,
                images=[("Photo", photo)],
                schema=PhotoValidationResult,
            )
        except OracleUnavailable:
            raise
        except Exception as e:
            logger.exception("validate_photo: oracle call failed - %s", e)
            raise OracleUnavailable(f"photo validation failed: {e}") from e

        result = result.normalised()
        logger.info(
            "validate_photo: valid=%s issues=%s",
            result.is_valid,
            [issue.code.value for issue in result.issues],
        )
        return result


__all__ = [
    "GeminiJudgmentOracle",
    "ImageJudgmentOracle",
    "LabeledImage",
    "PhotoValidationClient",
    "VerificationOracleClient",
]
