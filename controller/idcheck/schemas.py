"""Pydantic models for oracle judgments and the HTTP surface."""
from __future__ import annotations

import enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .frames import CapturedFrame


# ============================================================
# Oracle judgments
# ============================================================

class LivenessJudgment(BaseModel):
    """Raw liveness answer as the oracle writes it."""

    model_config = ConfigDict(populate_by_name=True)

    is_same_person: bool = Field(
        alias="isSamePerson",
        description="Whether the person in the new photos is the same as in the original profile photo.",
    )
    is_live: bool = Field(
        alias="isLive",
        description="Whether the user appears to be a live person performing the requested actions.",
    )
    verification_feedback: str = Field(
        "",
        alias="verificationFeedback",
        description="Brief summary, e.g. 'Liveness check failed: eyes were not closed in the blink photo.'",
    )


class VerificationVerdict(BaseModel):
    """Verdict after the identity gate; a different person is never live."""

    model_config = ConfigDict(frozen=True)

    is_same_person: bool
    is_live: bool
    feedback: str = ""

    @classmethod
    def from_judgment(cls, judgment: LivenessJudgment) -> "VerificationVerdict":
        return cls(
            is_same_person=judgment.is_same_person,
            is_live=judgment.is_same_person and judgment.is_live,
            feedback=judgment.verification_feedback,
        )

    @property
    def passed(self) -> bool:
        return self.is_same_person and self.is_live


class PhotoIssueCode(str, enum.Enum):
    NOT_NECK_UP = "NOT_NECK_UP"
    NOT_NEUTRAL_EXPRESSION = "NOT_NEUTRAL_EXPRESSION"
    EYES_NOT_VISIBLE = "EYES_NOT_VISIBLE"
    HAS_HAT_OR_GLASSES = "HAS_HAT_OR_GLASSES"
    HAS_SHADOWS_OR_REFLECTIONS = "HAS_SHADOWS_OR_REFLECTIONS"
    NOT_A_PERSON = "NOT_A_PERSON"
    LOW_QUALITY = "LOW_QUALITY"


class PhotoIssue(BaseModel):
    code: PhotoIssueCode
    feedback: str = Field(description="A user-friendly message explaining the issue and how to fix it.")


class PhotoValidationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(alias="isValid", description="Whether the photo is valid for an ID card.")
    issues: List[PhotoIssue] = Field(default_factory=list, description="Issues found with the photo.")

    def normalised(self) -> "PhotoValidationResult":
        """A photo with any reported issue is never valid."""
        if self.is_valid and self.issues:
            return self.model_copy(update={"is_valid": False})
        return self


# ============================================================
# HTTP payloads
# ============================================================

class _PhotoPayload(BaseModel):
    @staticmethod
    def _check_data_uri(value: str) -> str:
        CapturedFrame.from_data_uri(value)
        return value


class StartLivenessRequest(_PhotoPayload):
    reference_photo: str = Field(..., description="Trusted profile photo as 'data:<mime>;base64,<data>'")

    @field_validator("reference_photo")
    @classmethod
    def _validate_reference(cls, value: str) -> str:
        return cls._check_data_uri(value)


class ValidatePhotoRequest(_PhotoPayload):
    photo: str = Field(..., description="Candidate profile photo as 'data:<mime>;base64,<data>'")

    @field_validator("photo")
    @classmethod
    def _validate_photo(cls, value: str) -> str:
        return cls._check_data_uri(value)


class CapturedPhotoResponse(BaseModel):
    photo: str
    mime_type: str
    size_bytes: int


class ErrorResponse(BaseModel):
    reason: Optional[str] = None
    message: str


__all__ = [
    "CapturedPhotoResponse",
    "ErrorResponse",
    "LivenessJudgment",
    "PhotoIssue",
    "PhotoIssueCode",
    "PhotoValidationResult",
    "StartLivenessRequest",
    "ValidatePhotoRequest",
    "VerificationVerdict",
]
