"""Still-image payloads exchanged between the camera, the sequencer and the oracle."""
from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping

from .errors import IncompleteImageSet, InvalidFramePayload

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<body>.*)$", re.DOTALL)


@dataclass(frozen=True)
class CapturedFrame:
    """A single still image; ``mime_type`` plus raw encoded bytes."""

    mime_type: str
    data: bytes

    @classmethod
    def from_data_uri(cls, uri: str) -> "CapturedFrame":
        """Parse ``data:<mime>;base64,<body>``."""
        if not isinstance(uri, str):
            raise InvalidFramePayload("frame payload must be a string")
        match = _DATA_URI_RE.match(uri.strip())
        if not match:
            raise InvalidFramePayload("expected 'data:<mimetype>;base64,<encoded_data>'")
        mime_type = match.group("mime").lower()
        if not mime_type.startswith("image/"):
            raise InvalidFramePayload(f"unsupported mime type {mime_type!r}")
        try:
            data = base64.b64decode(match.group("body"), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidFramePayload("frame body is not valid base64") from exc
        if not data:
            raise InvalidFramePayload("frame body is empty")
        return cls(mime_type=mime_type, data=data)

    @property
    def base64_body(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_body}"

    def __repr__(self) -> str:
        return f"CapturedFrame(mime_type={self.mime_type!r}, bytes={len(self.data)})"


class CapturedImageSet(Mapping[str, CapturedFrame]):
    """Frames keyed by action label, filled one step at a time."""

    def __init__(self, labels: tuple[str, ...]) -> None:
        self._labels = labels
        self._frames: Dict[str, CapturedFrame] = {}

    def add(self, label: str, frame: CapturedFrame) -> None:
        if label not in self._labels:
            raise KeyError(f"unknown action label {label!r}")
        if label in self._frames:
            raise ValueError(f"frame for {label!r} already captured")
        self._frames[label] = frame

    def clear(self) -> None:
        self._frames.clear()

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    @property
    def is_complete(self) -> bool:
        return all(label in self._frames for label in self._labels)

    def require_complete(self) -> None:
        missing = [label for label in self._labels if label not in self._frames]
        if missing:
            raise IncompleteImageSet(f"missing frames for {', '.join(missing)}")

    def __getitem__(self, label: str) -> CapturedFrame:
        return self._frames[label]

    def __iter__(self) -> Iterator[str]:
        return iter(self._frames)

    def __len__(self) -> int:
        return len(self._frames)


__all__ = ["CapturedFrame", "CapturedImageSet"]
