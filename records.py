"""Plain data records shared by the core, the store and both surfaces."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List


def new_id() -> str:
    return str(uuid.uuid4())[:8]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class UploadedImage:
    id: str
    data_url: str
    mime_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "data_url": self.data_url, "mime_type": self.mime_type}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "UploadedImage":
        return cls(
            id=str(d.get("id") or new_id()),
            data_url=d.get("data_url", ""),
            mime_type=d.get("mime_type", ""),
        )


@dataclass(frozen=True)
class SavedStyle:
    id: str
    timestamp: int
    thumbnail: str
    content: str
    reference_images: List[UploadedImage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "thumbnail": self.thumbnail,
            "content": self.content,
            "reference_images": [img.to_dict() for img in self.reference_images],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SavedStyle":
        return cls(
            id=str(d.get("id") or new_id()),
            timestamp=int(d.get("timestamp") or 0),
            thumbnail=d.get("thumbnail", ""),
            content=d.get("content", ""),
            reference_images=[
                UploadedImage.from_dict(img) for img in d.get("reference_images") or []
            ],
        )

    def summary(self) -> Dict[str, Any]:
        """Lightweight view for history listings (no full-size image payloads)."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "thumbnail": self.thumbnail,
            "reference_count": len(self.reference_images),
        }


@dataclass(frozen=True)
class GeneratedImage:
    id: str
    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "url": self.url}
