"""
Generation data model.

GenerationRecord is the unit of work shared by the provider, the durable
store, and the client view; its id is the provider-assigned job id.
"""

import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.errors import ValidationError

# Pixel dimensions per resolution tier (multiples of 16 for Wan 2.2)
RESOLUTIONS: dict[str, tuple[int, int]] = {
    "480p": (864, 480),
    "720p": (1280, 720),
}


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class GenerationStatus(str, Enum):
    """Lifecycle status of a generation."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def predecessors(self) -> frozenset["GenerationStatus"]:
        """Statuses a record may hold immediately before moving to this one."""
        if self == GenerationStatus.QUEUED:
            return frozenset({GenerationStatus.QUEUED})
        return ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({
    GenerationStatus.COMPLETED,
    GenerationStatus.FAILED,
    GenerationStatus.CANCELLED,
})
ACTIVE_STATUSES = frozenset({GenerationStatus.QUEUED, GenerationStatus.PROCESSING})


class GenerationParams(BaseModel):
    """Validated generation configuration."""
    image: Optional[str] = None  # base64 or data URL; selects the image flow
    prompt: str = Field(default="", max_length=1000)
    resolution: Literal["480p", "720p"] = "720p"
    num_inference_steps: int = Field(default=40, ge=20, le=50)
    guidance_scale: float = Field(default=3.5, ge=1, le=20)
    guidance_scale_2: Optional[float] = Field(default=None, ge=1, le=20)
    num_frames: int = Field(default=81, ge=25, le=81)
    fps: int = Field(default=16, ge=8, le=30)
    seed: Optional[int] = Field(default=None, ge=0)

    @field_validator("image")
    @classmethod
    def _blank_image_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("prompt", mode="before")
    @classmethod
    def _missing_prompt_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def is_image_flow(self) -> bool:
        return self.image is not None

    @property
    def dimensions(self) -> tuple[int, int]:
        return RESOLUTIONS[self.resolution]

    def persisted(self) -> dict[str, Any]:
        """Parameters as stored with the record (inline image bytes dropped)."""
        data = self.model_dump(exclude={"image"}, exclude_none=True)
        data["has_image"] = self.is_image_flow
        return data


def validate_params(payload: Any) -> GenerationParams:
    """
    Validate a submission payload.

    Raises:
        ValidationError: listing every violated field, not just the first
    """
    if isinstance(payload, GenerationParams):
        payload = payload.model_dump()
    if not isinstance(payload, dict):
        raise ValidationError([{"field": "payload", "message": "Expected a JSON object"}])

    details: list[dict] = []
    params: Optional[GenerationParams] = None

    try:
        params = GenerationParams.model_validate(payload)
    except PydanticValidationError as e:
        for err in e.errors():
            name = ".".join(str(part) for part in err["loc"]) or "payload"
            details.append({"field": name, "message": err["msg"]})

    image = payload.get("image")
    prompt = payload.get("prompt")
    has_image = isinstance(image, str) and bool(image.strip())
    blank_prompt = prompt is None or (isinstance(prompt, str) and not prompt.strip())
    prompt_reported = any(d["field"] == "prompt" for d in details)
    if not has_image and blank_prompt and not prompt_reported:
        details.append({
            "field": "prompt",
            "message": "A prompt is required when no source image is supplied",
        })

    if details:
        raise ValidationError(details)
    return params


@dataclass
class GenerationRecord:
    """Persisted state of one generation."""
    id: str
    prompt: str
    params: dict[str, Any]
    status: GenerationStatus = GenerationStatus.QUEUED
    created_at: int = field(default_factory=now_ms)
    progress: int = 0
    estimated_time: Optional[int] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None
    completed_at: Optional[int] = None
    execution_time: Optional[int] = None  # provider-reported, ms
    delay_time: Optional[int] = None  # provider-reported, ms

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def evolve(self, **changes) -> "GenerationRecord":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """API representation (camelCase, unset optionals omitted)."""
        data = {
            "id": self.id,
            "prompt": self.prompt,
            "params": self.params,
            "status": self.status.value,
            "createdAt": self.created_at,
            "progress": self.progress,
        }
        optional = {
            "estimatedTime": self.estimated_time,
            "videoUrl": self.video_url,
            "thumbnailUrl": self.thumbnail_url,
            "error": self.error,
            "completedAt": self.completed_at,
            "executionTime": self.execution_time,
            "delayTime": self.delay_time,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GenerationRecord":
        return cls(
            id=data["id"],
            prompt=data.get("prompt") or "",
            params=data.get("params") or {},
            status=GenerationStatus(data["status"]),
            created_at=data["createdAt"],
            progress=data.get("progress") or 0,
            estimated_time=data.get("estimatedTime"),
            video_url=data.get("videoUrl"),
            thumbnail_url=data.get("thumbnailUrl"),
            error=data.get("error"),
            completed_at=data.get("completedAt"),
            execution_time=data.get("executionTime"),
            delay_time=data.get("delayTime"),
        )


@dataclass
class ClientView:
    """
    The client's possibly-stale copy of the generation it is watching.

    Disposable: reconciliation always rebuilds it from the store.
    """
    current: Optional[GenerationRecord] = None
    is_generating: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentGeneration": self.current.to_dict() if self.current else None,
            "isGenerating": self.is_generating,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientView":
        current = data.get("currentGeneration")
        return cls(
            current=GenerationRecord.from_dict(current) if current else None,
            is_generating=bool(data.get("isGenerating")),
        )


@dataclass
class ProviderJob:
    """Provider-side view of a job, already mapped to our vocabulary."""
    id: str
    status: GenerationStatus
    raw_status: str
    video_base64: Optional[str] = None
    thumbnail_base64: Optional[str] = None
    error: Optional[str] = None
    execution_time: Optional[int] = None
    delay_time: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_log_dict(self) -> dict[str, Any]:
        """Summary safe to log (inline payloads reduced to their length)."""
        data = asdict(self)
        for key in ("video_base64", "thumbnail_base64"):
            if data[key]:
                data[key] = f"<{len(data[key])} chars>"
        data["status"] = self.status.value
        return data
