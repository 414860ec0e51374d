"""Parameter presets: the built-in set plus whatever a client saved."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Preset:
    id: str
    name: str
    description: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "params": dict(self.params),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Preset":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            description=str(data.get("description", "")),
            params=dict(data.get("params") or {}),
        )


DEFAULT_PRESETS: list[Preset] = [
    Preset(
        id="quick",
        name="Quick",
        description="Fast generation with good quality",
        params={
            "resolution": "480p",
            "num_inference_steps": 30,
            "guidance_scale": 3.0,
            "num_frames": 49,
            "fps": 12,
        },
    ),
    Preset(
        id="balanced",
        name="Balanced",
        description="Balanced quality and speed (recommended)",
        params={
            "resolution": "720p",
            "num_inference_steps": 40,
            "guidance_scale": 3.5,
            "num_frames": 81,
            "fps": 16,
        },
    ),
    Preset(
        id="high-quality",
        name="High Quality",
        description="Best quality, slower generation",
        params={
            "resolution": "720p",
            "num_inference_steps": 50,
            "guidance_scale": 4.5,
            "num_frames": 81,
            "fps": 24,
        },
    ),
    Preset(
        id="smooth-motion",
        name="Smooth Motion",
        description="Higher FPS for smoother animations",
        params={
            "resolution": "720p",
            "num_inference_steps": 40,
            "guidance_scale": 3.5,
            "num_frames": 81,
            "fps": 30,
        },
    ),
]


# Submission fields a preset may carry (never the prompt or source image)
PRESET_FIELDS = (
    "resolution",
    "num_inference_steps",
    "guidance_scale",
    "guidance_scale_2",
    "num_frames",
    "fps",
)


def get_preset(preset_id: str, presets: Optional[list[Preset]] = None) -> Optional[Preset]:
    for preset in DEFAULT_PRESETS if presets is None else presets:
        if preset.id == preset_id:
            return preset
    return None


def apply_preset(
    preset_id: Optional[str],
    overrides: dict[str, Any],
    presets: Optional[list[Preset]] = None,
) -> dict[str, Any]:
    """
    Merge explicit values over a preset's parameters.

    None-valued overrides are treated as "not given". `presets` defaults to
    the built-in set.

    Raises:
        KeyError: if the preset does not exist
    """
    payload: dict[str, Any] = {}
    if preset_id:
        preset = get_preset(preset_id, presets)
        if preset is None:
            raise KeyError(preset_id)
        payload.update(preset.params)
    payload.update({k: v for k, v in overrides.items() if v is not None})
    return payload
