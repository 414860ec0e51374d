"""
User preset library.

Custom presets live in presets.json next to the view cache and are offered
after the built-in ones. Built-in presets can neither be overwritten nor
deleted. An unreadable file is treated as "no custom presets".
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os

from core.config import StorageConfig, get_config
from services.video_generation.presets import DEFAULT_PRESETS, PRESET_FIELDS, Preset, get_preset

logger = logging.getLogger(__name__)

PRESETS_FILENAME = "presets.json"
BUILTIN_IDS = frozenset(p.id for p in DEFAULT_PRESETS)


def preset_id_for(name: str) -> str:
    """Slug used as the id of a saved preset ("My Look!" -> "my-look")."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class PresetLibrary:
    """Built-in presets plus the ones a user saved."""

    def __init__(self, path: Optional[Path] = None, config: Optional[StorageConfig] = None):
        if path is None:
            config = config or get_config().storage
            path = Path(config.state_dir).expanduser() / PRESETS_FILENAME
        self.path = path

    async def load_custom(self) -> list[Preset]:
        if not await aiofiles.os.path.exists(self.path):
            return []

        try:
            async with aiofiles.open(self.path, "r") as f:
                data = json.loads(await f.read())
            return [Preset.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable preset file {self.path}: {e}")
            return []

    async def _save_custom(self, presets: list[Preset]) -> None:
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(json.dumps([p.to_dict() for p in presets], indent=2))
        await aiofiles.os.replace(tmp_path, self.path)

    async def all(self) -> list[Preset]:
        return [*DEFAULT_PRESETS, *await self.load_custom()]

    async def get(self, preset_id: str) -> Optional[Preset]:
        return get_preset(preset_id, await self.all())

    async def add(self, name: str, params: dict[str, Any], description: str = "") -> Preset:
        """
        Save (or replace) a custom preset built from submission parameters.

        Only preset fields are kept; prompt, image and seed are dropped.

        Raises:
            ValueError: if the name is empty or collides with a built-in preset
        """
        preset_id = preset_id_for(name)
        if not preset_id:
            raise ValueError("Preset name must contain letters or digits")
        if preset_id in BUILTIN_IDS:
            raise ValueError(f"{preset_id!r} is a built-in preset")

        preset = Preset(
            id=preset_id,
            name=name.strip(),
            description=description,
            params={k: params[k] for k in PRESET_FIELDS if params.get(k) is not None},
        )
        custom = [p for p in await self.load_custom() if p.id != preset_id]
        custom.append(preset)
        await self._save_custom(custom)

        logger.info(f"Saved preset {preset_id}")
        return preset

    async def delete(self, preset_id: str) -> bool:
        """
        Remove a custom preset. Returns False if no such custom preset exists.

        Raises:
            ValueError: for built-in presets
        """
        if preset_id in BUILTIN_IDS:
            raise ValueError(f"{preset_id!r} is a built-in preset")

        custom = await self.load_custom()
        remaining = [p for p in custom if p.id != preset_id]
        if len(remaining) == len(custom):
            return False

        await self._save_custom(remaining)
        logger.info(f"Deleted preset {preset_id}")
        return True
