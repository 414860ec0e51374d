"""
Client view cache.

Keeps the CLI's ClientView in a small JSON file so a later invocation can
pick up the generation it was watching. The file is only a hint: anything
unreadable is treated as an empty view and reconciliation rebuilds it from
the store.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from core.config import StorageConfig, get_config
from services.video_generation import ClientView

logger = logging.getLogger(__name__)

VIEW_FILENAME = "view.json"


class ViewCache:
    """JSON-file persistence for a single ClientView."""

    def __init__(self, path: Optional[Path] = None, config: Optional[StorageConfig] = None):
        if path is None:
            config = config or get_config().storage
            path = Path(config.state_dir).expanduser() / VIEW_FILENAME
        self.path = path

    async def load(self) -> ClientView:
        if not await aiofiles.os.path.exists(self.path):
            return ClientView()

        try:
            async with aiofiles.open(self.path, "r") as f:
                data = json.loads(await f.read())
            return ClientView.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable view cache {self.path}: {e}")
            return ClientView()

    async def save(self, view: ClientView) -> None:
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(json.dumps(view.to_dict(), indent=2))
        await aiofiles.os.replace(tmp_path, self.path)

    async def clear(self) -> None:
        if await aiofiles.os.path.exists(self.path):
            await aiofiles.os.remove(self.path)
