"""
Wan Video Generator CLI Tools

Command-line tools for interacting with the video generation service.

Tools:
- session: Submit, watch and cancel a generation (survives restarts)
- view_cache: Reload-surviving cache of the watched generation
- preset_library: Built-in plus user-saved parameter presets
- progress_monitor: Terminal rendering of generation progress
"""

from .preset_library import PresetLibrary
from .progress_monitor import ProgressMonitor
from .session import GenerationSession
from .view_cache import ViewCache

__all__ = ["GenerationSession", "PresetLibrary", "ProgressMonitor", "ViewCache"]
