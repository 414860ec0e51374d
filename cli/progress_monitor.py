"""
CLI Progress Monitor for Video Generation

Renders generation records for the terminal: an in-place progress line while
a job is active and a summary once it finishes.

Usage:
    monitor = ProgressMonitor()
    session = GenerationSession(coordinator, cache, on_update=monitor.update)
"""

import time
from datetime import datetime
from typing import Optional

from services.video_generation import GenerationRecord, GenerationStatus


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    # Clear line
    CLEAR_LINE = "\033[2K\r"


STATUS_STYLE = {
    GenerationStatus.QUEUED: ("⏳", Colors.DIM),
    GenerationStatus.PROCESSING: ("🎬", Colors.CYAN),
    GenerationStatus.COMPLETED: ("✅", Colors.GREEN),
    GenerationStatus.FAILED: ("❌", Colors.RED),
    GenerationStatus.CANCELLED: ("⏹️", Colors.YELLOW),
}


def colored(text: str, color: str) -> str:
    """Apply color to text."""
    return f"{color}{text}{Colors.RESET}"


def progress_bar(percent: float, width: int = 30) -> str:
    """Create a visual progress bar."""
    percent = max(0.0, min(100.0, percent))
    filled = int(percent / 100 * width)
    bar = "█" * filled + "░" * (width - filled)

    # Color based on progress
    if percent >= 100:
        color = Colors.GREEN
    elif percent >= 50:
        color = Colors.CYAN
    elif percent >= 25:
        color = Colors.YELLOW
    else:
        color = Colors.WHITE

    return colored(f"[{bar}]", color) + f" {percent:5.1f}%"


def format_duration(seconds: float) -> str:
    """Format duration as HH:MM:SS or MM:SS."""
    if seconds < 0:
        return "--:--"

    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_timestamp(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_progress(record: GenerationRecord, now_ms: Optional[int] = None) -> str:
    """Single in-place line for an active generation."""
    icon, color = STATUS_STYLE[record.status]
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)

    elapsed = (now_ms - record.created_at) / 1000
    time_info = format_duration(elapsed)
    if record.estimated_time:
        time_info += f" / ~{format_duration(record.estimated_time)}"

    return (
        f"{Colors.CLEAR_LINE}"
        f"{icon} {colored(record.status.value.ljust(10), color)} "
        f"{progress_bar(record.progress)} "
        f"{colored(time_info, Colors.DIM)}"
    )


def format_summary(record: GenerationRecord) -> str:
    """Multi-line summary for a finished generation."""
    icon, color = STATUS_STYLE[record.status]
    lines = [f"{icon} {colored(record.status.value.upper(), color + Colors.BOLD)}  {record.id}"]

    if record.video_url:
        lines.append(colored(f"    → {record.video_url}", Colors.DIM))
    if record.thumbnail_url:
        lines.append(colored(f"    → {record.thumbnail_url}", Colors.DIM))
    if record.error:
        lines.append(colored(f"    Error: {record.error}", Colors.RED))
    if record.execution_time is not None:
        lines.append(colored(f"    Execution: {format_duration(record.execution_time / 1000)}", Colors.DIM))

    return "\n".join(lines)


def format_history_row(record: GenerationRecord) -> str:
    icon, color = STATUS_STYLE[record.status]
    prompt = record.prompt or colored("(image only)", Colors.DIM)
    if len(prompt) > 50:
        prompt = prompt[:47] + "..."
    return (
        f"{icon} {colored(record.status.value.ljust(10), color)} "
        f"{colored(format_timestamp(record.created_at), Colors.DIM)}  "
        f"{record.id}  {prompt}"
    )


class ProgressMonitor:
    """Prints session updates; progress redraws in place until the job ends."""

    def header(self, record: GenerationRecord) -> None:
        print(colored("╔═══════════════════════════════════════════╗", Colors.CYAN))
        print(colored("║  Wan Video Generator                      ║", Colors.CYAN))
        print(colored("╚═══════════════════════════════════════════╝", Colors.CYAN))
        print(f"Job:    {colored(record.id, Colors.BOLD)}")
        if record.prompt:
            print(f"Prompt: {colored(record.prompt[:60], Colors.DIM)}")
        print(colored("─" * 45, Colors.DIM))

    def update(self, record: GenerationRecord) -> None:
        if record.is_terminal:
            print()  # Clear progress line
            print(format_summary(record))
            return

        print(format_progress(record), end="", flush=True)
