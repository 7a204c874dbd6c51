from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.task import ProgressEvent

"""Progress display with tqdm (TTY only).

- Single tqdm instance per run, disabled in non-TTY environments (CI, pipes)
- Settlement runs drive a percent bar from the task channel's progress events
- File loading shows a per-file bar
"""

__all__ = [
    "ProgressTracker",
    "PercentProgressBar",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


def _make_bar(total: int, description: str, unit: str) -> TqdmType[Any]:
    return tqdm(
        total=total,
        desc=description,
        unit=unit,
        disable=False,
        leave=True,
        position=0,
        ncols=80,
        ascii=True,
    )


class ProgressTracker:
    """Per-file progress while input workbooks are read."""

    def __init__(self, total_files: int, *, description: str = "Reading files") -> None:
        """Initialize progress tracker.

        Args:
            total_files: Total number of files to read
            description: Description for the progress bar
        """
        self.total_files = total_files
        self.description = description
        self.current_file = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None = _make_bar(total_files, description, "file") if self.enabled else None

    def start_file(self, name: str) -> None:
        """Start reading a file.

        Args:
            name: File name shown next to the description
        """
        self.current_file += 1
        if self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({name})")

    def finish_file(self) -> None:
        """Advance the bar by one file and reset its description."""
        if self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_description(self.description)

    def close(self) -> None:
        """Close the progress bar."""
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class PercentProgressBar:
    """0-100 bar fed by ``ProgressEvent``s.

    Usable directly as a task listener: ``task.on_progress(bar)``. Percent
    only moves forward; a lower percent than the last one shown is ignored.
    """

    def __init__(self, *, description: str = "Settling") -> None:
        """Initialize the percent bar.

        Args:
            description: Description for the progress bar
        """
        self.description = description
        self.percent = 0
        self.message = ""
        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None = _make_bar(100, description, "%") if self.enabled else None

    def __call__(self, event: ProgressEvent) -> None:
        """Task listener entry point.

        Args:
            event: Progress event dispatched by the task channel
        """
        self.update(event.percent, event.message)

    def update(self, percent: int, message: str = "") -> None:
        """Move the bar to ``percent``.

        Args:
            percent: New percentage, clamped to 0-100; ignored when not above
                the last percent shown
            message: Status text shown as the bar postfix
        """
        percent = max(0, min(100, int(percent)))
        step = percent - self.percent
        self.message = message
        if step <= 0:
            return
        self.percent = percent
        if self.pbar is not None:
            self.pbar.update(step)
            if message:
                self.pbar.set_postfix_str(message)

    def close(self) -> None:
        """Close the progress bar."""
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> PercentProgressBar:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
