"""Rich progress display for the ``fontingest ingest`` command.

Two tiers:

* **Batch level** -- files registered, uploaded and processed
* **Transfer level** -- bytes of the file currently uploading
"""

from __future__ import annotations

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)


class IngestProgressTracker:
    """Two-tier Rich progress tracker for a batch of font files.

    Usage::

        with IngestProgressTracker(total_files=12) as tracker:
            tracker.start_transfer("Inter-Regular.ttf", 310_000)
            tracker.transfer_advanced(262_144, 310_000)
            tracker.file_done("Inter-Regular.ttf", "Complete")
    """

    def __init__(self, total_files: int) -> None:
        self._total_files = total_files
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
        )
        self._batch_task: TaskID | None = None
        self._transfer_task: TaskID | None = None
        self._stats: dict[str, int] = {"done": 0, "failed": 0, "duplicates": 0}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()
        self._batch_task = self._progress.add_task(
            "[green]Fonts", total=self._total_files, status="starting..."
        )

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> IngestProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Transfer tracking
    # ------------------------------------------------------------------

    def start_transfer(self, filename: str, size: int) -> None:
        """Show a byte-level bar for *filename*, replacing the previous one."""
        if self._transfer_task is not None:
            self._progress.update(self._transfer_task, visible=False)
        self._transfer_task = self._progress.add_task(
            f"[blue]{_truncate_name(filename)}", total=size, status="bytes"
        )

    def transfer_advanced(self, offset: int, total: int) -> None:
        if self._transfer_task is not None:
            self._progress.update(self._transfer_task, completed=offset, total=total)

    # ------------------------------------------------------------------
    # File-level events
    # ------------------------------------------------------------------

    def file_done(self, filename: str, status: str) -> None:
        self._stats["done"] += 1
        self._advance(f"{_truncate_name(filename)}: {status}")

    def file_failed(self, filename: str, error: str) -> None:
        self._stats["failed"] += 1
        self._advance(f"[red]FAIL[/red] {_truncate_name(filename)}")

    def file_duplicate(self, filename: str) -> None:
        self._stats["duplicates"] += 1
        self._advance(f"[yellow]DUP[/yellow] {_truncate_name(filename)}")

    def _advance(self, status: str) -> None:
        if self._batch_task is not None:
            self._progress.advance(self._batch_task, 1)
            self._progress.update(self._batch_task, status=status)

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current statistics."""
        return dict(self._stats)


def _truncate_name(name: str, max_len: int = 40) -> str:
    """Truncate a file name for display, keeping its tail."""
    if len(name) <= max_len:
        return name
    return "..." + name[-(max_len - 3) :]
