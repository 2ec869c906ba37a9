"""
Dataclass for tracking download session statistics.
"""

from dataclasses import dataclass, field


@dataclass
class DownloadStats:
    """Tracks the outcome of every file handled in a download session."""

    files_downloaded: int = 0
    files_present: int = 0
    files_failed: int = 0
    total_size_downloaded: int = 0
    images_wanted: int = 0
    failed_file_ids: list[int] = field(default_factory=list)
    # Failures of files that an explicitly requested target depends on
    required_failures: list[int] = field(default_factory=list)

    @property
    def files_total(self) -> int:
        return self.files_downloaded + self.files_present + self.files_failed

    @property
    def succeeded(self) -> bool:
        return not self.required_failures
