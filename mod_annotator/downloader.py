"""Download manager with progress tracking."""

from pathlib import Path
from typing import Callable

import requests
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)


class DownloadError(Exception):
    """Raised when a download fails."""

    pass


class Downloader:
    """Streams release assets to disk and checks they arrived whole."""

    def __init__(self, session: requests.Session | None = None):
        self.session = session or requests.Session()

    def download(
        self,
        url: str,
        target_dir: Path,
        filename: str,
        progress: Progress | None = None,
        task_id: TaskID | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> Path:
        """
        Download a file into target_dir.

        The body is written to a temporary name first and only renamed to
        filename once the byte count matches Content-Length.

        Returns path to the downloaded file.
        """
        target_dir.mkdir(parents=True, exist_ok=True)
        temp_path = target_dir / f".downloading_{filename}"

        try:
            response = self.session.get(url, stream=True, allow_redirects=True)
            response.raise_for_status()

            total_size = int(response.headers.get("content-length", 0))
            if total_size < 1:
                raise DownloadError(f"No content length for {filename} ({response.status_code})")

            if progress and task_id is not None:
                progress.update(task_id, total=total_size)

            bytes_downloaded = 0
            with open(temp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
                        bytes_downloaded += len(chunk)
                        if progress and task_id is not None:
                            progress.update(task_id, advance=len(chunk))
                        if on_progress:
                            on_progress(bytes_downloaded, total_size)

            if bytes_downloaded != total_size:
                raise DownloadError(
                    f"Wrote {bytes_downloaded} bytes for {filename}, expected {total_size}"
                )

            final_path = target_dir / filename
            temp_path.rename(final_path)
            return final_path

        except (requests.RequestException, OSError, DownloadError) as e:
            # Clean up temp file on error
            if temp_path.exists():
                temp_path.unlink()
            if isinstance(e, DownloadError):
                raise
            raise DownloadError(f"Failed to download {filename}: {e}")


def create_download_progress() -> Progress:
    """Create a progress bar for downloads."""
    return Progress(
        TextColumn("[bold blue]{task.fields[filename]}", justify="right"),
        BarColumn(bar_width=30),
        "[progress.percentage]{task.percentage:>3.0f}%",
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
    )
