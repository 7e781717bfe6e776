"""Release API clients for mod update sources (GitHub, Modrinth)."""

import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import requests

from . import __version__

GITHUB_API_URL = "https://api.github.com"
MODRINTH_API_URL = "https://api.modrinth.com/v2"
USER_AGENT = f"mod-annotator/{__version__}"

GITHUB_PROJECT_PATTERN = re.compile(r"github\.com/([^/]+/[^/?#]+)")
MODRINTH_PROJECT_PATTERN = re.compile(r"modrinth\.com/(?:mod|plugin|project)/([^/?#]+)")


class ReleaseAPIError(Exception):
    """Base exception for release source errors."""

    def __init__(self, message: str, status: str = "400"):
        self.status = status
        super().__init__(message)


class ReleaseRateLimited(ReleaseAPIError):
    """Raised when a release source refuses further requests for now."""

    def __init__(self, reset_in: float | None = None, status: str = "403"):
        self.reset_in = reset_in
        if reset_in is None:
            message = "Rate limited."
        else:
            message = f"Rate limited. Resets in ~{reset_in:.0f}s."
        super().__init__(message, status)


@dataclass
class ReleaseAsset:
    name: str
    url: str
    size: int = 0


@dataclass
class ReleaseInfo:
    """The latest release of a mod at its source."""

    source_type: str
    version: str
    assets: list[ReleaseAsset] = field(default_factory=list)
    status: str = "200"


class GitHubAPI:
    """Client for GitHub release lookups."""

    def __init__(self, api_key: str | None = None):
        self.api_key = api_key
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
            }
        )
        if api_key:
            self.session.headers["Authorization"] = f"Bearer {api_key}"
        self._last_request_time = 0.0
        self._min_request_interval = 0.1
        self._request_lock = threading.Lock()

    def _rate_limit_wait(self) -> None:
        """Space out requests a little, across all checker threads."""
        with self._request_lock:
            elapsed = time.time() - self._last_request_time
            if elapsed < self._min_request_interval:
                time.sleep(self._min_request_interval - elapsed)
            self._last_request_time = time.time()

    def _handle_response(self, response: requests.Response) -> Any:
        """Handle API response and raise appropriate errors."""
        status = str(response.status_code)
        if response.status_code == 429 or (
            response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            reset = response.headers.get("x-ratelimit-reset")
            reset_in = max(0.0, int(reset) - time.time()) if reset and reset.isdigit() else None
            raise ReleaseRateLimited(reset_in, status)
        if response.status_code == 404:
            raise ReleaseAPIError(f"Resource not found: {response.url}", status)
        if not response.ok:
            raise ReleaseAPIError(f"Request failed with {status} | {response.reason} for {response.url}", status)
        if "application/json" not in response.headers.get("content-type", ""):
            raise ReleaseAPIError(f"Unexpected content type from {response.url}", status)
        try:
            return response.json()
        except ValueError as e:
            raise ReleaseAPIError(f"Malformed response from {response.url}: {e}", status)

    def get(self, path: str) -> Any:
        self._rate_limit_wait()
        return self._handle_response(self.session.get(f"{GITHUB_API_URL}{path}"))

    def get_latest_release(self, source_url: str) -> ReleaseInfo:
        """Latest release of the repository a GitHub URL points at."""
        match = GITHUB_PROJECT_PATTERN.search(source_url)
        if match is None:
            raise ReleaseAPIError(f"GitHub URL {source_url} is faulty, can't check.")
        project = match.group(1).removesuffix(".git")

        body = self.get(f"/repos/{project}/releases/latest")
        if not isinstance(body, dict) or not isinstance(body.get("tag_name"), str):
            raise ReleaseAPIError(f"Unexpected release response for {project}")

        assets = [
            ReleaseAsset(
                name=asset.get("name", ""),
                url=asset.get("browser_download_url") or asset.get("url", ""),
                size=asset.get("size") or 0,
            )
            for asset in body.get("assets", [])
            if isinstance(asset, dict)
        ]
        return ReleaseInfo(source_type="GitHub", version=body["tag_name"], assets=assets)

    def get_rate_limit(self) -> dict[str, Any]:
        """Core quota: used, remaining and reset (epoch seconds)."""
        data = self.get("/rate_limit")
        return data.get("resources", {}).get("core", {})


class ModrinthAPI:
    """Client for Modrinth project version lookups."""

    def __init__(self):
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def _handle_response(self, response: requests.Response) -> Any:
        status = str(response.status_code)
        if response.status_code == 429:
            reset = response.headers.get("X-Ratelimit-Reset", "")
            raise ReleaseRateLimited(float(reset) if reset.isdigit() else None, status)
        if response.status_code == 404:
            raise ReleaseAPIError(f"Resource not found: {response.url}", status)
        if not response.ok:
            raise ReleaseAPIError(f"Request failed with {status} | {response.reason} for {response.url}", status)
        try:
            return response.json()
        except ValueError as e:
            raise ReleaseAPIError(f"Malformed response from {response.url}: {e}", status)

    def get_latest_release(self, source_url: str) -> ReleaseInfo:
        """Newest published version of the project a Modrinth URL points at."""
        match = MODRINTH_PROJECT_PATTERN.search(source_url)
        if match is None:
            raise ReleaseAPIError(f"Modrinth URL {source_url} is faulty, can't check.")
        slug = match.group(1)

        versions = self._handle_response(
            self.session.get(f"{MODRINTH_API_URL}/project/{slug}/version")
        )
        if not isinstance(versions, list) or not versions:
            raise ReleaseAPIError(f"No versions published for {slug}", "404")

        # Newest first
        latest = versions[0]
        assets = [
            ReleaseAsset(name=f.get("filename", ""), url=f.get("url", ""), size=f.get("size") or 0)
            for f in latest.get("files", [])
            if isinstance(f, dict)
        ]
        return ReleaseInfo(source_type="Modrinth", version=latest.get("version_number", ""), assets=assets)
