"""
Release client — HTTPS access to the release-hosting API and its blobs.

Plain ``urllib.request`` with a ``User-Agent`` header and, when
``GITHUB_TOKEN`` is configured, a bearer token on API calls. Any
non-2xx status or transport error becomes ``ReleaseFetchFailed``.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request

from picolayer import __version__
from picolayer.core.config.settings import Settings
from picolayer.core.errors import ReleaseFetchFailed
from picolayer.core.models.release import Release

logger = logging.getLogger(__name__)

API_ACCEPT = "application/vnd.github+json"
BLOB_ACCEPT = "application/octet-stream"


def release_url(api: str, repo: str, version: str) -> str:
    """``<api>/repos/<repo>/releases/{latest|tags/<version>}``."""
    api = api.rstrip("/")
    if version == "latest":
        return f"{api}/repos/{repo}/releases/latest"
    return f"{api}/repos/{repo}/releases/tags/{version}"


class ReleaseClient:
    """Fetches release metadata and asset bytes."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings if settings is not None else Settings()

    def _headers(self, accept: str, *, with_token: bool) -> dict[str, str]:
        headers = {
            "Accept": accept,
            "User-Agent": f"{self.settings.user_agent}/{__version__}",
        }
        if with_token and self.settings.github_token:
            headers["Authorization"] = f"Bearer {self.settings.github_token}"
        return headers

    def get(self, url: str, *, accept: str = BLOB_ACCEPT, with_token: bool = False) -> bytes:
        """GET ``url`` and return the body.

        Raises:
            ReleaseFetchFailed: Non-2xx status or network error.
        """
        logger.debug("GET %s", url)
        req = urllib.request.Request(url, headers=self._headers(accept, with_token=with_token))
        try:
            with urllib.request.urlopen(req, timeout=self.settings.http_timeout) as resp:
                status = resp.status
                body = resp.read()
        except urllib.error.HTTPError as e:
            raise ReleaseFetchFailed(url, status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", None) or e
            raise ReleaseFetchFailed(url, reason=str(reason)) from e

        if not 200 <= status < 300:
            raise ReleaseFetchFailed(url, status=status)
        return body

    def fetch_release(self, repo: str, version: str = "latest") -> Release:
        """Release metadata for ``repo`` at ``version``."""
        url = release_url(self.settings.github_api, repo, version)
        body = self.get(url, accept=API_ACCEPT, with_token=True)
        try:
            release = Release.model_validate(json.loads(body))
        except ValueError as e:
            raise ReleaseFetchFailed(url, reason=f"malformed release metadata: {e}") from e
        logger.info("Release %s of %s has %d assets", release.tag_name, repo, len(release.assets))
        return release

    def download(self, url: str) -> bytes:
        """Asset or side-car bytes."""
        data = self.get(url)
        logger.debug("Downloaded %d bytes from %s", len(data), url)
        return data
