"""Self-upgrade from the latest published release."""

from __future__ import annotations

import os
import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import requests

VERSION = "1.0.0"
DEFAULT_RELEASES_URL = "https://api.github.com/repos/edu-stats/edu-stats/releases/latest"
REQUEST_TIMEOUT = 60.0

_SYSTEMS = {"win32": "windows", "cygwin": "windows", "darwin": "darwin"}
_MACHINES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}


class UpgradeError(Exception):
    """Raised when checking for or installing an upgrade fails."""


@dataclass
class GitHubRelease:
    """A published release: its tag and its (name, download URL) assets."""

    tag_name: str
    assets: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> "GitHubRelease":
        """Build a release from the API's JSON object."""
        if not isinstance(data, dict):
            raise ValueError("release info must be a JSON object")
        tag_name = data.get("tag_name") or ""
        if not isinstance(tag_name, str):
            raise ValueError("tag_name must be a string")
        raw_assets = data.get("assets") or []
        if not isinstance(raw_assets, list):
            raise ValueError("assets must be an array")
        assets = []
        for asset in raw_assets:
            if not isinstance(asset, dict):
                raise ValueError("each asset must be a JSON object")
            name = asset.get("name") or ""
            url = asset.get("browser_download_url") or ""
            if not isinstance(name, str) or not isinstance(url, str):
                raise ValueError("asset name and download URL must be strings")
            assets.append((name, url))
        return cls(tag_name=tag_name, assets=assets)


def platform_tag() -> str:
    """Return the '<os>-<arch>' tag that release binaries are named by."""
    system = _SYSTEMS.get(sys.platform, sys.platform.rstrip("0123456789"))
    machine = platform.machine().lower()
    return f"{system}-{_MACHINES.get(machine, machine)}"


def fetch_latest_release(url: Optional[str] = None) -> GitHubRelease:
    """Fetch and decode the latest release description."""
    target = url or os.environ.get("EDU_STATS_RELEASES_URL", DEFAULT_RELEASES_URL)
    try:
        response = requests.get(target, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise UpgradeError(f"failed to check for updates: {exc}") from exc
    with response:
        if response.status_code != 200:
            raise UpgradeError(f"failed to check for updates: HTTP {response.status_code}")
        try:
            return GitHubRelease.from_json(response.json())
        except ValueError as exc:
            raise UpgradeError(f"failed to parse release info: {exc}") from exc


def select_asset_url(release: GitHubRelease, platform: str) -> str:
    """Return the download URL of the first asset built for the platform."""
    for name, url in release.assets:
        if platform in name:
            return url
    raise UpgradeError(f"no binary found for platform {platform}")


def run_upgrade(
    current_version: str = VERSION,
    target_path: Optional[Union[str, "os.PathLike[str]"]] = None,
) -> bool:
    """Replace the installed program with the latest release; return whether it changed."""
    print("Checking for updates...")
    release = fetch_latest_release()

    latest = release.tag_name.removeprefix("v")
    current = current_version.removeprefix("v")
    print(f"Current version: {current}")
    print(f"Latest version:  {latest}")

    if latest == current:
        print("✓ You are already on the latest version!")
        return False

    download_url = select_asset_url(release, platform_tag())
    print(f"\n📥 Downloading {download_url}...")

    try:
        response = requests.get(download_url, timeout=REQUEST_TIMEOUT, stream=True)
    except requests.RequestException as exc:
        raise UpgradeError(f"failed to download: {exc}") from exc

    target = Path(target_path) if target_path is not None else Path(sys.argv[0]).resolve()
    tmp_path = target.with_name(target.name + ".new")

    with response:
        if response.status_code != 200:
            raise UpgradeError(f"failed to download: HTTP {response.status_code}")
        try:
            handle = open(tmp_path, "wb")
        except OSError as exc:
            raise UpgradeError(f"failed to create temp file: {exc}") from exc
        try:
            with handle:
                for chunk in response.iter_content(chunk_size=65536):
                    handle.write(chunk)
        except (OSError, requests.RequestException) as exc:
            tmp_path.unlink(missing_ok=True)
            raise UpgradeError(f"failed to write binary: {exc}") from exc

    try:
        os.chmod(tmp_path, 0o755)
        os.replace(tmp_path, target)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise UpgradeError(f"failed to replace binary: {exc} (try running with sudo)") from exc

    print("✅ Successfully upgraded to version", latest)
    print("Run 'edu-stats version' to verify.")
    return True