import json
import logging
import os
from pathlib import Path
from typing import Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import (
    GITHUB_API_URL, HTTP_TIMEOUT_SECONDS, UPDATER_INSTALLER_NAME, UPDATER_REPO, UPDATER_SERVICE,
    UPDATER_SILENT_FLAGS, UPDATER_STATE_FILE,
)
from .downloads import download_file
from .errors import FatalError
from .models import ReleaseInfo
from .runner import run_tool, start_service, stop_service

# updater.py - Keep the download manager on its latest released installer

logger = logging.getLogger(__name__)

INSTALL_TIMEOUT_SECONDS = 900


def build_download_url(tag: str, repo: str = UPDATER_REPO, installer_name: str = UPDATER_INSTALLER_NAME) -> str:
    """
    Builds the installer URL from a release tag using the fixed naming convention:
    https://github.com/<repo>/releases/download/<tag>/<installer_name>
    where {tag} and {version} (tag without a leading 'v') are substituted.
    """
    version = tag[1:] if tag.lower().startswith("v") else tag
    file_name = installer_name.format(tag=tag, version=version)
    return f"https://github.com/{repo}/releases/download/{tag}/{file_name}"


@retry(
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True
)
def _get_latest_release_json(repo: str) -> dict:
    response = requests.get(
        f"{GITHUB_API_URL}/repos/{repo}/releases/latest",
        headers={"Accept": "application/vnd.github+json"},
        timeout=HTTP_TIMEOUT_SECONDS
    )
    response.raise_for_status()
    return response.json()


def fetch_latest_release(repo: str = UPDATER_REPO) -> ReleaseInfo:
    try:
        release = _get_latest_release_json(repo)
    except requests.exceptions.RequestException as e:
        raise FatalError(f"Could not query latest release of {repo}: {e}")
    except ValueError as e:
        raise FatalError(f"Release API returned invalid JSON for {repo}: {e}")

    tag = release.get("tag_name")
    if not tag:
        raise FatalError(f"Release metadata for {repo} has no tag_name")
    return ReleaseInfo(tag=tag, download_url=build_download_url(tag, repo))


def load_installed_tag(state_file: Path = UPDATER_STATE_FILE) -> Optional[str]:
    if not os.path.exists(state_file):
        return None
    try:
        with open(state_file, "r") as f:
            return json.load(f).get("installed_tag")
    except json.JSONDecodeError:
        logger.warning(f"{state_file} is corrupted or empty. Starting fresh.")
        return None


def save_installed_tag(tag: str, state_file: Path = UPDATER_STATE_FILE):
    Path(state_file).parent.mkdir(parents=True, exist_ok=True)
    with open(state_file, "w") as f:
        json.dump({"installed_tag": tag}, f, indent=2)


def update(force: bool = False, repo: str = UPDATER_REPO, service: str = UPDATER_SERVICE,
           state_file: Path = UPDATER_STATE_FILE, dest_dir: Optional[Path] = None) -> bool:
    """
    Installs the latest release of the download manager.

    The service is stopped before the installer runs and is always started
    again afterwards, even when the installer fails, so a failed update never
    leaves it down. Returns True when the installer succeeded or nothing
    needed doing.
    """
    release = fetch_latest_release(repo)
    logger.info(f"Latest release of {repo}: {release.tag}")

    installed = load_installed_tag(state_file)
    if not force and installed == release.tag:
        logger.info(f"{release.tag} is already installed. Nothing to do.")
        return True

    installer = download_file(release.download_url, dest_dir)
    logger.warning("Installer signature and checksum are not verified.")
    try:
        try:
            stop_service(service)
            result = run_tool([installer, *UPDATER_SILENT_FLAGS], timeout=INSTALL_TIMEOUT_SECONDS)
        finally:
            start_service(service)
    finally:
        try:
            installer.unlink()
            logger.info(f"Removed {installer}")
        except OSError as e:
            logger.warning(f"Could not remove {installer}: {e}")

    if not result.ok:
        logger.error(f"Installer failed: {result.summary()}")
        return False

    save_installed_tag(release.tag, state_file)
    logger.info(f"Updated {service} to {release.tag}")
    return True
