import os
from pathlib import Path
from dotenv import load_dotenv

# config.py - Settings shared by the operator commands, overridable from .env

load_dotenv()


def _list(name, default):
    value = os.getenv(name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _default_log_dir():
    local_app_data = os.getenv("LOCALAPPDATA")
    if local_app_data:
        return Path(local_app_data) / "opsutility" / "logs"
    return Path.home() / ".opsutility" / "logs"


# Logging
LOG_DIR = Path(os.getenv("OPS_LOG_DIR", str(_default_log_dir())))
LOG_LEVEL = os.getenv("OPS_LOG_LEVEL", "INFO")
LOG_RETENTION_DAYS = int(os.getenv("OPS_LOG_RETENTION_DAYS", "14"))

# Readiness polling
READY_TIMEOUT_SECONDS = float(os.getenv("OPS_READY_TIMEOUT", "120"))
READY_POLL_SECONDS = float(os.getenv("OPS_READY_POLL", "5"))

# Podcast container refresh
DOCKER_EXE = os.getenv("DOCKER_EXE", "docker")
PODCAST_IMAGES = _list("PODCAST_IMAGES", [
    "ghcr.io/podcast-dl/podcast-dl:latest",
    "ghcr.io/podcast-dl/podcast-dl:ffmpeg",
    "ghcr.io/podcast-dl/podcast-dl:feeds",
])
PODCAST_CONFIG_PATH = os.getenv("PODCAST_CONFIG_PATH", r"C:\podcasts\config")
PODCAST_OUTPUT_PATH = os.getenv("PODCAST_OUTPUT_PATH", r"C:\podcasts\episodes")
PODCAST_LOG_LEVEL = os.getenv("PODCAST_LOG_LEVEL", "info")
PODCAST_TRANSCODE = os.getenv("PODCAST_TRANSCODE", "true").lower() == "true"
PODCAST_WRITE_FEED = os.getenv("PODCAST_WRITE_FEED", "true").lower() == "true"
PODCAST_EPISODE_CAP = int(os.getenv("PODCAST_EPISODE_CAP", "5"))
PODCAST_SHOW_URLS = _list("PODCAST_SHOW_URLS", [])
DOCKER_GUI_PROCESS = os.getenv("DOCKER_GUI_PROCESS", "Docker Desktop.exe")
GUI_KILL_DELAY = float(os.getenv("GUI_KILL_DELAY", "30"))

# Installer updater
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
UPDATER_REPO = os.getenv("UPDATER_REPO", "sabnzbd/sabnzbd")
UPDATER_INSTALLER_NAME = os.getenv("UPDATER_INSTALLER_NAME", "SABnzbd-{version}-win64-setup.exe")
UPDATER_SERVICE = os.getenv("UPDATER_SERVICE", "SABnzbd")
UPDATER_SILENT_FLAGS = _list("UPDATER_SILENT_FLAGS", ["/S"])
UPDATER_STATE_FILE = Path(os.getenv("UPDATER_STATE_FILE", str(LOG_DIR.parent / "updater_state.json")))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT", "30"))

# Cast keep-alive loop
DNSSD_EXE = os.getenv("DNSSD_EXE", "dns-sd")
CAST_SERVICE_TYPE = os.getenv("CAST_SERVICE_TYPE", "_googlecast._tcp")
CAST_INSTANCE_NAME = os.getenv("CAST_INSTANCE_NAME", "Living-Room-TV")
CAST_ACTIVE_INTERFACE = int(os.getenv("CAST_ACTIVE_INTERFACE", "24"))
CAST_APP_PATH = os.getenv("CAST_APP_PATH", r"C:\Program Files\CastHelper\CastHelper.exe")
CAST_BROWSE_SECONDS = float(os.getenv("CAST_BROWSE_SECONDS", "5"))
CAST_LOOP_SECONDS = float(os.getenv("CAST_LOOP_SECONDS", "60"))

# Cloud drive
CLOUD_CLIENT_DIR = Path(os.getenv(
    "CLOUD_CLIENT_DIR",
    str(Path(os.getenv("LOCALAPPDATA", str(Path.home()))) / "MEGAcmd"),
))
CLOUD_CLIENT_INSTALLER_URL = os.getenv("CLOUD_CLIENT_INSTALLER_URL", "https://mega.nz/MEGAcmdSetup64.exe")
FUSE_DRIVER_INSTALLER_URL = os.getenv(
    "FUSE_DRIVER_INSTALLER_URL",
    "https://github.com/winfsp/winfsp/releases/download/v2.0/winfsp-2.0.23075.msi",
)
CLOUD_REMOTE_PATH = os.getenv("CLOUD_REMOTE_PATH", "/")
CLOUD_MOUNT_POINT = os.getenv("CLOUD_MOUNT_POINT", "M:")
CREDENTIAL_SERVICE = os.getenv("CREDENTIAL_SERVICE", "opsutility-clouddrive")

# IIS service account
IIS_ACCOUNT_NAME = os.getenv("IIS_ACCOUNT_NAME", "svc_iis")
IIS_SERVICE_NAME = os.getenv("IIS_SERVICE_NAME", "W3SVC")
IIS_PROBE_FEATURE = os.getenv("IIS_PROBE_FEATURE", "IIS-WebServer")
IIS_FEATURES = _list("IIS_FEATURES", [
    "IIS-WebServerRole",
    "IIS-WebServer",
    "IIS-CommonHttpFeatures",
    "IIS-StaticContent",
    "IIS-DefaultDocument",
    "IIS-HttpErrors",
    "IIS-ApplicationDevelopment",
    "IIS-ASPNET45",
    "IIS-NetFxExtensibility45",
    "IIS-ISAPIExtensions",
    "IIS-ISAPIFilter",
    "IIS-ManagementConsole",
])
