import logging
import os
import re
from pathlib import Path

from .config import (
    CLOUD_CLIENT_DIR, CLOUD_CLIENT_INSTALLER_URL, CLOUD_MOUNT_POINT, CLOUD_REMOTE_PATH,
    FUSE_DRIVER_INSTALLER_URL,
)
from .credentials import CredentialStore, obtain_credentials
from .downloads import download_file
from .errors import CredentialError, FatalError, Outcome, ReadinessTimeout
from .runner import is_admin, process_running, run_tool, start_detached, wait_until

# clouddrive.py - Install the cloud client and FUSE driver, log in and mount the cloud drive

logger = logging.getLogger(__name__)

SERVER_EXE = "MEGAcmdServer.exe"
LOGIN_FAILURE_MARKERS = ("not logged in", "not logged", "error")
LOGIN_SUCCESS_MARKER = "Account e-mail:"
ENABLED_PATTERN = re.compile(r"\bEnabled:\s*(\S+)")


def client_command(name: str) -> Path:
    return CLOUD_CLIENT_DIR / f"{name}.bat"


def server_path() -> Path:
    return CLOUD_CLIENT_DIR / SERVER_EXE


def add_client_to_path():
    client_dir = str(CLOUD_CLIENT_DIR)
    entries = os.environ.get("PATH", "").split(os.pathsep)
    if client_dir not in entries:
        os.environ["PATH"] = os.pathsep.join([client_dir] + [e for e in entries if e])
        logger.info(f"Added {client_dir} to PATH for this session")


def ensure_installed(dest_dir=None) -> bool:
    """
    Installs the FUSE driver and the cloud client when the client is missing.
    Installing requires an elevated prompt. Returns True when something was installed.
    """
    if server_path().exists():
        logger.info(f"Cloud client found in {CLOUD_CLIENT_DIR}")
        add_client_to_path()
        return False

    if not is_admin():
        raise FatalError("The cloud client is not installed; re-run from an elevated prompt to install it")

    driver = download_file(FUSE_DRIVER_INSTALLER_URL, dest_dir)
    try:
        run_tool(["msiexec", "/i", driver, "/qn", "/norestart"], check=True)
        logger.info("FUSE driver installed")
    finally:
        driver.unlink(missing_ok=True)

    client = download_file(CLOUD_CLIENT_INSTALLER_URL, dest_dir)
    try:
        run_tool([client, "/S"], check=True)
    finally:
        client.unlink(missing_ok=True)

    wait_until(server_path().exists, f"{SERVER_EXE} to appear in {CLOUD_CLIENT_DIR}")
    logger.info("Cloud client installed")
    add_client_to_path()
    return True


def classify_login(text: str) -> Outcome:
    """
    Classifies "who am I" output. Failure keywords win over the success marker;
    output with neither is UNKNOWN.
    """
    lowered = text.lower()
    if any(marker in lowered for marker in LOGIN_FAILURE_MARKERS):
        return Outcome.FAILURE
    if LOGIN_SUCCESS_MARKER.lower() in lowered:
        return Outcome.SUCCESS
    return Outcome.UNKNOWN


def login_state() -> Outcome:
    result = run_tool([client_command("mega-whoami")])
    if result.outcome == Outcome.UNKNOWN and result.returncode is None:
        return Outcome.UNKNOWN
    return classify_login(result.stdout + "\n" + result.stderr)


def login(store: CredentialStore) -> bool:
    """
    Logs in with the stored credential unless already logged in.
    A credential that is rejected, or that does not result in a logged-in
    session, is removed from the store and CredentialError is raised. When the
    client could not be run at all the credential is kept and FatalError is
    raised. Returns True when a login was performed.
    """
    state = login_state()
    if state == Outcome.SUCCESS:
        logger.info("Already logged in.")
        return False
    logger.info(f"Login state is {state.value}; logging in.")

    with store.unlocked() as secret:
        result = run_tool([client_command("mega-login"), secret.username, secret.password], sensitive=True)
        username = secret.username

    if result.outcome == Outcome.UNKNOWN:
        raise FatalError(f"Could not run the login command: {result.summary()}")

    if result.ok:
        try:
            wait_until(lambda: login_state() == Outcome.SUCCESS, "login to complete", timeout=60)
            logger.info(f"Logged in as {username}")
            return True
        except ReadinessTimeout as e:
            if login_state() != Outcome.FAILURE:
                raise FatalError(f"Login state of {username} could not be confirmed: {e}")

    store.forget()
    detail = (result.stderr or result.stdout).strip()
    raise CredentialError(f"Login as {username} failed: {detail or result.outcome.value}")


def start_server():
    if process_running(SERVER_EXE):
        logger.info(f"{SERVER_EXE} is already running.")
        return False
    start_detached([server_path()])
    wait_until(lambda: process_running(SERVER_EXE), f"{SERVER_EXE} to start", timeout=30)
    return True


def mount_enabled(text: str) -> bool:
    """True iff some line reads 'Enabled:' followed by the token YES."""
    for line in text.splitlines():
        match = ENABLED_PATTERN.search(line)
        if match and match.group(1) == "YES":
            return True
    return False


def show_mount():
    return run_tool([client_command("mega-fuse-show"), CLOUD_MOUNT_POINT])


def mount(remote_path: str = CLOUD_REMOTE_PATH, mount_point: str = CLOUD_MOUNT_POINT):
    existing = run_tool([client_command("mega-fuse-show"), mount_point])
    if existing.ok:
        logger.info(f"Mount {mount_point} already configured")
    else:
        run_tool([client_command("mega-fuse-add"), mount_point, remote_path], check=True)
        logger.info(f"Added mount {mount_point} -> {remote_path}")
    enable = run_tool([client_command("mega-fuse-enable"), mount_point])
    if not enable.ok:
        logger.warning(f"Enable of {mount_point} returned {enable.outcome.value}: {enable.stdout.strip()}")


def verify_mount(timeout: float = 60) -> bool:
    try:
        wait_until(lambda: mount_enabled(show_mount().stdout), f"mount {CLOUD_MOUNT_POINT} to be enabled",
                   timeout=timeout)
    except ReadinessTimeout as e:
        raise FatalError(f"Mount verification failed: {e}")
    logger.info(f"Cloud drive mounted at {CLOUD_MOUNT_POINT}")
    return True


def install_and_mount(interactive: bool = True, store: CredentialStore = None) -> bool:
    store = store or CredentialStore()
    ensure_installed()
    obtain_credentials(store, interactive=interactive)
    login(store)
    start_server()
    mount()
    return verify_mount()
