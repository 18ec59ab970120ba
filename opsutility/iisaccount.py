import logging
import re
import secrets
import string
import tempfile
from pathlib import Path
from typing import List, Tuple

from .config import IIS_ACCOUNT_NAME, IIS_FEATURES, IIS_PROBE_FEATURE, IIS_SERVICE_NAME
from .errors import FatalError
from .runner import is_admin, run_tool, service_state, start_service, stop_service

# iisaccount.py - Provision a local account that IIS can run as

logger = logging.getLogger(__name__)

SERVICE_LOGON_RIGHT = "SeServiceLogonRight"
PRIVILEGE_SECTION = "[Privilege Rights]"
PASSWORD_SYMBOLS = "!@#$*-_=+?"
FEATURE_ENABLED_PATTERN = re.compile(r"^\s*State\s*:\s*Enabled\s*$", re.MULTILINE | re.IGNORECASE)


def generate_password(length: int = 24) -> str:
    """Random password with at least one upper, lower, digit and symbol character."""
    if length < 4:
        raise ValueError("Password length must be at least 4")
    classes = [string.ascii_uppercase, string.ascii_lowercase, string.digits, PASSWORD_SYMBOLS]
    chars = [secrets.choice(c) for c in classes]
    alphabet = "".join(classes)
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def user_exists(account: str) -> bool:
    return run_tool(["net", "user", account]).ok


def ensure_user(account: str, password: str) -> bool:
    if user_exists(account):
        logger.info(f"Local account {account} already exists.")
        return False
    run_tool(["net", "user", account, password, "/add", "/y"], check=True, sensitive=True)
    logger.info(f"Created local account {account}")
    return True


def reset_password(account: str, password: str):
    run_tool(["net", "user", account, password], check=True, sensitive=True)
    logger.info(f"Reset password of {account}")


def _holds_right(entries: List[str], account: str) -> bool:
    wanted = account.lower()
    for entry in entries:
        name = entry.strip().lower()
        if name == wanted or name.rsplit("\\", 1)[-1] == wanted:
            return True
    return False


def grant_service_logon(policy_text: str, account: str) -> Tuple[str, bool]:
    """
    Adds account to SeServiceLogonRight in exported security policy text.
    Returns (text, changed); text is returned untouched when the right is
    already granted.
    """
    newline = "\r\n" if "\r\n" in policy_text else "\n"
    lines = policy_text.splitlines()

    for i, line in enumerate(lines):
        key, sep, value = line.partition("=")
        if sep and key.strip() == SERVICE_LOGON_RIGHT:
            entries = [e for e in value.split(",") if e.strip()]
            if _holds_right(entries, account):
                return policy_text, False
            entries = [e.strip() for e in entries] + [account]
            lines[i] = f"{SERVICE_LOGON_RIGHT} = {','.join(entries)}"
            return newline.join(lines) + newline, True

    new_line = f"{SERVICE_LOGON_RIGHT} = {account}"
    for i, line in enumerate(lines):
        if line.strip().lower() == PRIVILEGE_SECTION.lower():
            lines.insert(i + 1, new_line)
            return newline.join(lines) + newline, True

    lines += [PRIVILEGE_SECTION, new_line]
    return newline.join(lines) + newline, True


def ensure_service_logon_right(account: str) -> bool:
    """Exports the local user-rights policy, grants the right and re-imports it when changed."""
    with tempfile.TemporaryDirectory() as workdir:
        cfg = Path(workdir) / "secpol.inf"
        db = Path(workdir) / "secpol.sdb"
        run_tool(["secedit", "/export", "/cfg", cfg, "/areas", "USER_RIGHTS"], check=True)

        policy = cfg.read_text(encoding="utf-16")
        updated, changed = grant_service_logon(policy, account)
        if not changed:
            logger.info(f"{account} already has the log on as a service right.")
            return False

        cfg.write_text(updated, encoding="utf-16")
        run_tool(["secedit", "/configure", "/db", db, "/cfg", cfg, "/areas", "USER_RIGHTS"], check=True)
    logger.info(f"Granted log on as a service to {account}")
    return True


def feature_enabled(feature: str) -> bool:
    result = run_tool(["dism", "/online", "/get-featureinfo", f"/featurename:{feature}"])
    return result.ok and bool(FEATURE_ENABLED_PATTERN.search(result.stdout))


def ensure_features(probe: str = IIS_PROBE_FEATURE, features: List[str] = None) -> List[str]:
    """
    Enables the feature list unless the probe feature is already enabled.
    Every feature is attempted; any failure is fatal once all have been tried.
    """
    features = list(features or IIS_FEATURES)
    if feature_enabled(probe):
        logger.info(f"{probe} is already enabled.")
        return []

    enabled, failed = [], []
    for feature in features:
        result = run_tool(["dism", "/online", "/enable-feature", f"/featurename:{feature}", "/all", "/norestart"])
        # 3010: success, restart required
        if result.ok or result.returncode == 3010:
            logger.info(f"Enabled {feature}")
            enabled.append(feature)
        else:
            logger.error(f"Enabling {feature} failed: {result.stdout.strip()}")
            failed.append(feature)

    if failed:
        raise FatalError(f"Could not enable feature(s): {', '.join(failed)}")
    return enabled


def ensure_service_running(service: str = IIS_SERVICE_NAME) -> bool:
    state = service_state(service)
    if state == "RUNNING":
        logger.info(f"{service} is running.")
        return False
    logger.info(f"{service} state is {state or 'unknown'}; starting it.")
    result = start_service(service)
    if not result.ok:
        raise FatalError(f"Could not start {service}: {result.stdout.strip() or result.outcome.value}")
    return True


def assign_service_account(service: str, account: str, password: str):
    stop_service(service)
    run_tool(["sc", "config", service, "obj=", f".\\{account}", "password=", password],
             check=True, sensitive=True)
    logger.info(f"{service} now runs as .\\{account}")
    start_service(service)


def provision(account: str = IIS_ACCOUNT_NAME, service: str = IIS_SERVICE_NAME,
              assign_account: bool = False) -> dict:
    if not is_admin():
        raise FatalError("Provisioning the IIS account requires an elevated prompt")

    password = generate_password()
    created = ensure_user(account, password)
    if assign_account and not created:
        reset_password(account, password)

    granted = ensure_service_logon_right(account)
    enabled = ensure_features()
    started = ensure_service_running(service)
    if assign_account:
        assign_service_account(service, account, password)

    return {"created": created, "granted": granted, "features_enabled": enabled, "started": started}
