import logging
import re
import subprocess
import time
from datetime import datetime
from pathlib import PureWindowsPath
from typing import Dict, List

from .config import (
    CAST_ACTIVE_INTERFACE, CAST_APP_PATH, CAST_BROWSE_SECONDS, CAST_INSTANCE_NAME, CAST_LOOP_SECONDS,
    CAST_SERVICE_TYPE, DNSSD_EXE,
)
from .errors import FatalError, RecoverableError
from .models import DiscoveryRecord
from .runner import CREATE_NO_WINDOW, process_running, start_detached

# castkeeper.py - Keep the casting helper alive while its receiver is not on the active interface

logger = logging.getLogger(__name__)

# Timestamp  A/R  Flags  if  Domain  Service-Type  Instance-Name
RECORD_PATTERN = re.compile(
    r"^\s*(\d{1,2}:\d{2}:\d{2}\.\d{3})\s+(Add|Rmv)\s+(\d+)\s+(\d+)\s+(\S+)\s+(\S+)\s+(\S.*?)\s*$"
)
TIMESTAMP_PATTERN = re.compile(r"^\s*\d{1,2}:\d{2}:\d{2}\.\d{3}\b")


def parse_record(line: str, line_no: int = 0) -> DiscoveryRecord:
    match = RECORD_PATTERN.match(line)
    if not match:
        raise RecoverableError(f"Unrecognised discovery line {line_no}: {line.strip()!r}")
    timestamp, action, flags, interface, domain, service_type, instance_name = match.groups()
    return DiscoveryRecord(
        timestamp=timestamp,
        action=action,
        flags=int(flags),
        interface=int(interface),
        domain=domain,
        service_type=service_type,
        instance_name=instance_name,
        line_no=line_no,
    )


def parse_browse_output(text: str) -> List[DiscoveryRecord]:
    """
    Extracts discovery records from dns-sd -B output.
    Banner and header lines are skipped; lines that start with a timestamp but
    do not have the seven record fields are dropped and logged at debug level.
    """
    records = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        if not TIMESTAMP_PATTERN.match(line):
            continue
        try:
            records.append(parse_record(line, line_no))
        except RecoverableError as e:
            logger.debug(str(e))
    return records


def _sort_key(record: DiscoveryRecord):
    return datetime.strptime(record.timestamp.strip(), "%H:%M:%S.%f").time(), record.line_no


def latest_per_instance(records: List[DiscoveryRecord]) -> Dict[str, DiscoveryRecord]:
    """Keeps only the newest record for every instance name."""
    latest: Dict[str, DiscoveryRecord] = {}
    for record in records:
        current = latest.get(record.instance_name)
        if current is None or _sort_key(record) >= _sort_key(current):
            latest[record.instance_name] = record
    return latest


def is_active(latest: Dict[str, DiscoveryRecord], instance_name: str = CAST_INSTANCE_NAME,
              active_interface: int = CAST_ACTIVE_INTERFACE) -> bool:
    record = latest.get(instance_name)
    return record is not None and record.interface == active_interface


def browse(service_type: str = CAST_SERVICE_TYPE, duration: float = CAST_BROWSE_SECONDS,
           sleep=time.sleep) -> str:
    """
    Runs dns-sd -B for a fixed listening window, then force-kills it and
    returns whatever it printed.
    """
    try:
        proc = subprocess.Popen(
            [DNSSD_EXE, "-B", service_type, "local"],
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True,
            creationflags=CREATE_NO_WINDOW
        )
    except FileNotFoundError as e:
        raise FatalError(f"{DNSSD_EXE} not found; is Bonjour installed? ({e})")

    sleep(duration)
    try:
        proc.kill()
    except OSError as e:
        logger.warning(f"Could not kill {DNSSD_EXE} (pid {proc.pid}): {e}")
    try:
        output, _ = proc.communicate(timeout=10)
    except subprocess.TimeoutExpired:
        logger.warning(f"{DNSSD_EXE} did not exit after kill; discarding its output")
        return ""
    return output or ""


def run_cycle(instance_name: str = CAST_INSTANCE_NAME, app_path: str = CAST_APP_PATH,
              loop_seconds: float = CAST_LOOP_SECONDS, sleep=time.sleep) -> dict:
    """
    One polling cycle. Returns {"active": bool, "launched": bool}.
    """
    latest = latest_per_instance(parse_browse_output(browse(sleep=sleep)))
    active = is_active(latest, instance_name)
    launched = False

    record = latest.get(instance_name)
    if record is None:
        logger.info(f"{instance_name} not seen in discovery output")
    else:
        logger.info(f"{instance_name} last seen at {record.timestamp} on interface {record.interface}")

    if active:
        logger.info(f"{instance_name} is active. Nothing to do.")
    else:
        app_name = PureWindowsPath(app_path).name
        if process_running(app_name):
            logger.info(f"{app_name} is already running.")
        else:
            logger.info(f"{instance_name} is not active. Launching {app_name}.")
            try:
                start_detached([app_path])
                launched = True
            except OSError as e:
                logger.warning(f"Could not launch {app_path}: {e}. Retrying next cycle.")

    refreshed = parse_browse_output(browse(sleep=sleep))
    logger.debug(f"Refresh listing returned {len(refreshed)} record(s)")
    sleep(loop_seconds)
    return {"active": active, "launched": launched}


def run_forever(once: bool = False, sleep=time.sleep):
    logger.info(f"Cast keeper started for {CAST_INSTANCE_NAME} ({CAST_SERVICE_TYPE}).")
    while True:
        if once:
            return run_cycle(loop_seconds=0, sleep=sleep)
        run_cycle(sleep=sleep)
