import ctypes
import logging
import platform
import subprocess
import time
from typing import Callable, List, Optional, Sequence

import psutil
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_exponential

from .config import READY_POLL_SECONDS, READY_TIMEOUT_SECONDS
from .errors import FatalError, Outcome, ReadinessTimeout
from .models import ToolResult

# runner.py - The single boundary between the commands and external executables

logger = logging.getLogger(__name__)

CREATE_NO_WINDOW = subprocess.CREATE_NO_WINDOW if platform.system() == "Windows" else 0
DETACHED_PROCESS = subprocess.DETACHED_PROCESS if platform.system() == "Windows" else 0


def run_tool(args: Sequence, timeout: Optional[float] = None, check: bool = False,
             input_text: Optional[str] = None, sensitive: bool = False) -> ToolResult:
    """
    Runs an external tool to completion and returns a tagged ToolResult.
    A zero exit code is SUCCESS, any other exit code is FAILURE, and a tool
    that could not be started or did not finish in time is UNKNOWN.
    With check=True anything but SUCCESS raises FatalError.
    sensitive=True keeps every argument after the executable out of logs and
    out of the returned result.
    """
    args = [str(a) for a in args]
    shown = [args[0]] + ["***"] * (len(args) - 1) if sensitive else args
    logger.debug(f"Running: {' '.join(shown)}")
    try:
        completed = subprocess.run(
            args,
            capture_output=True, text=True, check=False, timeout=timeout, input=input_text,
            creationflags=CREATE_NO_WINDOW
        )
        result = ToolResult(
            args=shown,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            outcome=Outcome.SUCCESS if completed.returncode == 0 else Outcome.FAILURE,
        )
    except FileNotFoundError as e:
        logger.warning(f"Executable not found for {args[0]}: {e}")
        result = ToolResult(args=shown, stderr=str(e), outcome=Outcome.UNKNOWN)
    except subprocess.TimeoutExpired as e:
        logger.warning(f"{args[0]} did not finish within {timeout}s")
        result = ToolResult(args=shown, stdout=_text(e.stdout), stderr=_text(e.stderr), outcome=Outcome.UNKNOWN)

    if check and not result.ok:
        detail = (result.stderr or result.stdout).strip()
        raise FatalError(f"{result.summary()}: {detail}" if detail else result.summary())
    return result


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


def powershell(script: str, timeout: Optional[float] = None, check: bool = False) -> ToolResult:
    return run_tool(
        ["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
        timeout=timeout, check=check
    )


def start_detached(args: Sequence) -> subprocess.Popen:
    """Starts a process that outlives this command."""
    args = [str(a) for a in args]
    logger.info(f"Starting {' '.join(args)}")
    return subprocess.Popen(
        args,
        stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
        creationflags=DETACHED_PROCESS | CREATE_NO_WINDOW,
        close_fds=True
    )


def wait_until(predicate: Callable[[], bool], description: str,
               timeout: float = READY_TIMEOUT_SECONDS, interval: float = READY_POLL_SECONDS,
               sleep: Callable[[float], None] = time.sleep) -> bool:
    """
    Polls predicate until it returns a truthy value.
    Waits back off exponentially up to interval; gives up after timeout
    seconds with ReadinessTimeout.
    """
    retrying = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_exponential(multiplier=0.5, min=min(0.5, interval), max=interval),
        retry=retry_if_result(lambda ready: not ready),
        sleep=sleep,
    )
    try:
        return retrying(predicate)
    except RetryError:
        raise ReadinessTimeout(description, timeout)


def _matches(proc_name: Optional[str], wanted: str) -> bool:
    if not proc_name:
        return False
    proc_name = proc_name.lower()
    wanted = wanted.lower()
    if not wanted.endswith(".exe"):
        return proc_name in (wanted, wanted + ".exe")
    return proc_name == wanted


def find_processes(name: str) -> List[psutil.Process]:
    matches = []
    for proc in psutil.process_iter(["name"]):
        if _matches(proc.info.get("name"), name):
            matches.append(proc)
    return matches


def process_running(name: str) -> bool:
    return bool(find_processes(name))


def kill_processes(name: str) -> int:
    """
    Force-kills every process with the given image name.
    Failures are recoverable: they are logged and skipped.
    Returns the number of processes killed.
    """
    killed = 0
    for proc in find_processes(name):
        try:
            proc.kill()
            killed += 1
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.warning(f"Could not kill {name} (pid {proc.pid}): {e}")
    if killed:
        logger.info(f"Killed {killed} {name} process(es)")
    return killed


def is_admin() -> bool:
    if platform.system() != "Windows":
        return False
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except (AttributeError, OSError):
        return False


def service_state(service: str) -> Optional[str]:
    """Returns the sc.exe STATE token (RUNNING, STOPPED, ...) or None when unknown."""
    result = run_tool(["sc", "query", service])
    for line in result.stdout.splitlines():
        if "STATE" in line and ":" in line:
            parts = line.split(":", 1)[1].split()
            if len(parts) >= 2:
                return parts[1].upper()
    return None


def stop_service(service: str, timeout: float = READY_TIMEOUT_SECONDS) -> ToolResult:
    result = run_tool(["sc", "stop", service])
    if result.ok:
        wait_until(lambda: service_state(service) == "STOPPED", f"service {service} to stop", timeout=timeout)
    else:
        logger.warning(f"Stopping {service} returned {result.outcome.value}: {result.stdout.strip()}")
    return result


def start_service(service: str, timeout: float = READY_TIMEOUT_SECONDS) -> ToolResult:
    result = run_tool(["sc", "start", service])
    if result.ok:
        wait_until(lambda: service_state(service) == "RUNNING", f"service {service} to start", timeout=timeout)
    else:
        logger.warning(f"Starting {service} returned {result.outcome.value}: {result.stdout.strip()}")
    return result
