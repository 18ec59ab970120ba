import logging
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import LOG_DIR, LOG_LEVEL, LOG_RETENTION_DAYS

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(command: str, per_run: bool = False, log_dir: Optional[Path] = None) -> Path:
    """Send log lines to the console and to a text file under the log directory.

    per_run=True gives every invocation its own timestamped file; otherwise a
    single persistent <command>.log is appended to.
    """
    log_dir = Path(log_dir or LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    if per_run:
        log_file = log_dir / f"{command}-{datetime.now().strftime('%Y%m%d-%H%M%S')}.log"
    else:
        log_file = log_dir / f"{command}.log"

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler()
        ],
        force=True
    )
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    return log_file


def prune_old_logs(command: str, log_dir: Optional[Path] = None, max_age_days: int = LOG_RETENTION_DAYS,
                   now: Optional[float] = None) -> List[Path]:
    """Delete the per-run <command>-*.log files older than max_age_days.

    Persistent <command>.log files of other commands share the directory and
    are never touched. Returns the removed paths.
    """
    log_dir = Path(log_dir or LOG_DIR)
    if not log_dir.is_dir():
        return []

    cutoff = (now if now is not None else time.time()) - max_age_days * 86400
    removed = []
    for path in sorted(log_dir.glob(f"{command}-*.log")):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path)
        except OSError as e:
            logger.warning(f"Could not remove old log {path}: {e}")

    if removed:
        logger.info(f"Removed {len(removed)} log file(s) older than {max_age_days} days")
    return removed
