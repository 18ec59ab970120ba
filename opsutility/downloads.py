import logging
import tempfile
from pathlib import Path
from typing import Optional

import requests

from .config import HTTP_TIMEOUT_SECONDS
from .errors import FatalError

logger = logging.getLogger(__name__)


def download_file(url: str, dest_dir: Optional[Path] = None, file_name: Optional[str] = None) -> Path:
    """Streams url into dest_dir (the temp directory by default) and returns the saved path."""
    dest_dir = Path(dest_dir or tempfile.gettempdir())
    target = dest_dir / (file_name or url.rsplit("/", 1)[-1])
    logger.info(f"Downloading {url}")
    try:
        with requests.get(url, stream=True, timeout=HTTP_TIMEOUT_SECONDS) as response:
            response.raise_for_status()
            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=1024 * 256):
                    f.write(chunk)
    except requests.exceptions.RequestException as e:
        if target.exists():
            target.unlink()
        raise FatalError(f"Download of {url} failed: {e}")
    logger.info(f"Saved {target} ({target.stat().st_size} bytes)")
    return target
