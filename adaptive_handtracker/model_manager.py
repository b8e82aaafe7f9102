"""
Hand landmarker model cache for the MediaPipe Tasks API.

Only used when MediaPipe no longer ships the Solutions API (Python 3.13+).
The model is fetched once into the cache directory and reused afterwards.
"""

import os
import sys
import time
import urllib.request
from pathlib import Path

from .logger import get_logger

logger = get_logger("ModelManager")

HAND_LANDMARKER_URL = "https://storage.googleapis.com/mediapipe-models/hand_landmarker/hand_landmarker/float16/latest/hand_landmarker.task"
HAND_LANDMARKER_FILENAME = "hand_landmarker.task"

DOWNLOAD_TIMEOUT_S = 120
DOWNLOAD_CHUNK_SIZE = 64 * 1024
DOWNLOAD_ATTEMPTS = 3
RETRY_DELAY_S = 2.0


def get_model_cache_dir() -> Path:
    """Return the model cache directory, creating it if needed."""
    override = os.environ.get("ADAPTIVE_HANDTRACKER_MODEL_DIR")
    if override:
        cache_dir = Path(override)
    elif sys.platform == "win32":
        cache_dir = Path(os.environ.get("LOCALAPPDATA", Path.home())) / "adaptive_handtracker" / "models"
    else:
        cache_dir = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache")) / "adaptive_handtracker" / "models"

    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def ensure_hand_landmarker_model() -> str:
    """
    Return the path of the cached hand landmarker model, downloading it first
    if it isn't there.

    Raises:
        RuntimeError: If every download attempt failed.
    """
    model_path = get_model_cache_dir() / HAND_LANDMARKER_FILENAME
    if model_path.exists():
        logger.debug(f"Using cached model: {model_path}")
        return str(model_path)

    logger.info(f"Downloading hand landmarker model to {model_path}")
    last_error = None
    for attempt in range(1, DOWNLOAD_ATTEMPTS + 1):
        try:
            _download(HAND_LANDMARKER_URL, model_path)
            logger.info("Model download complete")
            return str(model_path)
        except OSError as e:
            last_error = e
            logger.warning(f"Download attempt {attempt}/{DOWNLOAD_ATTEMPTS} failed: {e}")
            if attempt < DOWNLOAD_ATTEMPTS:
                time.sleep(RETRY_DELAY_S * attempt)

    raise RuntimeError(
        f"Failed to download the hand landmarker model after {DOWNLOAD_ATTEMPTS} attempts"
    ) from last_error


def _download(url: str, dest_path: Path) -> None:
    """Stream url into dest_path through a temporary file."""
    temp_path = dest_path.with_suffix(".part")
    request = urllib.request.Request(url, headers={"User-Agent": "AdaptiveHandtracker/1.0"})
    try:
        with urllib.request.urlopen(request, timeout=DOWNLOAD_TIMEOUT_S) as response, \
                open(temp_path, "wb") as f:
            total = int(response.headers.get("Content-Length", 0))
            done = 0
            next_report = 25
            while chunk := response.read(DOWNLOAD_CHUNK_SIZE):
                f.write(chunk)
                done += len(chunk)
                if total and done * 100 >= next_report * total:
                    logger.info(f"Download progress: {done * 100 // total}%")
                    next_report += 25
        temp_path.replace(dest_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
