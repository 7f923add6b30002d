# Use postponed evaluation of annotations so type hints don't require importing types at runtime.
from __future__ import annotations

# Allow running scripts without requiring an editable install (`pip install -e .`).
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
sys.path.insert(0, str(SRC_PATH))

import logging

# The installed console script `tanker-price` runs the same `main()`.
from tankerprice.cli import main


logger = logging.getLogger(__name__)


if __name__ == "__main__":
    # Ctrl+C is a normal way to stop the exporter; log it instead of printing a traceback.
    try:
        main(sys.argv[1:])
    except KeyboardInterrupt:
        logger.info("Stopped by user (KeyboardInterrupt).")
