"""
Entry point for the mesh slicing service.

Running this script with ``python run.py`` will start the FastAPI
server that exposes the slicing kernel over HTTP.  The application
defined in ``backend/meshslice/main.py`` is imported after adjusting
the Python path to include the ``backend`` directory.
"""

from __future__ import annotations

import sys
from pathlib import Path

import logging
import uvicorn

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def main() -> None:
    """Run the Uvicorn server hosting the slicing service."""
    # Ensure ``backend`` is on sys.path so that ``meshslice`` can be
    # imported from a source checkout without installing it.
    backend_dir = Path(__file__).resolve().parent / "backend"
    if str(backend_dir) not in sys.path:
        sys.path.append(str(backend_dir))

    # Import inside main() to avoid modifying sys.path at module import time.
    from meshslice.main import app  # type: ignore

    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
