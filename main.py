"""
Resell Queue - entry point

Photograph items, queue them, and get resale pricing back:
each queued item is identified from its photos by Claude, priced against
recent eBay sales, and kept in a SQLite-backed queue that survives restarts.

Run:
    python main.py
"""

import logging
import sys

import uvicorn

from config import HOST, LOG_LEVEL, PORT
from services.app_factory import create_app
from services.app_state import AppState
from services.exceptions import ConfigurationError

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    try:
        state = AppState.from_settings()
    except ConfigurationError as e:
        logger.error(f"[STARTUP] {e.message} - set it in .env")
        sys.exit(1)

    app = create_app(state)

    print("\n" + "=" * 60)
    print("Resell Queue")
    print("=" * 60)
    print(f"API: http://{HOST}:{PORT}")
    print(f"Queue: {state.driver.queue.counts()['total']} job(s) restored")
    print("=" * 60 + "\n")

    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        reload=False,
        workers=1,  # the queue driver must be the only one
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
