"""
rogrouper.api.__main__ — Entry point for ``python -m rogrouper.api``
====================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings) for the listen port.
3. Hand the app to uvicorn; the app lifespan does the rest.
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("rogrouper")


def main() -> None:
    """Bootstrap and serve the Rogrouper API."""
    load_dotenv()

    from rogrouper.api.deps import get_config

    cfg = get_config()
    logger.info("Starting Rogrouper API on port %d…", cfg.dashboard_port)
    uvicorn.run("rogrouper.api.main:app", host="0.0.0.0", port=cfg.dashboard_port, log_config=None)


if __name__ == "__main__":
    main()
