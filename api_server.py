#!/usr/bin/env python
"""
FastAPI server for the telehealth payments service
Receives PayChangu webhooks and exposes payment/subscription lookups
"""
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from telehealth_payments.app import create_app  # noqa: E402
from telehealth_payments.config import config  # noqa: E402

app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger = logging.getLogger(__name__)
    port = config.PORT

    logger.info("=" * 50)
    logger.info(f"Starting Telehealth Payments API server on port {port} (env={config.ENV})")
    logger.info(f"Health check endpoint: http://0.0.0.0:{port}/health")
    logger.info("=" * 50)

    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=port,
            log_config=None,  # keep our structured logging
            access_log=True,
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)
