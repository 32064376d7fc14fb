"""
WhatsApp relay entry point.
Serves the webhook and forwards questions to the query API.
"""

import sys

import uvicorn
from loguru import logger

from relay.bot.server import create_app
from relay.log import setup_logging
from relay.settings import get_settings


def main() -> None:
    """Main entry point."""
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=settings.json_logs)

    try:
        settings.validate_for_serving()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    missing = settings.missing_required()
    if missing:
        logger.warning(f"Missing environment variables: {', '.join(missing)}")

    logger.info(f"Starting WhatsApp relay on port {settings.port}...")
    app = create_app(settings)
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
