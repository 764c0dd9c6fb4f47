#!/usr/bin/env python3
"""
Entry point for the HL7 Viewer service.

For local development: serves the API at http://HOST:PORT/BASE_PATH/.
"""

import sys

from hl7_viewer import create_app
from hl7_viewer.config import ConfigError, load_config, load_dotenv_if_exists
from hl7_viewer.core.logging import get_logger

# Load environment variables from .env file
load_dotenv_if_exists()

logger = get_logger(__name__)


def main():
    """Main entry point for the application."""
    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    app = create_app(config)
    debug = config.is_development and config.FLASK_DEBUG

    logger.info(f"HL7 Viewer running at http://{config.HOST}:{config.PORT}{config.BASE_PATH}/")

    app.run(debug=debug, host=config.HOST, port=config.PORT)


if __name__ == '__main__':
    main()
