#!/usr/bin/env python3
"""
Startup script for the Activity Duel Recommender

Validates the settings and serves the API with uvicorn.
"""

import logging
import sys
from pathlib import Path

import uvicorn

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from config.settings import get_settings, validate_settings

logger = logging.getLogger(__name__)


def main():
    """Start the FastAPI server."""
    settings = get_settings()
    try:
        validate_settings(settings)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    print(f"Serving on {settings.api_host}:{settings.api_port} (catalog: {settings.catalog_base_url})")
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
