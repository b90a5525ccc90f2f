"""Pickup API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for direct execution.

The app is created using the factory pattern from pharmapickup.api.create_app().
"""

import logging

from pharmapickup.api import create_app
from pharmapickup.core.settings import get_settings_safe

logger = logging.getLogger(__name__)

# Create the application instance for ASGI servers
# This is what uvicorn references: pharmapickup.api.main:app
app = create_app(get_settings_safe())


def run() -> None:
    """Run the API server using uvicorn.

    This function is called by the pharmapickup-api console script
    defined in pyproject.toml.
    """
    import uvicorn

    from pharmapickup.core.settings import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Starting pickup API on %s:%d", settings.api_host, settings.api_port)

    uvicorn.run(
        "pharmapickup.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    run()
