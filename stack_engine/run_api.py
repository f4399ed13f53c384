# stack_engine/run_api.py
"""Run the control plane API (observers run in-process)."""

import logging

import uvicorn

from stack_engine.api.main import app
from stack_engine.container import observer_service, settings

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    logger.info("🚀 Starting Stack Engine API...")
    logger.info(f"📍 Listening on {settings.api_host}:{settings.api_port}")

    observer_service.start_all()
    try:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.log_level.lower(),
        )
    finally:
        observer_service.stop_all()


if __name__ == "__main__":
    main()
