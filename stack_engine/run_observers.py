# stack_engine/run_observers.py
"""Run maintenance observers for every running deployment."""

import logging
import signal
import sys
import time

from stack_engine.container import observer_service, settings

# Setup logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def signal_handler(sig, frame):
    """Handle Ctrl+C gracefully."""
    logger.info("🛑 Shutting down maintenance observers...")
    observer_service.stop_all()
    sys.exit(0)


def main():
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("=" * 80)
    logger.info("🚀 MAINTENANCE OBSERVERS")
    logger.info("=" * 80)
    logger.info(f"Repository: {settings.repository_backend}")
    logger.info(f"Runtime: {settings.runtime_backend}")
    logger.info(f"Escalation after {settings.observer_failure_threshold} consecutive failures")
    logger.info("Press Ctrl+C to stop")
    logger.info("=" * 80)

    if settings.repository_backend == "memory":
        logger.warning("⚠️ In-memory repository: no deployments survive across processes")

    observer_service.start_all()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("🛑 Shutting down maintenance observers...")
        observer_service.stop_all()


if __name__ == "__main__":
    main()
