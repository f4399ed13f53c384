# stack_engine/observers/base.py

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError

from stack_engine.observers.models import ObserverConfig, ObserverResult, ObserverType

logger = logging.getLogger(__name__)


class BaseObserver(ABC):
    """
    Reads one value from an external system and maps it to a result.

    ``check`` never raises: I/O errors and timeouts become failed results.
    """

    type: ObserverType

    def __init__(self, config: ObserverConfig):
        self.config = config

    def check(self) -> ObserverResult:
        logger.debug(f"Performing maintenance check ({self.config.type.value})")

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="observer-read")
        try:
            future = pool.submit(self.read_value)
            observed = future.result(timeout=self.config.timeout)
        except FutureTimeoutError:
            logger.warning(f"Maintenance check timed out after {self.config.timeout:g}s ({self.config.type.value})")
            return ObserverResult.failed(f"Check timed out after {self.config.timeout:g}s")
        except Exception as e:
            logger.warning(f"Maintenance check failed ({self.config.type.value}): {e}")
            return ObserverResult.failed(str(e))
        finally:
            # A hung read keeps its worker; do not block the poll loop on it.
            pool.shutdown(wait=False)

        result = self.determine_result(observed)
        logger.debug(
            f"Maintenance check completed: {result} "
            f"(maintenance value: {self.config.maintenance_value})"
        )
        return result

    @abstractmethod
    def read_value(self) -> str:
        """Fetch the raw observed value. May raise."""
        raise NotImplementedError

    def determine_result(self, observed: str) -> ObserverResult:
        observed = "" if observed is None else str(observed)

        if observed.lower() == self.config.maintenance_value.lower():
            return ObserverResult.maintenance(observed)

        if self.config.normal_value:
            if observed.lower() == self.config.normal_value.lower():
                return ObserverResult.normal(observed)

            logger.warning(
                f"Observed value '{observed}' matches neither maintenance value "
                f"'{self.config.maintenance_value}' nor normal value '{self.config.normal_value}'"
            )
            return ObserverResult.failed(f"Unexpected value: {observed}")

        return ObserverResult.normal(observed)
