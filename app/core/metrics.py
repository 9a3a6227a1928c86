import time
import uuid
import logging
from functools import wraps
from typing import Optional

from core.prometheus_metrics import prometheus_collector

logger = logging.getLogger(__name__)


def track_performance(service_name: Optional[str] = None):
    """
    Decorator to automatically track async service method performance

    Records a Prometheus sample and a structured log line per call. The
    wrapped coroutine's result and exceptions pass through untouched.

    Usage:
    @track_performance(service_name="AvailabilityResolver")
    async def find_available(self, pickup_date, return_date):
        ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            correlation_id = str(uuid.uuid4())

            actual_service_name = service_name or (args[0].__class__.__name__ if args else "Unknown")
            method_name = func.__name__

            start_time = time.perf_counter()
            success = False

            try:
                result = await func(*args, **kwargs)
                success = True
                return result

            except Exception as e:
                logger.error(f"Error in {actual_service_name}.{method_name}: {e}")
                raise

            finally:
                duration_seconds = time.perf_counter() - start_time

                prometheus_collector.record_service_call(
                    service_name=actual_service_name,
                    method_name=method_name,
                    duration_seconds=duration_seconds,
                    success=success,
                )

                logger.info(
                    f"Method executed: {actual_service_name}.{method_name}",
                    extra={
                        'correlation_id': correlation_id,
                        'service_name': actual_service_name,
                        'method_name': method_name,
                        'duration_ms': duration_seconds * 1000,
                        'success': success,
                    }
                )

        return wrapper
    return decorator
