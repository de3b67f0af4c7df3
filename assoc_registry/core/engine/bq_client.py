"""
BigQuery Client Service
Thread-safe BigQuery client with lazy initialization and retry logic.
"""

import threading
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

from google.api_core import exceptions as google_api_exceptions
from google.cloud import bigquery
from google.cloud.bigquery import QueryJobConfig
from tenacity import (
    retry as tenacity_retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from assoc_registry.app.config import settings
from assoc_registry.core.utils.logging import get_logger

logger = get_logger(__name__)

# ============================================
# Retry Policy Configuration
# ============================================

TRANSIENT_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    google_api_exceptions.ServiceUnavailable,   # 503
    google_api_exceptions.TooManyRequests,      # 429
    google_api_exceptions.InternalServerError,  # 500
)


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if an exception is transient (should be retried).

    Permanent errors (BadRequest, NotFound, ValueError, ...) are not retried.
    """
    return isinstance(exception, TRANSIENT_EXCEPTIONS)


TRANSIENT_RETRY_POLICY = retry_if_exception_type(TRANSIENT_EXCEPTIONS)


class BigQueryClient:
    """
    BigQuery client for the registry dataset.

    The underlying `bigquery.Client` is created on first use so importing
    this module never requires credentials.
    """

    def __init__(self, project_id: Optional[str] = None, location: Optional[str] = None):
        self.project_id = project_id or settings.gcp_project_id
        self.location = location or settings.bigquery_location
        self._client: Optional[bigquery.Client] = None
        self._client_lock = threading.Lock()

    @property
    def client(self) -> bigquery.Client:
        """Lazy-load the BigQuery client (double-checked locking)."""
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = bigquery.Client(
                        project=self.project_id,
                        location=self.location
                    )
                    logger.info(
                        "Initialized BigQuery client",
                        extra={
                            "project_id": self.project_id,
                            "location": self.location,
                        }
                    )
        return self._client

    @tenacity_retry(
        stop=stop_after_attempt(settings.bq_max_retry_attempts),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=TRANSIENT_RETRY_POLICY,
        reraise=True
    )
    def query(
        self,
        sql: str,
        parameters: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Run a parameterized query and return rows as dicts.

        Transient failures are retried with exponential backoff; the last
        exception is re-raised once attempts are exhausted.
        """
        job_config = QueryJobConfig(query_parameters=list(parameters or []))
        result = self.client.query(sql, job_config=job_config).result()
        return [dict(row) for row in result]


@lru_cache()
def get_bigquery_client() -> BigQueryClient:
    """Get cached BigQuery client instance."""
    return BigQueryClient()
