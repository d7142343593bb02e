"""Shared boto3 client construction and error translation.

Every AWS call site gets explicit connect/read timeouts through the botocore
Config; no call is left on the SDK's implicit defaults.
"""

import logging
from typing import Iterable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ObjectNotFound, RemoteError

logger = logging.getLogger(__name__)

TRANSIENT_CODES = {
    'RequestTimeout',
    'RequestTimeoutException',
    'SlowDown',
    'Throttling',
    'ThrottlingException',
    'ProvisionedThroughputExceededException',
    'ServiceUnavailable',
    'ServiceUnavailableException',
    'InternalError',
    'InternalServerError',
}


def make_client(
    service: str,
    region: str = "us-east-1",
    timeout: float = 30.0,
    endpoint_url: Optional[str] = None,
    max_pool_connections: int = 16
):
    """Create a boto3 client with explicit timeouts.

    Credentials come from the standard AWS chain (env vars, profile, role).

    Args:
        service: Service name ('s3', 'rekognition')
        region: AWS region
        timeout: Connect and read timeout in seconds
        endpoint_url: Custom endpoint (S3-compatible storage)
        max_pool_connections: HTTP pool size (bounded concurrency callers)
    """
    config = Config(
        region_name=region,
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={'max_attempts': 3, 'mode': 'standard'},
        max_pool_connections=max_pool_connections,
    )
    return boto3.client(service, endpoint_url=endpoint_url or None, config=config)


def error_code(exc: ClientError) -> str:
    """Error code of a botocore ClientError."""
    return exc.response.get("Error", {}).get("Code", "") or ""


def translate_error(
    exc: Exception,
    backend: str,
    operation: str,
    not_found_codes: Iterable[str] = (),
    path: Optional[str] = None
) -> RemoteError:
    """Translate a botocore exception into the pipeline taxonomy.

    Args:
        exc: ClientError or BotoCoreError
        backend: Backend name for the resulting error
        operation: Operation name, used in the message
        not_found_codes: Error codes meaning "does not exist"
        path: Object path or resource id involved

    Returns:
        RemoteError (or ObjectNotFound) to raise
    """
    if isinstance(exc, ClientError):
        code = error_code(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
        message = exc.response.get("Error", {}).get("Message", str(exc))
        if code in set(not_found_codes):
            return ObjectNotFound(f"{operation}: {code}: {message}", backend=backend, path=path)
        transient = code in TRANSIENT_CODES or status >= 500
        logger.warning(f"{backend} {operation} failed ({code}, HTTP {status}): {message}")
        return RemoteError(f"{operation}: {code}: {message}", backend=backend, transient=transient)

    if isinstance(exc, BotoCoreError):
        # Timeouts and connection failures
        logger.warning(f"{backend} {operation} failed: {exc}")
        return RemoteError(f"{operation}: {exc}", backend=backend, transient=True)

    logger.error(f"{backend} {operation} failed unexpectedly: {exc}")
    return RemoteError(f"{operation}: {exc}", backend=backend, transient=False)
