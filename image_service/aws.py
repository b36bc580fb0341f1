"""Shared plumbing for the boto3-backed service clients."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import InfrastructureError, ServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ErrorMap = Dict[str, Tuple[Type[ServiceError], Optional[str]]]

# Redelivery belongs to the queue; keep the SDK from retrying on its own.
_SDK_CONFIG = Config(retries={"max_attempts": 1, "mode": "standard"})


def make_client(service_name: str, region: str) -> Any:
    """Create a boto3 client with the service-wide SDK settings."""
    return boto3.client(service_name, region_name=region, config=_SDK_CONFIG)


def make_table(table_name: str, region: str) -> Any:
    resource = boto3.resource("dynamodb", region_name=region, config=_SDK_CONFIG)
    return resource.Table(table_name)


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


async def call_service(
    service: str,
    operation: Callable[..., T],
    *args: Any,
    error_map: Optional[ErrorMap] = None,
    **kwargs: Any,
) -> T:
    """
    Run one blocking SDK call off the event loop.

    Args:
        service: Short service name used in logs and error messages
        operation: Bound boto3 method to invoke
        error_map: Optional mapping of AWS error codes to permanent error types
            (with an optional client-facing message; None keeps the AWS message)

    Raises:
        ServiceError: Mapped permanent error
        InfrastructureError: Any other SDK or network failure
    """
    try:
        return await asyncio.to_thread(operation, *args, **kwargs)
    except ClientError as e:
        code = error_code(e)
        if error_map and code in error_map:
            error_cls, message = error_map[code]
            raise error_cls(message or e.response.get("Error", {}).get("Message", code)) from e
        logger.error(f"{service} call failed with {code}: {e}")
        raise InfrastructureError(f"{service} request failed ({code})", service=service) from e
    except BotoCoreError as e:
        logger.error(f"{service} call failed: {e}")
        raise InfrastructureError(f"{service} request failed", service=service) from e
