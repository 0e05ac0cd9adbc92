"""AWS Lambda handler for the EventCraft API (install with the ``lambda`` extra)."""

from typing import Any

from loguru import logger
from mangum import Mangum

from .api import app

logger.add(lambda msg: print(msg, end=""))  # Lambda logs to stdout

# Lifespan runs per invocation so the service, database and providers are ready.
handler = Mangum(app, lifespan="auto")


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """AWS Lambda entry point.

    Args:
        event: API Gateway event.
        context: Lambda context object.

    Returns:
        Response dictionary with statusCode, headers, and body.
    """
    logger.info(
        "Lambda request: {} {}",
        event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method"),
        event.get("path") or event.get("rawPath"),
    )

    response = handler(event, context)

    logger.info("Lambda response status: {}", response.get("statusCode"))
    return response  # type: ignore[no-any-return]
