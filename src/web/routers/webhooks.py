"""
Webhooks Router

Fathom "meeting.completed" webhook endpoint.

Responses:
- 405 for anything but POST
- 500 if the webhook secret is not configured
- 401 if the signature does not verify
- 400 if the body is not a JSON meeting payload
- 200 for every terminal outcome (processed, no mapping, no transcript, duplicate, ignored)
- 500 on unexpected failure (Fathom retries)
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..app import limiter
from ...auth.dependencies import get_services
from ...fathom.client import FathomClient


logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


@router.post("/fathom")
@limiter.limit("120/minute")
async def fathom_webhook(request: Request, services=Depends(get_services)):
    """
    Receive a Fathom meeting webhook.

    The signature is checked against the raw body before anything is parsed.
    Analysis, when triggered, runs in the background; the response does not wait.
    """
    if not services.config.fathom.webhook_secret:
        logger.error("Fathom webhook secret not configured")
        return _error(500, "Server configuration error")

    body = await request.body()
    signature = request.headers.get(FathomClient.SIGNATURE_HEADER)

    if not services.fathom_client.verify_webhook(body, signature):
        logger.error("Webhook verification failed")
        return _error(401, "Unauthorized")

    try:
        payload = json.loads(body)
    except ValueError:
        return _error(400, "Invalid JSON body")
    if not isinstance(payload, dict):
        return _error(400, "Invalid webhook payload")

    try:
        result = await services.meeting_handler.handle_webhook(payload)
    except ValueError as e:
        return _error(400, str(e))
    except Exception as e:
        logger.error(f"Webhook processing error: {e}", exc_info=True)
        return _error(500, "Internal server error")

    return JSONResponse(status_code=200, content=result.to_dict())
