from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...relay.normalizer import normalize_envelope
from ...services import RelayServices
from ..deps import get_services

router = APIRouter(prefix="/slack")


@router.post("/events")
async def slack_events(
    request: Request,
    services: RelayServices = Depends(get_services),
):
    """Slack Events API endpoint.

    The request signature is checked against the signing secret before the
    body is parsed. Message events are persisted before the response is
    sent; Slack redeliveries of the same message are absorbed by the
    dispatcher.
    """

    verifier = services.signature_verifier
    if verifier is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Slack signing secret is not configured",
        )
    body = await request.body()
    if not verifier.is_valid_request(body, dict(request.headers)):
        logging.warning("Rejected Slack event with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    kind = payload.get("type")
    if kind == "url_verification":
        return {"challenge": payload.get("challenge")}
    retry = request.headers.get("X-Slack-Retry-Num")
    if retry:
        logging.info(
            "Slack redelivery %s reason=%s", retry, request.headers.get("X-Slack-Retry-Reason")
        )
    await services.dispatcher.handle_message(normalize_envelope(payload))
    return {"ok": True}
