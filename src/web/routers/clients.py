"""
Clients API Router

Client profiles, analysis history, meeting mapping rules, notification
preferences and the transcript queue.
"""

import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ...auth.dependencies import get_current_user, get_services
from ...core.records import ClientMapping, ClientProfile, NotificationPreferences


logger = logging.getLogger(__name__)

router = APIRouter()


class ClientCreate(BaseModel):
    """New client."""
    name: str
    pod: str = ""
    monthly_spend: str = ""
    duration: str = ""
    notes: str = ""


class ClientUpdate(BaseModel):
    """Editable client fields; omitted fields are left alone."""
    name: Optional[str] = None
    pod: Optional[str] = None
    monthly_spend: Optional[str] = None
    duration: Optional[str] = None
    notes: Optional[str] = None


class MappingUpdate(BaseModel):
    """Meeting-to-client mapping rules."""
    participant_emails: List[str] = []
    title_pattern: Optional[str] = None
    meeting_ids: List[str] = []
    auto_detect: bool = False


class NotificationUpdate(BaseModel):
    """Notification targets and toggles."""
    pod_leader_email: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    notify_on_new_transcript: bool = False
    notify_on_auto_analysis: bool = True
    notify_on_manual_analysis: bool = False


class AutoAnalysisUpdate(BaseModel):
    enabled: bool


def _owned_client(services, client_id: str, user: dict) -> ClientProfile:
    client = services.clients.get(client_id)
    if client is None or (client.owner_id and client.owner_id != user["uid"]):
        raise HTTPException(status_code=404, detail=f"Client {client_id} not found")
    return client


@router.get("")
async def list_clients(user: dict = Depends(get_current_user), services=Depends(get_services)):
    """List the caller's clients, newest first."""
    return [c.to_dict() for c in services.clients.list_clients(owner_id=user["uid"])]


@router.post("", status_code=201)
async def create_client(body: ClientCreate, user: dict = Depends(get_current_user), services=Depends(get_services)):
    """Create a client owned by the caller."""
    if not body.name.strip():
        raise HTTPException(status_code=400, detail="name is required")

    profile = ClientProfile(
        id="",
        name=body.name.strip(),
        pod=body.pod,
        monthly_spend=body.monthly_spend,
        duration=body.duration,
        notes=body.notes,
        owner_id=user["uid"],
    )
    return services.clients.create(profile).to_dict()


@router.get("/{client_id}")
async def get_client(client_id: str, user: dict = Depends(get_current_user), services=Depends(get_services)):
    return _owned_client(services, client_id, user).to_dict()


@router.patch("/{client_id}")
async def update_client(
    client_id: str,
    body: ClientUpdate,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Update client profile fields."""
    _owned_client(services, client_id, user)
    updated = services.clients.update(client_id, **body.model_dump(exclude_none=True))
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Client {client_id} not found")
    return updated.to_dict()


@router.get("/{client_id}/analyses")
async def list_analyses(
    client_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Analysis history for a client, newest first."""
    _owned_client(services, client_id, user)
    limit = limit or services.config.app.analysis_history_limit
    return [r.to_dict() for r in services.analyses.list_for_client(client_id, limit=limit)]


@router.get("/{client_id}/history")
async def get_history(client_id: str, user: dict = Depends(get_current_user), services=Depends(get_services)):
    """Long-term relationship memory with its trend label."""
    _owned_client(services, client_id, user)
    history = services.aggregator.load(client_id)
    if history is None:
        raise HTTPException(status_code=404, detail=f"No relationship history for client {client_id}")
    data = history.to_dict()
    data["trend"] = services.aggregator.trend_label(history)
    return data


@router.get("/{client_id}/mapping")
async def get_mapping(client_id: str, user: dict = Depends(get_current_user), services=Depends(get_services)):
    _owned_client(services, client_id, user)
    mapping = services.mappings.get(client_id) or ClientMapping(client_id=client_id)
    return mapping.to_dict()


@router.put("/{client_id}/mapping")
async def set_mapping(
    client_id: str,
    body: MappingUpdate,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Replace the rules that route Fathom meetings to this client."""
    _owned_client(services, client_id, user)

    if body.title_pattern:
        try:
            re.compile(body.title_pattern)
        except re.error as e:
            raise HTTPException(status_code=400, detail=f"Invalid title pattern: {e}")

    mapping = ClientMapping(
        client_id=client_id,
        participant_emails=[e.strip().lower() for e in body.participant_emails if e.strip()],
        title_pattern=body.title_pattern or None,
        meeting_ids=[m.strip() for m in body.meeting_ids if m.strip()],
        auto_detect=body.auto_detect,
    )
    return services.mappings.save(mapping).to_dict()


@router.get("/{client_id}/notifications")
async def get_notifications(client_id: str, user: dict = Depends(get_current_user), services=Depends(get_services)):
    _owned_client(services, client_id, user)
    prefs = services.notification_prefs.get(client_id) or NotificationPreferences(client_id=client_id)
    return prefs.to_dict()


@router.put("/{client_id}/notifications")
async def set_notifications(
    client_id: str,
    body: NotificationUpdate,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Replace notification targets and toggles."""
    _owned_client(services, client_id, user)
    prefs = NotificationPreferences(client_id=client_id, **body.model_dump())
    return services.notification_prefs.save(prefs).to_dict()


@router.get("/{client_id}/queue")
async def get_queue(client_id: str, user: dict = Depends(get_current_user), services=Depends(get_services)):
    """Current transcript window and readiness."""
    _owned_client(services, client_id, user)
    queue = services.queue_manager.get_window(client_id)
    if queue is None:
        return {"client_id": client_id, "transcripts": [], "auto_analysis_enabled": True, "is_ready": False}
    data = queue.to_dict()
    data["is_ready"] = services.queue_manager.queue_is_ready(queue)
    return data


@router.put("/{client_id}/queue/auto-analysis")
async def set_auto_analysis(
    client_id: str,
    body: AutoAnalysisUpdate,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    """Enable or disable auto-analysis when the queue fills."""
    _owned_client(services, client_id, user)
    queue = services.queue_manager.set_auto_analysis(client_id, body.enabled)
    data = queue.to_dict()
    data["is_ready"] = services.queue_manager.queue_is_ready(queue)
    return data
