"""
Pod Leaders API Router

The caller's own pod leader profile. The personality summary is added to
every analysis they own.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...auth.dependencies import get_current_user, get_services
from ...core.records import PodLeaderProfile


logger = logging.getLogger(__name__)

router = APIRouter()


class PodLeaderUpdate(BaseModel):
    name: str = ""
    pod: str = ""
    personality_summary: str = ""


@router.get("/me")
async def get_my_profile(user: dict = Depends(get_current_user), services=Depends(get_services)):
    profile = services.pod_leaders.get(user["uid"])
    if profile is None:
        profile = PodLeaderProfile(owner_id=user["uid"], email=user["email"])
    return profile.to_dict()


@router.put("/me")
async def update_my_profile(
    body: PodLeaderUpdate,
    user: dict = Depends(get_current_user),
    services=Depends(get_services),
):
    profile = PodLeaderProfile(
        owner_id=user["uid"],
        email=user["email"],
        name=body.name,
        pod=body.pod,
        personality_summary=body.personality_summary,
    )
    return services.pod_leaders.save(profile).to_dict()
