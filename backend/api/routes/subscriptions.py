"""
Subscription REST endpoints.

POST /v1/subscribe — Register a device for live activity updates of a division.
POST /v1/change    — Rotate a device push token, or drop it with an empty new token.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.models.domain import CompetitionDivisionKey
from shared.utils.logging import get_logger

from api.dependencies import AppContext, get_context

logger = get_logger(__name__)
router = APIRouter(prefix="/v1", tags=["subscriptions"])


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SubscribeRequest(RequestModel):
    competition_id: int = Field(ge=0)
    division_id: int = Field(ge=0)
    device_token: str = Field(min_length=1, max_length=512)
    watch_team: str = Field(min_length=1, max_length=64)


class ChangeRequest(RequestModel):
    old_device_token: str = Field(min_length=1, max_length=512)
    new_device_token: str = Field(default="", max_length=512)


@router.post("/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe(
    body: SubscribeRequest,
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    """
    Subscribe a device to a competition/division and a watched team.

    A device holds one live activity, so any earlier subscription of the same
    token is dropped first.
    """
    key = CompetitionDivisionKey(competition_id=body.competition_id, division_id=body.division_id)
    await ctx.registry.remove(body.device_token)
    await ctx.registry.add(key, body.watch_team.strip(), body.device_token)
    # Next cycle treats the division as changed so the new device gets a first push.
    await ctx.cache.discard(key)
    return {"status": "subscribed"}


@router.post("/change", status_code=status.HTTP_202_ACCEPTED)
async def change(
    body: ChangeRequest,
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    """Move a subscription to a new device token; an empty new token removes it."""
    key = await ctx.registry.move(body.old_device_token, body.new_device_token)
    if key is None:
        logger.debug("change_unknown_token")
    elif body.new_device_token:
        await ctx.cache.discard(key)
    return {"status": "changed"}
