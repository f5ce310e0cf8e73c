"""
Campaign router: batch sending and track bookkeeping.

Endpoints:
  POST /send-batch   — send one batch on a track (?track=employee|manager&batch_size=N)
  POST /reset        — mark every employee unsent on a track
  GET  /remaining    — unsent count for a track
  GET  /last-sent    — most recent send time per track

An external scheduler calls /send-batch on a timer (see
scripts/send_campaign_batch.py); runs should not overlap, though overlapping
runs only repeat idempotent flag flips.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, Query

from app.auth import get_current_admin
from app.db import get_employee_store
from app.models.employee import BatchResult, LastSentTimes, RemainingCount, Track
from app.routers.errors import to_http
from app.services import campaign
from app.services.employee_store import EmployeeStore
from app.services.errors import CampaignError
from app.services.notifier import Notifier, get_notifier

load_dotenv()

logger = logging.getLogger(__name__)

router = APIRouter()

CAMPAIGN_DEFAULT_BATCH_SIZE = int(os.getenv("CAMPAIGN_DEFAULT_BATCH_SIZE", "1400"))


@router.post("/send-batch", response_model=BatchResult)
async def send_batch(
    track: Track = Query(Track.EMPLOYEE),
    batch_size: int = Query(CAMPAIGN_DEFAULT_BATCH_SIZE, ge=1),
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
    notifier: Notifier = Depends(get_notifier),
) -> BatchResult:
    """
    Send up to ``batch_size`` verification mails on ``track``.

    Failed recipients are listed in the result and stay unsent.
    """
    try:
        return await campaign.send_batch(store, notifier, track, batch_size)
    except CampaignError as exc:
        raise to_http(exc)


@router.post("/reset")
async def reset_track(
    track: Track = Query(...),
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
):
    try:
        reset = campaign.reset_flags(store, track)
    except CampaignError as exc:
        raise to_http(exc)
    logger.info(f"{admin} reset the {track.value} track")
    return {"track": track, "reset": reset}


@router.get("/remaining", response_model=RemainingCount)
async def get_remaining(
    track: Track = Query(Track.EMPLOYEE),
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
) -> RemainingCount:
    try:
        return RemainingCount(track=track, remaining=campaign.remaining_count(store, track))
    except CampaignError as exc:
        raise to_http(exc)


@router.get("/last-sent", response_model=LastSentTimes)
async def get_last_sent(
    admin: str = Depends(get_current_admin),
    store: EmployeeStore = Depends(get_employee_store),
) -> LastSentTimes:
    try:
        return campaign.last_sent_times(store)
    except CampaignError as exc:
        raise to_http(exc)
