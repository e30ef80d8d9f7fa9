"""
Healing API endpoints.

Statistics and history over the healing event store, review of pending
suggestions, and the healing configuration.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..core.config_loader import ConfigurationError, get_healing_config, save_healing_config
from ..core.models import HealingConfig, HealingEventFilter, HealingStrategyName
from ..services.healing_event_store import HealingEventStore, get_healing_event_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/healing", tags=["healing"])


class ApprovalRequest(BaseModel):
    approved: bool
    approved_by: Optional[str] = None


class HealingConfigUpdate(BaseModel):
    enabled: Optional[bool] = None
    auto_apply_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    suggestion_min: Optional[float] = Field(None, ge=0.0, le=1.0)
    max_healing_time: Optional[int] = Field(None, ge=100, le=120000)
    enabled_strategies: Optional[List[HealingStrategyName]] = None


@router.get("/statistics")
async def get_healing_statistics(days: int = Query(30, ge=1, le=365),
                                 store: HealingEventStore = Depends(get_healing_event_store)):
    """Healing attempts and success rates over the last ``days`` days."""
    statistics = await store.get_healing_statistics(days)
    return {"status": "success", "statistics": statistics.to_dict()}


@router.get("/events")
async def get_healing_events(test_case_id: Optional[str] = None,
                             object_id: Optional[str] = None,
                             strategy: Optional[HealingStrategyName] = None,
                             auto_applied: Optional[bool] = None,
                             approved: Optional[bool] = None,
                             pending_only: bool = False,
                             days: Optional[int] = Query(None, ge=1, le=365),
                             limit: int = Query(50, ge=1, le=500),
                             store: HealingEventStore = Depends(get_healing_event_store)):
    """Healing events, newest first."""
    filters = HealingEventFilter(
        test_case_id=test_case_id,
        object_id=object_id,
        strategy=strategy,
        auto_applied=auto_applied,
        approved=approved,
        pending_only=pending_only,
        since=datetime.now() - timedelta(days=days) if days else None,
        limit=limit,
    )
    events = await store.query(filters)
    return {"status": "success", "events": [e.to_dict() for e in events], "total": len(events)}


@router.post("/events/{event_id}/approval")
async def review_healing_event(event_id: int, review: ApprovalRequest,
                               store: HealingEventStore = Depends(get_healing_event_store)):
    """Approve or reject a suggested healing."""
    if await store.get(event_id) is None:
        raise HTTPException(status_code=404, detail=f"Healing event {event_id} not found")

    event = await store.approve(event_id, review.approved, review.approved_by)
    if event is None:
        raise HTTPException(status_code=409, detail=f"Healing event {event_id} is not awaiting review")
    return {"status": "success", "event": event.to_dict()}


@router.get("/config")
async def get_config():
    try:
        config = get_healing_config()
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "success", "configuration": config.to_dict()}


@router.post("/config")
async def update_config(update: HealingConfigUpdate):
    """Update healing thresholds and strategies; takes effect for new sessions."""
    data = get_healing_config().to_dict()
    changes = update.model_dump(exclude_unset=True)

    for key in ("enabled", "auto_apply_threshold", "max_healing_time"):
        if changes.get(key) is not None:
            data[key] = changes[key]
    if changes.get("suggestion_min") is not None:
        data["suggestion_threshold"]["min"] = changes["suggestion_min"]
    if changes.get("auto_apply_threshold") is not None:
        data["suggestion_threshold"]["max"] = changes["auto_apply_threshold"]
    if changes.get("enabled_strategies") is not None:
        data["enabled_strategies"] = [HealingStrategyName(s).value for s in changes["enabled_strategies"]]

    try:
        config = HealingConfig.from_dict(data)
        save_healing_config(config)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Healing configuration updated")
    return {"status": "success", "configuration": config.to_dict()}
