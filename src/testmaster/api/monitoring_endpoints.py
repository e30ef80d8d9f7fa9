"""
API endpoints for healing and session metrics.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from ..core.metrics import MetricsCollector, get_metrics_collector

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


class MetricsResponse(BaseModel):
    """Response model for metrics data."""
    timestamp: datetime
    metrics: Dict[str, Any]


@router.get("/metrics", response_model=MetricsResponse)
async def get_current_metrics(collector: MetricsCollector = Depends(get_metrics_collector)):
    """Get current healing metrics."""
    current_metrics = collector.get_current_metrics()
    return MetricsResponse(timestamp=datetime.now(), metrics=current_metrics.__dict__)


@router.get("/metrics/export")
async def export_metrics(format: str = Query("prometheus", pattern="^(json|prometheus)$"),
                         collector: MetricsCollector = Depends(get_metrics_collector)):
    """Export metrics; ``prometheus`` is served as scrapeable text."""
    exported_data = collector.export_metrics(format)
    if format == "json":
        return {"data": exported_data, "format": "json"}
    return PlainTextResponse(exported_data, media_type="text/plain; version=0.0.4")
