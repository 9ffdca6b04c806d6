# livedetect/routes/metrics.py
import asyncio

from fastapi import APIRouter, HTTPException, Request, Response
from ..models import MetricsIngestIn
from ..schemas import MetricsSnapshotOut
from ..services.metrics_service import MetricsAggregator
from ..services.report_service import make_latency_csv

router = APIRouter(prefix="/metrics", tags=["metrics"])

def _aggregator(request: Request) -> MetricsAggregator:
    return request.app.state.metrics

@router.post("/ingest")
async def ingest(event: MetricsIngestIn, request: Request):
    """
    Detections produced outside this process (in-browser / local inference) report here.
    Fire-and-forget for the caller: anything that validates is accepted.
    """
    metrics = _aggregator(request)
    metrics.record_event(
        frame_id=event.frame_id,
        capture_ts=event.capture_ts,
        latency_ms=event.latency_ms,
        detections=event.detections,
        mode="local",
        error=event.error,
    )
    await asyncio.to_thread(metrics.write_snapshot)
    return {"ok": True}

@router.get("", response_model=MetricsSnapshotOut)
async def get_metrics(request: Request, format: str = "json"):
    metrics = _aggregator(request)
    snapshot = metrics.snapshot()
    if format == "json":
        return snapshot
    elif format == "csv":
        csv_bytes = make_latency_csv(metrics.latency_samples(), snapshot.model_dump())
        return Response(
            content=csv_bytes,
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=latency_window.csv"},
        )
    else:
        raise HTTPException(status_code=400, detail="format must be json|csv")
