# livedetect/main.py
import asyncio
import logging
import uvicorn
from fastapi import FastAPI, Request
from contextlib import asynccontextmanager, suppress
from typing import Optional
from .config import settings as default_settings, Settings
from .routes import metrics, ws
from .services.detection_service import DetectionService, LazyDetector, Detector, mediapipe_factory
from .services.metrics_service import MetricsAggregator
from .services.relay_service import RoomRegistry, SignalingRelay
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

def create_app(settings: Optional[Settings] = None, detector: Optional[Detector] = None) -> FastAPI:
    settings = settings or default_settings

    aggregator = MetricsAggregator(
        max_samples=settings.METRICS_MAX_SAMPLES,
        fps_window_s=settings.METRICS_FPS_WINDOW_S,
        path=settings.METRICS_FILE,
    )
    if detector is not None:
        lazy = LazyDetector(lambda: detector)
    else:
        lazy = LazyDetector(mediapipe_factory(settings.MODEL_PATH, settings.MIN_SCORE, settings.MAX_RESULTS))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # startup
        writer = asyncio.create_task(aggregator.run_periodic_writer(settings.METRICS_WRITE_INTERVAL_S))
        logger.info("✅ metrics enabled; writing to %s", settings.METRICS_FILE)
        yield
        # shutdown
        writer.cancel()
        with suppress(asyncio.CancelledError):
            await writer
        aggregator.write_snapshot()
        lazy.close()
        logger.info("👋 Shutting down...")

    app = FastAPI(title="Live Detection Relay", version="1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.metrics = aggregator
    app.state.relay = SignalingRelay(RoomRegistry())
    app.state.detection = DetectionService(lazy, aggregator, mode="server")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(metrics.router)
    app.include_router(ws.router)

    @app.get("/health")
    async def health(request: Request):
        return JSONResponse({
            "status": "ok",
            "rooms": len(request.app.state.relay.registry),
            "detector_loaded": request.app.state.detection.detector.loaded,
        })

    return app

app = create_app()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    uvicorn.run("livedetect.main:app", host=default_settings.HOST, port=default_settings.PORT)
