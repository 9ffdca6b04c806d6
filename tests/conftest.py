"""Shared fixtures: fake detector, fake peers / sources, and an app wired to them."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import pytest
from fastapi.testclient import TestClient

from livedetect.config import Settings
from livedetect.main import create_app
from livedetect.schemas import Detection


class FakeDetector:
    """Returns a fixed set of boxes for any frame; counts calls."""

    def __init__(self, detections: List[Detection] | None = None) -> None:
        self.detections = detections if detections is not None else [
            Detection.from_pixel_box("person", 0.9, 16, 12, 400, 100, 320, 240),
        ]
        self.calls = 0

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        self.calls += 1
        return list(self.detections)


class FakePeer:
    def __init__(self, name: str = "peer", is_open: bool = True) -> None:
        self.name = name
        self.is_open = is_open
        self.sent: List[Dict[str, Any]] = []
        self.fail_send = False

    async def send_json(self, payload: Dict[str, Any]) -> None:
        if self.fail_send:
            raise ConnectionError("peer went away")
        self.sent.append(payload)


class StaticSource:
    """Always yields the same 640x480 frame."""

    def __init__(self) -> None:
        self.reads = 0

    def read(self) -> np.ndarray:
        self.reads += 1
        return np.full((480, 640, 3), 127, dtype=np.uint8)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        METRICS_FILE=str(tmp_path / "metrics.json"),
        METRICS_WRITE_INTERVAL_S=60.0,
    )


@pytest.fixture
def fake_detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture
def client(test_settings: Settings, fake_detector: FakeDetector):
    app = create_app(test_settings, detector=fake_detector)
    with TestClient(app) as c:
        yield c
