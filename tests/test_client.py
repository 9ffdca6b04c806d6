import asyncio
import json
from typing import Any, Dict, List

import httpx
import pytest

from livedetect.client import build_parser, format_overlay, parse_source, ws_url_for
from livedetect.config import Settings
from livedetect.schemas import Detection
from livedetect.services.correlator import ResultCorrelator
from livedetect.services.metrics_client import HttpMetricsSink
from livedetect.services.remote_channel import RemoteChannel


def test_ws_url_for_server() -> None:
    assert ws_url_for("http://localhost:4000") == "ws://localhost:4000/ws"
    assert ws_url_for("https://relay.example.org") == "wss://relay.example.org/ws"


def test_parse_source() -> None:
    assert parse_source("0") == 0
    assert parse_source("clip.mp4") == "clip.mp4"


def test_format_overlay() -> None:
    correlator = ResultCorrelator()
    assert format_overlay(correlator) == "no detections yet"
    correlator.note_dispatched(4)
    correlator.accept(4, 0.0, [Detection(label="dog", score=0.87, xmin=0, ymin=0, xmax=0.5, ymax=0.5)])
    assert format_overlay(correlator) == "frame 4: 1 dets [dog 87%]"


def test_parser_defaults_follow_settings() -> None:
    settings = Settings(DETECTOR_BACKEND="remote", PORT=4100)
    args = build_parser(settings).parse_args([])
    assert args.backend == "remote"
    assert args.server == "http://localhost:4100"
    assert args.source == "0"


def test_http_metrics_sink_posts_events() -> None:
    received: List[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/metrics/ingest"
        received.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    async def scenario() -> None:
        sink = HttpMetricsSink("http://relay.test", transport=httpx.MockTransport(handler))
        sink.emit({"frame_id": 1, "capture_ts": 1.0, "latency_ms": 30.0, "detections": 2})
        await sink.aclose()

    asyncio.run(scenario())
    assert received == [{"frame_id": 1, "capture_ts": 1.0, "latency_ms": 30.0, "detections": 2}]


def test_http_metrics_sink_swallows_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def scenario() -> None:
        sink = HttpMetricsSink("http://relay.test", transport=httpx.MockTransport(handler))
        sink.emit({"frame_id": 1})
        await sink.aclose()

    asyncio.run(scenario())


def test_unconnected_channel_is_closed() -> None:
    async def scenario() -> None:
        channel = RemoteChannel("ws://localhost:1/ws", on_message=lambda msg: None)
        assert channel.is_open is False
        with pytest.raises(ConnectionError):
            await channel.send_json({"type": "detect"})

    asyncio.run(scenario())


def test_channel_reader_skips_undecodable_frames() -> None:
    class ScriptedSocket:
        def __init__(self, frames: List[str]) -> None:
            self.frames = frames

        async def __aiter__(self):
            for frame in self.frames:
                yield frame

    received: List[Dict[str, Any]] = []
    frames = [
        "[" * 200_000 + "]" * 200_000,
        "{broken",
        '["not", "an", "object"]',
        '{"type": "detectResult", "frame_id": 4}',
    ]

    async def scenario() -> None:
        channel = RemoteChannel("ws://relay.test/ws", on_message=received.append)
        await channel._read_loop(ScriptedSocket(frames))

    asyncio.run(scenario())
    assert received == [{"type": "detectResult", "frame_id": 4}]
