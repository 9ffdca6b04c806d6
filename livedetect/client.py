#!/usr/bin/env python3
"""Publisher-side detection client.

Samples a local camera / video at the configured cadence and keeps an up-to-date detection
overlay, using either the in-process detector or the relay server's detector.

Usage::

    python -m livedetect.client --source 0 --backend local --server http://localhost:4000
    python -m livedetect.client --source clip.mp4 --backend remote --duration 30
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from pydantic import ValidationError

from .config import Settings, settings as default_settings
from .schemas import DetectResult
from .services.correlator import ResultCorrelator
from .services.detection_service import LazyDetector, mediapipe_factory
from .services.dispatcher import InferenceDispatcher, LocalBackend, RemoteBackend
from .services.frame_codec import CaptureSource
from .services.metrics_client import HttpMetricsSink
from .services.remote_channel import RemoteChannel
from .services.sampler import FrameSampler

logger = logging.getLogger(__name__)


def ws_url_for(server: str) -> str:
    """http(s)://host:port -> ws(s)://host:port/ws"""
    parts = urlsplit(server)
    scheme = "wss" if parts.scheme in ("https", "wss") else "ws"
    return urlunsplit((scheme, parts.netloc, "/ws", "", ""))


def parse_source(value: str):
    return int(value) if value.isdigit() else value


def format_overlay(correlator: ResultCorrelator) -> str:
    current = correlator.current
    if current is None:
        return "no detections yet"
    labels = ", ".join(f"{d.label} {d.score * 100:.0f}%" for d in current.detections) or "-"
    return f"frame {current.frame_id}: {len(current.detections)} dets [{labels}]"


async def overlay_loop(correlator: ResultCorrelator, interval_s: float, stop: asyncio.Event) -> None:
    # reads the last-known set only; the correlator is the single writer
    while not stop.is_set():
        logger.info("overlay: %s", format_overlay(correlator))
        if correlator.last_error:
            logger.info("last detect error: %s", correlator.last_error)
        try:
            await asyncio.wait_for(stop.wait(), interval_s)
        except asyncio.TimeoutError:
            pass


async def run_client(args: argparse.Namespace, settings: Settings) -> None:
    source = CaptureSource(parse_source(args.source))
    if not source.is_open():
        raise SystemExit(f"could not open video source {args.source!r}")
    logger.info("source %s: %s", args.source, source.describe())

    correlator = ResultCorrelator()
    channel: Optional[RemoteChannel] = None
    sink: Optional[HttpMetricsSink] = None
    detector: Optional[LazyDetector] = None

    if args.backend == "remote":
        def on_message(msg: dict) -> None:
            if msg.get("type") != "detectResult":
                return
            try:
                backend.handle_reply(DetectResult.model_validate(msg))
            except ValidationError as exc:
                logger.debug("malformed detectResult: %s", exc)

        channel = RemoteChannel(ws_url_for(args.server), on_message)
        backend = RemoteBackend(channel, timeout_s=settings.DETECT_TIMEOUT_S, jpeg_quality=settings.JPEG_QUALITY)
        await channel.connect()
    else:
        detector = LazyDetector(mediapipe_factory(settings.MODEL_PATH, settings.MIN_SCORE, settings.MAX_RESULTS))
        backend = LocalBackend(detector)
        # the server records remote detections itself; local ones are reported over HTTP
        if not args.no_metrics:
            sink = HttpMetricsSink(args.server)

    dispatcher = InferenceDispatcher(backend, correlator, metrics=sink)
    sampler = FrameSampler(
        source,
        dispatcher,
        width=settings.TARGET_WIDTH,
        height=settings.TARGET_HEIGHT,
        interval_ms=settings.SAMPLE_INTERVAL_MS,
    )

    stop = asyncio.Event()
    tasks = [
        asyncio.create_task(sampler.run(stop)),
        asyncio.create_task(overlay_loop(correlator, args.report_interval, stop)),
    ]
    try:
        if args.duration:
            await asyncio.sleep(args.duration)
            stop.set()
        await asyncio.gather(*tasks)
    finally:
        stop.set()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if channel is not None:
            await channel.close()
        if sink is not None:
            await sink.aclose()
        if detector is not None:
            detector.close()
        source.release()
        logger.info(
            "dispatched=%d coalesced=%d failures=%d discarded=%d",
            sampler.dispatched, sampler.coalesced, sampler.failures, correlator.discarded,
        )


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sample a video source and overlay live detections.")
    parser.add_argument("--source", default="0", help="camera index, file path or stream URL")
    parser.add_argument("--backend", choices=("local", "remote"), default=settings.DETECTOR_BACKEND)
    parser.add_argument("--server", default=f"http://localhost:{settings.PORT}",
                        help="relay server base URL (metrics ingest / remote detection)")
    parser.add_argument("--duration", type=float, default=0.0, help="seconds to run (0 = until interrupted)")
    parser.add_argument("--report-interval", type=float, default=1.0, help="seconds between overlay reports")
    parser.add_argument("--no-metrics", action="store_true", help="do not report local detections to the server")
    parser.add_argument("--log-level", default="INFO")
    return parser


def main(argv: Optional[list] = None) -> None:
    settings = default_settings
    args = build_parser(settings).parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        asyncio.run(run_client(args, settings))
    except KeyboardInterrupt:
        logger.info("interrupted")


if __name__ == "__main__":
    main()
