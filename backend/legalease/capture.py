from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import List, Optional

import httpx

from legalease.config import Settings
from legalease.errors import LegalEaseError, RelayUnavailable
from legalease.services.analyzer import IncrementalAnalyzer
from legalease.services.audio_capture import source_factory_for
from legalease.services.capture_session import CaptureSession, meeting_id_from_url
from legalease.services.llm import create_llm_client
from legalease.services.relay import PullRelayChannel, create_relay_channel
from legalease.services.synchronizer import ClientSynchronizer
from legalease.services.transcription import create_transcriber


logger = logging.getLogger("legalease.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LegalEase meeting capture")
    parser.add_argument("--server", default="http://127.0.0.1:8000", help="LegalEase server base URL")
    parser.add_argument("--meeting-url", default=None, help="Meeting page URL; the meeting id is derived from it")
    parser.add_argument("--meeting-id", default=None, help="Explicit meeting id")
    parser.add_argument("--source", choices=["mic", "loopback"], default="mic", help="Audio source")
    parser.add_argument("--device", default=None, help="Input device id or speaker name")
    parser.add_argument("--relay", choices=["push", "pull"], default=None, help="Relay strategy")
    parser.add_argument("--chunk-seconds", type=float, default=None, help="Segment length")
    parser.add_argument("--follow", action="store_true", help="Follow the transcript and print incremental analysis")
    parser.add_argument("--user-id", default=None, help="Save the session to this user's history when idle")
    return parser


async def save_via_server(server: str, user_id: str, text: str, meeting_id: Optional[str], key: str) -> None:
    body = {
        "documentText": text,
        "meetingId": meeting_id,
        "type": "transcript",
        "saveToHistory": True,
        "userId": user_id,
        "idempotencyKey": key,
    }
    async with httpx.AsyncClient(base_url=server, timeout=120.0) as client:
        resp = await client.post("/analyze", json=body)
    if resp.status_code >= 400:
        raise RelayUnavailable(f"Save failed: HTTP {resp.status_code}")


async def follow(settings: Settings, server: str, meeting_id: str, user_id: Optional[str], stop: asyncio.Event) -> None:
    reader = PullRelayChannel(server, meeting_id=meeting_id)
    analyzer = IncrementalAnalyzer(
        create_llm_client(settings),
        word_threshold=settings.analysis_word_threshold,
        window_words=settings.analysis_window_words,
        max_chars=settings.transcript_prompt_chars,
    )

    analysis_task: Optional[asyncio.Task] = None

    async def run_analysis(text: str, mid: Optional[str]) -> None:
        try:
            result = await analyzer.observe(text, mid)
        except LegalEaseError as exc:
            logger.warning("Incremental analysis failed", extra={"error": str(exc)})
            return
        if result is not None:
            print(f"[analysis] {result.analysis}")

    # Polling must not wait on the model; one analysis runs at a time
    def on_update(text: str, mid: Optional[str]) -> None:
        nonlocal analysis_task
        print(f"[transcript] {text}")
        if analysis_task is None or analysis_task.done():
            analysis_task = asyncio.create_task(run_analysis(text, mid))
        else:
            analyzer.track(text)

    async def on_save(text: str, mid: Optional[str], key: str) -> None:
        if user_id:
            await save_via_server(server, user_id, text, mid, key)

    sync = ClientSynchronizer(
        reader.fetch,
        on_update=on_update,
        on_save=on_save,
        idle_timeout=settings.idle_timeout_seconds,
        min_save_chars=settings.min_save_chars,
    )
    try:
        await sync.run(settings.poll_interval_seconds, stop)
    finally:
        if analysis_task is not None and not analysis_task.done():
            analysis_task.cancel()
        await reader.close()


async def run(args: argparse.Namespace, settings: Settings) -> int:
    meeting_id = args.meeting_id or meeting_id_from_url(args.meeting_url)
    strategy = args.relay or settings.relay_strategy
    threshold = settings.pull_forward_threshold if strategy == "pull" else settings.push_forward_threshold
    session = CaptureSession(
        source_factory_for(args.source, args.device),
        create_transcriber(settings),
        create_relay_channel(settings, args.server, strategy=strategy, meeting_id=meeting_id),
        meeting_id=meeting_id,
        chunk_seconds=args.chunk_seconds or settings.chunk_seconds,
        forward_threshold=threshold,
        max_words=settings.buffer_max_words,
        target_rate=settings.capture_sample_rate,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await session.start()
    except LegalEaseError as exc:
        logger.error("Could not start capture: %s", exc)
        return 1

    tasks: List[asyncio.Task] = [asyncio.create_task(stop.wait()), asyncio.create_task(session.wait())]
    follower = None
    if args.follow:
        follower = asyncio.create_task(follow(settings, args.server, meeting_id, args.user_id, stop))
    await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    stop.set()
    await session.stop()
    for task in tasks:
        task.cancel()
    if follower is not None:
        await follower
    return 1 if session.error is not None else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    settings = Settings()
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
