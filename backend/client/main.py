"""
Command-line client for the audio channel.

Responsibilities:
- Load .env and AppConfig
- Connect to the channel WebSocket and wire it to an AudioGateway
- Stream the microphone (or a WAV file) as binary PCM16 blocks
- Draw the spectrum bars on the terminal
- Save every assembled playback asset to the output directory
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

import websockets
from dotenv import load_dotenv
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from audio.errors import ConfigurationError, ResourceAcquisitionFailure
from audio.frames import AssembledAsset, VisualizationFrame
from audio.sources import ArraySource, LiveSource
from audio.spectrum import to_pixel_heights
from config import AppConfig
from observability import logger
from observability.logger import log_event, now_ms
from session.gateway import AudioGateway
from spec import BAR_MAX_HEIGHT_PX


_BAR_GLYPHS = " ▁▂▃▄▅▆▇█"


def render_bars(frame: VisualizationFrame | Sequence[float]) -> str:
    """One terminal line, one glyph per bar."""
    top = len(_BAR_GLYPHS) - 1
    line = []
    for px in to_pixel_heights(frame):
        level = round(min(px, BAR_MAX_HEIGHT_PX) / BAR_MAX_HEIGHT_PX * top)
        line.append(_BAR_GLYPHS[level])
    return "".join(line)


def _build_parser(config: AppConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicestream-client",
        description="Stream microphone audio to a voice channel and save playback assets.",
    )
    parser.add_argument("--url", default=config.ws_url, help="channel WebSocket URL")
    parser.add_argument("--wav", type=Path, default=None,
                        help="stream a mono PCM16 WAV file instead of the microphone")
    parser.add_argument("--out-dir", type=Path, default=Path(config.audio_output_dir),
                        help="directory for received audio assets")
    parser.add_argument("--show-bars", "--bars", action="store_true",
                        help="draw the spectrum visualizer on stderr")
    parser.add_argument("--max-duration", type=float, default=config.max_recording_s,
                        help="stop capture after this many seconds")
    parser.add_argument("--exit-after-asset", action="store_true",
                        help="disconnect once the first playback asset has been saved")
    return parser


def _open_source(args: argparse.Namespace, config: AppConfig) -> LiveSource:
    if args.wav is not None:
        return ArraySource.from_wav(
            args.wav,
            realtime=True,
            sample_rate_hz=config.capture_sample_rate_hz,
        )

    # PortAudio is only loaded when the microphone is actually used
    from audio.microphone import MicrophoneSource  # pylint: disable=import-outside-toplevel

    return MicrophoneSource(
        sample_rate_hz=config.capture_sample_rate_hz,
        device=config.input_device,
    )


async def run(args: argparse.Namespace, config: AppConfig) -> int:
    """Run one connection until it closes, capture ends with --wav, or an asset is saved."""
    done = asyncio.Event()
    saved: list[Path] = []

    def on_asset(asset: AssembledAsset) -> None:
        path = asset.save(args.out_dir)
        saved.append(path)
        print(f"saved {len(asset)} bytes -> {path}", file=sys.stderr)
        if args.exit_after_asset:
            done.set()

    def on_progress(percent: float, expected_total: int) -> None:
        print(f"receiving {percent:5.1f}% of {expected_total}", file=sys.stderr)

    def on_frame(frame: VisualizationFrame) -> None:
        sys.stderr.write("\r" + render_bars(frame))
        sys.stderr.flush()

    def on_duration(seconds: int) -> None:
        if not args.show_bars:
            print(f"recording {seconds // 60:d}:{seconds % 60:02d}", file=sys.stderr)

    if args.max_duration is not None:
        config = replace(config, max_recording_s=args.max_duration)

    gateway = AudioGateway(
        config=config,
        on_asset=on_asset,
        on_progress=on_progress,
        on_frame=on_frame if args.show_bars else None,
        on_duration=on_duration,
    )

    source = _open_source(args, config)

    gateway.on_ws_connecting()
    try:
        async with websockets.connect(args.url) as ws:
            gateway.on_ws_connect(ws.send)

            try:
                session = await gateway.start_capture(source)
            except ResourceAcquisitionFailure as e:
                print(f"capture unavailable: {e}", file=sys.stderr)
                gateway.on_ws_disconnect(reason="capture_unavailable")
                return 1

            async def receive() -> None:
                try:
                    async for msg in ws:
                        if isinstance(msg, str):
                            gateway.on_json_message(msg)
                        else:
                            gateway.on_binary_message(msg)
                finally:
                    done.set()

            async def capture_finished() -> None:
                await session.wait_stopped()
                # A live microphone stopping means the user is done; a WAV
                # file stopping still leaves the reply to come in.
                if args.wav is None:
                    done.set()

            tasks = [
                asyncio.create_task(receive(), name="ws_receive"),
                asyncio.create_task(capture_finished(), name="capture_watch"),
            ]
            try:
                await done.wait()
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

            gateway.on_ws_disconnect(reason="client_done")

    except ConnectionClosed as e:
        gateway.on_ws_disconnect(reason=f"connection_closed:{e}")
    except (OSError, InvalidHandshake, InvalidURI) as e:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_CONNECT_FAILED",
            "url": args.url,
            "exception": type(e).__name__,
            "message": str(e),
        })
        gateway.on_ws_disconnect(reason="connect_failed")
        print(f"cannot connect to {args.url}: {e}", file=sys.stderr)
        return 1

    if args.show_bars:
        sys.stderr.write("\n")
    return 0 if saved or not args.exit_after_asset else 2


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()

    try:
        config = AppConfig.load_from_env()
    except ConfigurationError as e:
        print(f"invalid configuration: {e}", file=sys.stderr)
        return 1

    logger.set_enabled(config.enable_json_logs)
    # Third-party loggers (websockets) follow LOG_LEVEL; our events stay JSONL
    logging.basicConfig(level=config.log_level)
    args = _build_parser(config).parse_args(argv)

    log_event({
        "ts_ms": now_ms(),
        "event_type": "CLIENT_STARTED",
        "env": config.env,
        "log_level": config.log_level,
        "url": args.url,
        "source": str(args.wav) if args.wav is not None else "microphone",
    })

    try:
        return asyncio.run(run(args, config))
    except ResourceAcquisitionFailure as e:
        print(f"cannot open audio source: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
