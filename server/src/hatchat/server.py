"""Command line entry point: run the room server or replay frames offline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Iterable, TextIO

from .colors import ColorDirectory
from .config import Settings, load_settings_from_env
from .hub import ConnectionHub, Frame
from .log import MessageLog
from .presence import ConnectionNotFound, ConnectionRegistry, HandshakeError
from .router import EventRouter, InvalidTransition
from .storage import InMemoryDocumentStore, JsonFileStore
from .transcripts import TranscriptArchive
from .ws_transport import run


def simulate(frames: Iterable[dict], output: TextIO, *, page_size: int = 20) -> EventRouter:
    """Run frames through an in-memory room and write every delivery as a JSON line.

    Frames look like ``{"conn": "a", "event": "chat_message", "data": {...}}``;
    the ``connect`` and ``disconnect`` events stand in for the transport.
    """

    colors = ColorDirectory(InMemoryDocumentStore({}))
    log = MessageLog(InMemoryDocumentStore([]))
    registry = ConnectionRegistry(colors)
    hub = ConnectionHub()
    router = EventRouter(registry=registry, log=log, colors=colors, hub=hub, page_size=page_size)

    def callback_for(connection_id: str) -> Callable[[Frame], None]:
        def _callback(frame: Frame, conn: str = connection_id) -> None:
            output.write(json.dumps({"to": conn, **frame}) + "\n")

        return _callback

    def report(connection_id: str, event: str, message: str) -> None:
        output.write(json.dumps({"to": connection_id, "event": event, "data": {"message": message}}) + "\n")

    for frame in frames:
        if not isinstance(frame, dict):
            raise ValueError(f"frame must be an object: {frame!r}")
        connection_id = frame.get("conn")
        event = frame.get("event")
        data = frame.get("data")
        if not isinstance(connection_id, str) or not isinstance(event, str):
            raise ValueError(f"frame requires conn and event: {frame!r}")
        if event == "connect":
            if data is None:
                data = {}
            if not isinstance(data, dict):
                report(connection_id, "connect_error", "connect data must be an object")
                continue
            try:
                router.connect(connection_id, data.get("username"), data.get("color"), callback_for(connection_id))
            except (HandshakeError, InvalidTransition) as exc:
                report(connection_id, "connect_error", str(exc))
        elif event == "disconnect":
            try:
                router.disconnect(connection_id)
            except ConnectionNotFound:
                report(connection_id, "error", f"connection {connection_id} is not active")
        else:
            try:
                router.handle(connection_id, event, data)
            except InvalidTransition as exc:
                report(connection_id, "error", str(exc))
    return router


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{raw!r} is not an integer") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"{raw!r} must be positive")
    return value


def _load_frames(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run_simulation(args: argparse.Namespace, settings: Settings, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    simulate(frames, output, page_size=settings.page_size)
    return 0


def _run_serve(args: argparse.Namespace, settings: Settings) -> int:
    settings = settings.with_overrides(
        host=args.host,
        port=args.port,
        data_dir=Path(args.data_dir) if args.data_dir else None,
        ping_interval_s=args.ping_interval,
        page_size=args.page_size,
    )
    run(settings)
    return 0


def _run_transcripts(args: argparse.Namespace, settings: Settings, output: TextIO) -> int:
    archive = TranscriptArchive(JsonFileStore(settings.saved_chats_path))
    if args.action == "export":
        payload = archive.export_json()
        if args.out:
            target = Path(args.out)
            if target.is_dir():
                target = target / archive.export_filename()
            target.write_text(payload + "\n", encoding="utf-8")
            output.write(f"{target}\n")
        else:
            output.write(payload + "\n")
        return 0

    payload = args.file.read()
    return 0 if archive.import_json(payload) else 1


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]
    output = output or sys.stdout

    parser = argparse.ArgumentParser(prog="hatchat", description="Single-room chat server")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp chat server")
    serve_parser.add_argument("--host", default=None, help="Host to bind")
    serve_parser.add_argument("--port", type=_positive_int, default=None, help="Port to bind")
    serve_parser.add_argument("--data-dir", default=None, help="Directory holding the JSON documents")
    serve_parser.add_argument("--ping-interval", type=_positive_int, default=None, help="Seconds between heartbeat pings")
    serve_parser.add_argument("--page-size", type=_positive_int, default=None, help="History page size")

    simulate_parser = subparsers.add_parser("simulate", help="Replay room frames without a network")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )

    transcripts_parser = subparsers.add_parser("transcripts", help="Export or import saved chats")
    transcript_actions = transcripts_parser.add_subparsers(dest="action", required=True)
    export_parser = transcript_actions.add_parser("export", help="Write saved chats as JSON")
    export_parser.add_argument("-o", "--out", default=None, help="File or directory; defaults to stdout")
    import_parser = transcript_actions.add_parser("import", help="Replace saved chats from a JSON array")
    import_parser.add_argument("file", type=argparse.FileType("r"), help="JSON file to import")

    args = parser.parse_args(argv)

    settings = load_settings_from_env()
    _configure_logging(settings.log_level)

    if args.command == "simulate":
        return _run_simulation(args, settings, output)
    if args.command == "transcripts":
        return _run_transcripts(args, settings, output)
    return _run_serve(args, settings)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
