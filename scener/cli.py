from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TextIO

from .clipboard import Clipboard, NullClipboard, copy_quietly
from .config import ScenerConfig, load_config
from .control import ControlChannel
from .controller import PlaybackController, resume_session
from .dirs import ScenerDirs, resolve_dirs
from .errors import (
    InvalidSceneFormat,
    InvalidSnapshotFormat,
    ReferenceNotFound,
    SceneNotFound,
    ScenerError,
    SessionNotFound,
)
from .models import Scene
from .operator import HELP_TEXT, LineSource, OperatorListener, ReadlineLineSource, StaticLineSource
from .persistence import SnapshotStore
from .printer import print_session, print_session_brief, print_session_script, session_script
from .recorder import RECORDER_HELP, SceneRecorder
from .reference import resolve_references
from .session import Session, SessionStatus
from .shell import ShellBridge
from .store import SceneStore, read_script_files, scene_from_script

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_FOUND = 2
EXIT_ABORTED = 3
EXIT_ERROR = 4

BRIEF_STEPS = 5

_NOT_FOUND_ERRORS = (
    SceneNotFound,
    InvalidSceneFormat,
    SessionNotFound,
    InvalidSnapshotFormat,
    ReferenceNotFound,
)

_STATUS_EXIT_CODES = {
    SessionStatus.COMPLETED: EXIT_OK,
    SessionStatus.PAUSED: EXIT_OK,
    SessionStatus.FAILED: EXIT_FAILED,
    SessionStatus.ABORTED: EXIT_ABORTED,
}


@dataclass
class _Context:
    config: ScenerConfig
    dirs: ScenerDirs
    scenes: SceneStore
    snapshots: SnapshotStore
    stdout: TextIO
    stderr: TextIO
    line_source: Optional[LineSource] = None


def _positive_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {raw}") from None
    if value <= 0:
        raise argparse.ArgumentTypeError("must be positive")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="scener", description="Replay shell scenes with simulated typing")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    sub = parser.add_subparsers(dest="action", required=True)

    play = sub.add_parser("play", help="Play a scene")
    play.add_argument("scene", help="Scene name or scene file path")
    play.add_argument("--speed", type=_positive_float, default=None, help="Typing speed multiplier")
    play.add_argument("--seed", type=int, default=None, help="Jitter seed for a reproducible run")
    play.add_argument("--no-interactive", action="store_true", help="Disable operator keys")
    play.add_argument("-c", "--copy", action="store_true", help="Copy the typed commands to the clipboard on completion")

    record = sub.add_parser("record", help="Author a scene from live input")
    record.add_argument("scene", help="Scene name")
    record.add_argument("--description", default=None)
    record.add_argument("--no-interactive", action="store_true", help="Read steps from stdin without a shell")

    resume = sub.add_parser("resume", help="Resume a paused session")
    resume.add_argument("session", nargs="?", default="@", help="Session id or @N (default: newest)")
    resume.add_argument("--speed", type=_positive_float, default=None)
    resume.add_argument("--no-interactive", action="store_true")
    resume.add_argument("-c", "--copy", action="store_true", help="Copy the typed commands to the clipboard on completion")

    imp = sub.add_parser("import", help="Create a scene from shell script files")
    imp.add_argument("files", nargs="+", help="Script files")
    imp.add_argument("--name", required=True, help="Scene name")
    imp.add_argument("--description", default=None)

    ls = sub.add_parser("list", aliases=["ls"], help="List sessions or scenes")
    ls.add_argument("-f", "--full", action="store_true", help="Show every step")
    ls.add_argument("-n", "--limit", type=int, default=10, help="Sessions to show")
    ls.add_argument("--scenes", action="store_true", help="List scenes instead of sessions")

    show = sub.add_parser("show", help="Show session transcripts")
    show.add_argument("session", nargs="*", help="Session ids or @N (default: newest)")
    show.add_argument("-s", "--script", action="store_true", help="Print only the typed commands")
    show.add_argument("-c", "--copy", action="store_true", help="Copy the commands to the clipboard")

    rm = sub.add_parser("remove", aliases=["rm"], help="Remove sessions")
    rm.add_argument("session", nargs="*")
    rm.add_argument("--all", action="store_true")
    return parser


def configure_logging(verbosity: int, default_level: str) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = getattr(logging, default_level, logging.WARNING)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _display_for(stream: TextIO) -> Callable[[bytes], None]:
    buffer = getattr(stream, "buffer", None)

    def display(chunk: bytes) -> None:
        if buffer is not None:
            stream.flush()
            buffer.write(chunk)
            buffer.flush()
        else:
            stream.write(chunk.decode("utf-8", errors="replace"))
            stream.flush()

    return display


def _bridge(ctx: _Context) -> ShellBridge:
    return ShellBridge(ctx.config.shell)


def _clipboard(ctx: _Context) -> Clipboard | NullClipboard:
    return Clipboard() if ctx.config.clipboard else NullClipboard()


def _operator_source(ctx: _Context) -> LineSource:
    if ctx.line_source is not None:
        return ctx.line_source
    if ctx.config.readline:
        return ReadlineLineSource(ctx.dirs.history_file)
    return StaticLineSource(line.rstrip("\n") for line in sys.stdin)


def _event_printer(ctx: _Context) -> Callable[[str, Dict[str, Any]], None]:
    def emit(event: str, payload: Dict[str, Any]) -> None:
        if event == "comment":
            ctx.stderr.write(f"\n# {payload.get('text', '')}\n")
        elif event == "marker":
            ctx.stderr.write(f"\n-- {payload.get('label', '')} --\n")
        elif event == "session_paused":
            ctx.stderr.write(f"\n[paused at step {payload['step_index']}] {HELP_TEXT}\n")
        elif event == "session_resumed":
            ctx.stderr.write("[running]\n")

    return emit


def _run_session(ctx: _Context, scene: Scene, session: Session, interactive: bool, copy: bool = False) -> int:
    channel = ControlChannel()
    controller = PlaybackController(
        scene,
        bridge=_bridge(ctx),
        persistence=ctx.snapshots,
        channel=channel,
        display=_display_for(ctx.stdout),
        event_emitter=_event_printer(ctx),
        settle_seconds=ctx.config.settle_seconds,
        settle_timeout=ctx.config.settle_timeout,
        terminate_timeout=ctx.config.terminate_timeout,
    )
    listener: Optional[OperatorListener] = None
    source: Optional[LineSource] = None
    if interactive:
        source = _operator_source(ctx)
        listener = OperatorListener(source, channel).start()
        ctx.stderr.write(f"{HELP_TEXT}\n")
    try:
        controller.play(session)
    finally:
        if listener is not None:
            listener.stop()
        close = getattr(source, "close", None)
        if callable(close):
            close()

    ctx.stderr.write(f"\nsession {session.session_id} {session.status.value}\n")
    if session.status == SessionStatus.PAUSED:
        ctx.stderr.write(f"resume with: scener resume {session.session_id}\n")
    if session.status == SessionStatus.FAILED and session.failure_reason:
        ctx.stderr.write(f"error: {session.failure_reason}\n")
    if copy and session.status == SessionStatus.COMPLETED:
        if copy_quietly(_clipboard(ctx), session_script(session)):
            ctx.stderr.write("copied to clipboard\n")
    return _STATUS_EXIT_CODES.get(session.status, EXIT_ERROR)


def cmd_play(ctx: _Context, args: argparse.Namespace) -> int:
    scene = ctx.scenes.load_scene(args.scene)
    external = ctx.scenes.external_path(args.scene)
    speed = args.speed or ctx.config.speed
    session = Session.for_scene(
        scene,
        seed=args.seed,
        speed=speed,
        scene_path=str(external) if external is not None else None,
    )
    return _run_session(ctx, scene, session, interactive=not args.no_interactive, copy=args.copy)


def cmd_resume(ctx: _Context, args: argparse.Namespace) -> int:
    session_id = resolve_references([args.session], ctx.snapshots.list_session_ids())[0]
    session, scene = resume_session(session_id, ctx.snapshots, ctx.scenes, speed=args.speed)
    return _run_session(ctx, scene, session, interactive=not args.no_interactive, copy=args.copy)


def _next_version(ctx: _Context, scene: Scene) -> Scene:
    if not ctx.scenes.exists(scene.name):
        return scene
    try:
        previous = ctx.scenes.load_scene(scene.name)
    except InvalidSceneFormat as exc:
        logger.warning("Overwriting unreadable scene %s: %s", scene.name, exc)
        return scene
    return scene.model_copy(update={"version": previous.version + 1})


def cmd_record(ctx: _Context, args: argparse.Namespace) -> int:
    if args.no_interactive:
        source: LineSource = ctx.line_source or StaticLineSource(line.rstrip("\n") for line in sys.stdin)
        recorder = SceneRecorder(source)
    else:
        source = _operator_source(ctx)
        ctx.stderr.write(f"{RECORDER_HELP}\n")
        recorder = SceneRecorder(
            source,
            bridge=_bridge(ctx),
            display=_display_for(ctx.stdout),
            settle_seconds=ctx.config.settle_seconds,
            settle_timeout=ctx.config.settle_timeout,
            terminate_timeout=ctx.config.terminate_timeout,
        )
    try:
        scene = recorder.record(args.scene, timing=ctx.config.timing, description=args.description)
    finally:
        close = getattr(source, "close", None)
        if callable(close):
            close()
    scene = _next_version(ctx, scene)
    path = ctx.scenes.save_scene(scene)
    ctx.stderr.write(f"scene {scene.name} v{scene.version} recorded ({len(scene.steps)} steps) at {path}\n")
    return EXIT_OK


def cmd_import(ctx: _Context, args: argparse.Namespace) -> int:
    lines = read_script_files(args.files)
    scene = scene_from_script(args.name, lines, timing=ctx.config.timing, description=args.description)
    scene = _next_version(ctx, scene)
    path = ctx.scenes.save_scene(scene)
    ctx.stderr.write(f"scene {scene.name} v{scene.version} imported ({len(scene.steps)} steps) at {path}\n")
    return EXIT_OK


def cmd_list(ctx: _Context, args: argparse.Namespace) -> int:
    if args.scenes:
        for name in ctx.scenes.list_scenes():
            ctx.stdout.write(name + "\n")
        return EXIT_OK
    session_ids = ctx.snapshots.list_session_ids()
    limit = min(max(0, args.limit), len(session_ids))
    for key, session_id in enumerate(session_ids[:limit], start=1):
        session = ctx.snapshots.load_session_snapshot(session_id)
        print_session_brief(session, key, None if args.full else BRIEF_STEPS, ctx.stdout)
        ctx.stdout.write("\n")
    ctx.stdout.write(f"({limit} / {len(session_ids)} sessions)\n")
    return EXIT_OK


def cmd_show(ctx: _Context, args: argparse.Namespace) -> int:
    references = args.session or ["@"]
    session_ids = resolve_references(references, ctx.snapshots.list_session_ids())
    scripts: List[str] = []
    for position, session_id in enumerate(session_ids):
        if position:
            ctx.stdout.write("\n")
        session = ctx.snapshots.load_session_snapshot(session_id)
        if args.script:
            print_session_script(session, ctx.stdout, ctx.stderr)
        else:
            print_session(session, ctx.stdout, ctx.stderr)
        scripts.append(session_script(session))
    if args.copy:
        if copy_quietly(_clipboard(ctx), "".join(scripts)):
            ctx.stderr.write("copied to clipboard\n")
    return EXIT_OK


def cmd_remove(ctx: _Context, args: argparse.Namespace) -> int:
    available = ctx.snapshots.list_session_ids()
    if args.all:
        targets = available
    elif args.session:
        targets = resolve_references(args.session, available)
    else:
        ctx.stderr.write("nothing to remove: name sessions or pass --all\n")
        return EXIT_ERROR
    for session_id in dict.fromkeys(targets):
        ctx.snapshots.remove_session(session_id)
        ctx.stderr.write(f"removed {session_id}\n")
    return EXIT_OK


_COMMANDS = {
    "play": cmd_play,
    "record": cmd_record,
    "resume": cmd_resume,
    "import": cmd_import,
    "list": cmd_list,
    "ls": cmd_list,
    "show": cmd_show,
    "remove": cmd_remove,
    "rm": cmd_remove,
}


def main(
    argv: Optional[Sequence[str]] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    line_source: Optional[LineSource] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
) -> int:
    args = build_parser().parse_args(argv)
    dirs = resolve_dirs(env)
    config = load_config(dirs.config_file, env)
    configure_logging(args.verbose, config.log_level)
    ctx = _Context(
        config=config,
        dirs=dirs,
        scenes=SceneStore(dirs.scenes_dir),
        snapshots=SnapshotStore(dirs.sessions_dir),
        stdout=stdout or sys.stdout,
        stderr=stderr or sys.stderr,
        line_source=line_source,
    )
    try:
        return _COMMANDS[args.action](ctx, args)
    except _NOT_FOUND_ERRORS as exc:
        ctx.stderr.write(f"error: {exc}\n")
        return EXIT_NOT_FOUND
    except ScenerError as exc:
        ctx.stderr.write(f"error: {exc}\n")
        return EXIT_ERROR
    except KeyboardInterrupt:
        ctx.stderr.write("interrupted\n")
        return EXIT_ABORTED


if __name__ == "__main__":
    raise SystemExit(main())
