"""Command-line interface for track_recorder.

Run:
    python -m track_recorder list
    python -m track_recorder record --name "Morning walk" --replay sample_data/walk.gpx
    python -m track_recorder export --id <track id> --format gpx --out-dir exports
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from track_recorder.codec import export_track, import_track, parse_track_text
from track_recorder.config import DEFAULT_STORE_PATH, RecorderConfig
from track_recorder.errors import StorageError
from track_recorder.location import BackgroundRecorder, ReplayLocationSource
from track_recorder.models import DEFAULT_TZ, Track
from track_recorder.repository import TrackRepository
from track_recorder.scheduler import ManualScheduler
from track_recorder.session import RecordingSession
from track_recorder.stats import calculate_extended_stats, format_distance, format_duration
from track_recorder.storage import JsonFileStore
from track_recorder.timeutils import dt_from_epoch_ms


def _open_repo(args: argparse.Namespace) -> tuple[JsonFileStore, TrackRepository]:
    store = JsonFileStore(args.store)
    store.load()
    return store, TrackRepository(store)


def _local(ms: int, tz: str) -> str:
    return dt_from_epoch_ms(ms, tz).isoformat(sep=" ", timespec="seconds")


def _track_line(track: Track, tz: str) -> str:
    state = "complete" if track.is_complete else "in progress"
    return (
        f"{track.id}  {track.name!r}  points={len(track.locations)}  "
        f"distance={format_distance(track.total_distance)}  duration={format_duration(track.duration)}  "
        f"created={_local(track.created_at, tz)}  [{state}]"
    )


def _cmd_list(args: argparse.Namespace) -> int:
    _, repo = _open_repo(args)
    tracks = repo.find_tracks(args.query) if args.query else repo.get_all_tracks()
    if not tracks:
        print("No saved tracks")
        return 0
    for track in tracks:
        print(_track_line(track, args.tz))
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    _, repo = _open_repo(args)
    track = repo.get_track(args.id)
    if track is None:
        print(f"Track not found: {args.id}", file=sys.stderr)
        return 1

    st = calculate_extended_stats(track.locations)
    print(_track_line(track, args.tz))
    print(f"last_modified={_local(track.last_modified, args.tz)}")
    print(
        f"elevation_gain={st.elevation_gain:.1f}m  elevation_loss={st.elevation_loss:.1f}m  "
        f"altitude=[{st.altitude_min}, {st.altitude_max}]"
    )
    print(f"max_speed={st.max_speed * 3.6:.1f}km/h  avg_speed={st.avg_speed:.1f}km/h")

    if args.json:
        print(json.dumps(track.to_dict(), ensure_ascii=False, indent=2))
    return 0


def _cmd_export(args: argparse.Namespace) -> int:
    _, repo = _open_repo(args)
    track = repo.get_track(args.id)
    if track is None:
        print(f"Track not found: {args.id}", file=sys.stderr)
        return 1

    result = export_track(track, args.format, tz_name=args.tz)
    if not result.ok:
        print(result.message, file=sys.stderr)
        return 1

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / result.filename
    out_path.write_text(result.content, encoding="utf-8")
    print(f"{result.message}: {out_path}")
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    path = Path(args.file)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Cannot read {path}: {exc}", file=sys.stderr)
        return 1

    result = import_track(text, path.name)
    if result.track is None:
        print(result.message, file=sys.stderr)
        return 1

    store, repo = _open_repo(args)
    if not repo.save_track(result.track):
        print("Failed to save the imported track", file=sys.stderr)
        return 1
    store.flush()
    print(f"{result.message} as {result.track.name!r} (id={result.track.id})")
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    store, repo = _open_repo(args)
    if repo.get_track(args.id) is None:
        print(f"Track not found: {args.id}", file=sys.stderr)
        return 1
    if not repo.delete_track(args.id):
        print(f"Failed to delete {args.id}", file=sys.stderr)
        return 1
    store.flush()
    print(f"Deleted {args.id}")
    return 0


def _load_replay(path_str: str):
    path = Path(path_str)
    return parse_track_text(path.read_text(encoding="utf-8"), path.name)


def _cmd_record(args: argparse.Namespace) -> int:
    try:
        samples = _load_replay(args.replay)
        background_samples = _load_replay(args.background) if args.background else []
    except (OSError, ValueError) as exc:
        print(f"Cannot load replay input: {exc}", file=sys.stderr)
        return 1
    if not samples:
        print(f"No valid location data in {args.replay}", file=sys.stderr)
        return 1

    config = RecorderConfig(auto_save_interval_s=args.auto_save_seconds)
    store, repo = _open_repo(args)
    scheduler = ManualScheduler()
    base_ms = samples[0].timestamp
    source = ReplayLocationSource(samples, scheduler=scheduler)
    background_source = ReplayLocationSource(background_samples)
    background = BackgroundRecorder(repo, background_source, config) if args.background else None
    session = RecordingSession(
        repo,
        source,
        scheduler,
        background=background,
        config=config,
        clock=lambda: base_ms + int(scheduler.now * 1000),
    )

    started = session.start(args.name)
    if not started.ok:
        print(started.message, file=sys.stderr)
        return 1

    # Both streams are replayed in timestamp order; background fixes go to the mirror
    # and the foreground ticks merge them.
    while source.remaining:
        bg_next = background_source.next_timestamp
        fg_next = source.next_timestamp
        if background is not None and bg_next is not None and fg_next is not None and bg_next < fg_next:
            background_source.play(limit=1)
        else:
            source.play(limit=1)
    if background is not None:
        background_source.play()

    if args.no_stop:
        session.auto_save()
        store.flush()
        print(
            f"Left {started.track_id} recording with {len(session.locations)} points "
            "(use 'recover' to pick it up)"
        )
        return 0

    stopped = session.stop()
    store.flush()
    if not stopped.ok:
        print(stopped.message, file=sys.stderr)
        return 1
    track = repo.get_track(stopped.track_id or "")
    if track is not None:
        print(_track_line(track, args.tz))
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    _, repo = _open_repo(args)
    marker = repo.get_marker()
    if marker is None:
        print("No recording in progress")
    else:
        print(
            f"track_id={marker.track_id}  name={marker.track_name!r}  phase={marker.phase.value}  "
            f"started={_local(marker.started_at, args.tz)}"
        )
    print(f"background_pending={len(repo.get_background_samples())}")
    return 0


def _cmd_recover(args: argparse.Namespace) -> int:
    store, repo = _open_repo(args)
    session = RecordingSession(repo, ReplayLocationSource([]), ManualScheduler())
    recovered = session.recover()
    print(recovered.message)
    if args.stop and session.active_track_id is not None:
        stopped = session.stop()
        print(stopped.message)
        if not stopped.ok:
            store.flush()
            return 1
    store.flush()
    return 0 if recovered.ok else 1


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    p = argparse.ArgumentParser(prog="track_recorder")
    p.add_argument("--store", type=str, default=DEFAULT_STORE_PATH, help="Track store file (JSON snapshot + journal)")
    p.add_argument("--tz", type=str, default=DEFAULT_TZ, help="Display timezone (IANA), default UTC")
    p.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ls = sub.add_parser("list", help="List saved tracks, newest first")
    p_ls.add_argument("--query", type=str, default="", help="Only tracks whose name contains this text")
    p_ls.set_defaults(func=_cmd_list)

    p_show = sub.add_parser("show", help="Show one track with extended statistics")
    p_show.add_argument("--id", type=str, required=True, help="Track id")
    p_show.add_argument("--json", action="store_true", help="Also print the stored JSON record")
    p_show.set_defaults(func=_cmd_show)

    p_exp = sub.add_parser("export", help="Export a track as KML or GPX")
    p_exp.add_argument("--id", type=str, required=True, help="Track id")
    p_exp.add_argument("--format", type=str, default="gpx", choices=["kml", "gpx"], help="Output format")
    p_exp.add_argument("--out-dir", type=str, default=".", help="Directory for the exported file")
    p_exp.set_defaults(func=_cmd_export)

    p_imp = sub.add_parser("import", help="Import a KML or GPX file as a new track")
    p_imp.add_argument("--file", type=str, required=True, help="Path to a .kml or .gpx file")
    p_imp.set_defaults(func=_cmd_import)

    p_del = sub.add_parser("delete", help="Delete a track")
    p_del.add_argument("--id", type=str, required=True, help="Track id")
    p_del.set_defaults(func=_cmd_delete)

    p_rec = sub.add_parser("record", help="Record a track by replaying a KML/GPX file as the location source")
    p_rec.add_argument("--name", type=str, required=True, help="Track name")
    p_rec.add_argument("--replay", type=str, required=True, help="Foreground fixes (.kml/.gpx)")
    p_rec.add_argument("--background", type=str, default=None, help="Background-stream fixes (.kml/.gpx)")
    p_rec.add_argument(
        "--auto-save-seconds",
        type=float,
        default=RecorderConfig().auto_save_interval_s,
        help="Auto-save interval on the replay clock",
    )
    p_rec.add_argument(
        "--no-stop",
        action="store_true",
        help="Leave the recording in progress, as if the process had been killed",
    )
    p_rec.set_defaults(func=_cmd_record)

    p_st = sub.add_parser("status", help="Show the in-progress recording marker and background buffer")
    p_st.set_defaults(func=_cmd_status)

    p_rcv = sub.add_parser("recover", help="Resume a recording left in progress by a previous run")
    p_rcv.add_argument("--stop", action="store_true", help="Finish and save the recovered track")
    p_rcv.set_defaults(func=_cmd_recover)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    try:
        return int(args.func(args))
    except StorageError as exc:
        print(f"Storage error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
