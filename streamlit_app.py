from __future__ import annotations

from pathlib import Path

import streamlit as st

from track_recorder.codec import export_track, import_track, samples_for_display
from track_recorder.config import DEFAULT_STORE_PATH
from track_recorder.models import DEFAULT_TZ, Track
from track_recorder.repository import TrackRepository
from track_recorder.stats import (
    calculate_extended_stats,
    format_distance,
    format_duration,
    playback_position,
)
from track_recorder.storage import JsonFileStore
from track_recorder.timeutils import dt_from_epoch_ms


def _store_mtime(store_path: str) -> tuple[float, float]:
    """Snapshot and journal mtimes; both change whenever the store is written."""

    store = JsonFileStore(store_path)
    journal = store.path.with_name(f"{store.path.stem}.journal.jsonl")
    snap = store.path.stat().st_mtime if store.path.exists() else 0.0
    jrnl = journal.stat().st_mtime if journal.exists() else 0.0
    return snap, jrnl


def _open_repo(store_path: str) -> tuple[JsonFileStore, TrackRepository]:
    store = JsonFileStore(store_path)
    store.load()
    return store, TrackRepository(store)


@st.cache_data(show_spinner=False)
def _load_tracks(store_path: str, query: str, mtime: tuple[float, float]) -> list[Track]:
    _ = mtime  # part of cache key so a changed store reloads automatically
    _, repo = _open_repo(store_path)
    return repo.find_tracks(query)


def _local(ms: int, tz_name: str) -> str:
    return dt_from_epoch_ms(ms, tz_name).isoformat(sep=" ", timespec="seconds")


def _track_rows(tracks: list[Track], tz_name: str) -> list[dict[str, object]]:
    return [
        {
            "name": t.name,
            "created": _local(t.created_at, tz_name),
            "points": len(t.locations),
            "distance": format_distance(t.total_distance),
            "duration": format_duration(t.duration),
            "complete": t.is_complete,
            "id": t.id,
        }
        for t in tracks
    ]


def _show_track(track: Track, tz_name: str) -> None:
    stats = calculate_extended_stats(track.locations)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Distance", format_distance(stats.distance))
    c2.metric("Duration", format_duration(stats.duration))
    c3.metric("Avg speed", f"{stats.avg_speed:.1f} km/h")
    c4.metric("Max speed", f"{stats.max_speed * 3.6:.1f} km/h")

    c5, c6, c7 = st.columns(3)
    c5.metric("Elevation gain", f"{stats.elevation_gain:.0f} m")
    c6.metric("Elevation loss", f"{stats.elevation_loss:.0f} m")
    if stats.altitude_min is not None and stats.altitude_max is not None:
        c7.metric("Altitude", f"{stats.altitude_min:.0f} to {stats.altitude_max:.0f} m")
    else:
        c7.metric("Altitude", "unknown")

    if track.locations:
        st.map(samples_for_display(track.locations))

    if len(track.locations) > 1:
        idx = st.slider("Playback", min_value=0, max_value=len(track.locations) - 1, value=0)
        pos = playback_position(track.locations, idx)
        if pos is not None:
            st.caption(
                f"{_local(pos.location.timestamp, tz_name)} · {pos.progress * 100:.0f}% · "
                f"{format_duration(pos.time_elapsed)} elapsed · {format_distance(pos.distance_traveled)} travelled"
            )

    d1, d2 = st.columns(2)
    for col, fmt in ((d1, "kml"), (d2, "gpx")):
        result = export_track(track, fmt, tz_name=tz_name)
        if result.ok:
            col.download_button(
                f"Download {fmt.upper()}",
                data=result.content,
                file_name=result.filename,
                mime=result.mime_type,
                use_container_width=True,
            )
        else:
            col.info(result.message)


def main() -> None:
    st.set_page_config(page_title="Track recorder", layout="wide")
    st.title("Track recorder: saved tracks")

    with st.sidebar:
        st.subheader("Store and timezone")
        tz_name = st.text_input("Timezone (IANA)", value=DEFAULT_TZ)
        store_path = st.text_input("Track store path", value=DEFAULT_STORE_PATH)

        st.subheader("Import")
        uploaded = st.file_uploader("KML or GPX file", type=["kml", "gpx"])
        if uploaded is not None and st.button("Import track", type="primary", use_container_width=True):
            text = uploaded.getvalue().decode("utf-8", errors="replace")
            result = import_track(text, uploaded.name)
            if result.track is None:
                st.error(result.message)
            else:
                store, repo = _open_repo(store_path)
                if repo.save_track(result.track):
                    store.flush()
                    st.success(f"{result.message} as {result.track.name!r}")
                else:
                    st.error("Failed to save the imported track")

        query = st.text_input("Search by name", value="")

    if not Path(store_path).exists() and not Path(store_path).with_name(
        f"{Path(store_path).stem}.journal.jsonl"
    ).exists():
        st.info(f"No track store at {store_path!r} yet. Record or import a track first.")
        return

    try:
        tracks = _load_tracks(store_path, query, _store_mtime(store_path))
    except Exception as exc:
        st.exception(exc)
        return

    st.subheader(f"Tracks ({len(tracks)})")
    if not tracks:
        st.info("No tracks match." if query else "No saved tracks.")
        return
    st.dataframe(_track_rows(tracks, tz_name), use_container_width=True, height=280)

    labels = {t.id: f"{t.name} · {_local(t.created_at, tz_name)}" for t in tracks}
    selected_id = st.selectbox("Track", options=list(labels), format_func=labels.__getitem__)
    track = next(t for t in tracks if t.id == selected_id)

    st.subheader(track.name)
    _show_track(track, tz_name)

    with st.expander("Delete track", expanded=False):
        if st.button(f"Delete {track.name!r}", type="secondary"):
            store, repo = _open_repo(store_path)
            if repo.delete_track(track.id):
                store.flush()
                st.success("Deleted")
                st.rerun()
            else:
                st.error("Failed to delete the track")

    st.caption("Tracks are read from the JSON store written by `python -m track_recorder`.")


if __name__ == "__main__":
    main()
