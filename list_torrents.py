#!/usr/bin/env python3
"""List torrents of the default (or given) profile, optionally watching for changes."""

import argparse
import sys
import threading

from loguru import logger

from backend_errors import BackendError
from config_manager import ConfigManager
from log_config import setup_logging
from session_manager import BackendSession, create_adapter
from torrent_models import ETA_UNKNOWN, TorrentState

STATUS_LABELS = {
    TorrentState.DOWNLOADING: "Downloading",
    TorrentState.SEEDING: "Seeding",
    TorrentState.PAUSED: "Paused",
    TorrentState.QUEUED: "Queued",
    TorrentState.CHECKING: "Checking",
    TorrentState.ERROR: "Error",
}


def format_size(bytes_size):
    """Format bytes to human readable."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_size < 1024.0:
            return f"{bytes_size:.2f} {unit}"
        bytes_size /= 1024.0
    return f"{bytes_size:.2f} PB"


def format_time(seconds):
    """Format seconds to time string."""
    if seconds == ETA_UNKNOWN or seconds >= 8640000:
        return "∞"
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    elif minutes > 0:
        return f"{minutes}m {secs}s"
    else:
        return f"{secs}s"


def format_swarm(best, total):
    if total is None:
        return str(best)
    return f"{best} ({total})"


def format_rows(snapshot):
    rows = ["Name | Size | Status | Done | Time Left | Seeds | Peers", "-" * 80]
    for t in sorted(snapshot.torrents.values(), key=lambda t: t.name.lower()):
        rows.append(" | ".join([
            t.name[:50],
            format_size(t.size),
            STATUS_LABELS.get(t.state, str(t.state)),
            f"{t.progress * 100:.1f}%",
            format_time(t.eta),
            format_swarm(t.num_seeds, t.total_seeds),
            format_swarm(t.num_peers, t.total_peers),
        ]))
    return rows


def resolve_profile(config, profile_id=None):
    profiles = config.get_profiles()
    pid = profile_id or config.get_default_profile_id()
    if not pid or pid not in profiles:
        return None
    return profiles[pid]


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--profile", help="profile id (defaults to the configured default)")
    parser.add_argument("--watch", action="store_true", help="keep polling and reprint on every update")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    config = ConfigManager()
    setup_logging(args.log_level or config.get_log_level())

    profile = resolve_profile(config, args.profile)
    if profile is None:
        print("No default profile set or invalid.")
        return 1

    polling = config.get_polling_settings()
    if not args.watch:
        adapter = create_adapter(
            profile,
            preserve_missing_sections=polling["preserve_missing_sections"],
            timeout=polling["request_timeout"],
        )
        try:
            snapshot = adapter.fetch_list()
        except BackendError as e:
            logger.error("Could not list torrents: {}", e)
            return 2
        finally:
            adapter.transport.close()
        print(f"Found {len(snapshot.torrents)} torrents")
        print("\n".join(format_rows(snapshot)))
        return 0

    stopped = threading.Event()
    session = BackendSession(polling=polling)
    session.add_update_listener(lambda snap: print("\n".join(format_rows(snap)) + "\n"))
    session.add_fatal_listener(lambda exc: stopped.set())
    session.connect(profile)
    try:
        stopped.wait()
    except KeyboardInterrupt:
        pass
    finally:
        session.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(main())
