"""
CLI entrypoint for practicelog.

`/main.py` delegates to `practicelog.cli.main()` to keep service scripts stable.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from practicelog.announcer import NullAnnouncer, SpeechAnnouncer
from practicelog.audio import AudioSourceUnavailable, MicrophoneSource
from practicelog.classifier import ClassifierUnavailable, load_classifier
from practicelog.database import PracticeDatabase
from practicelog.session import format_practice_duration
from practicelog.tracker import PracticeTracker
import practicelog.config as config


def _configure_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler("practice_tracker.log"),
            logging.StreamHandler(sys.stdout),
        ],
    )


def _parse_device(value: Optional[str]):
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Practice Log - microphone practice timer")
    parser.add_argument("--goal", type=int, default=None, metavar="MINUTES",
                        help="Practice goal in minutes for this session (0 disables)")
    parser.add_argument("--grace-period", type=float, default=None, metavar="SECONDS",
                        help="Silence tolerated before a practice run ends")
    parser.add_argument("--auto-end", type=float, default=None, metavar="MINUTES",
                        help="End the session after this long without practice")
    parser.add_argument("--classifier", type=str, default=None, metavar="MODULE:FACTORY",
                        help="Classifier factory to use instead of the built-in detector")
    parser.add_argument("--device", type=str, default=None,
                        help="Audio input device (index or name)")
    parser.add_argument("--db", type=str, default=config.DATABASE_PATH, help="Database file")
    parser.add_argument("--no-web", action="store_true", help="Do not start the web server")
    parser.add_argument("--port", type=int, default=config.WEB_PORT, help="Web server port")
    parser.add_argument("--no-speech", action="store_true", help="Do not speak progress announcements")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--show-sessions", action="store_true", help="Show recent sessions and exit")
    parser.add_argument("--show-summary", action="store_true", help="Show daily summary and exit")
    parser.add_argument("--clear-database", action="store_true", help="Clear all practice sessions from database")
    return parser


def _config_overrides(args) -> dict:
    overrides = {}
    if args.goal is not None:
        overrides["goal_minutes"] = args.goal
    if args.grace_period is not None:
        overrides["grace_period_ms"] = int(args.grace_period * 1000)
    if args.auto_end is not None:
        overrides["auto_end_threshold_ms"] = int(args.auto_end * 60 * 1000)
    return overrides


def _clear_database(db: PracticeDatabase):
    count = len(db.get_recent_sessions(limit=999999))

    if count == 0:
        print("\nDatabase is already empty.")
        return

    print(f"\n⚠️  WARNING: This will delete all {count} practice session(s) from the database!")
    print("This action cannot be undone.\n")
    response = input("Type 'yes' to confirm: ")

    if response.lower() == "yes":
        db.clear_sessions()
        print(f"\n✓ Successfully deleted {count} session(s) from database.\n")
    else:
        print("\nCancelled. No data was deleted.\n")


def _show_sessions(db: PracticeDatabase):
    sessions = db.get_recent_sessions(limit=20)
    print("\nRecent Practice Sessions:")
    print("=" * 80)
    for session in sessions:
        start = session.date.strftime("%Y-%m-%d %H:%M:%S")
        print(
            f"{start} | practice {session.formatted_practice_time:>8s} | "
            f"total {session.formatted_total_time:>8s} | {session.practice_percentage:3d}%"
        )


def _show_summary(db: PracticeDatabase):
    summary = db.get_daily_summary(days=7)
    print("\nDaily Practice Summary (Last 7 Days):")
    print("=" * 80)
    for day in summary:
        print(
            f"{day['session_date']} | {day['session_count']:2d} sessions | "
            f"{format_practice_duration(day['practice_time_ms']):>10s} practiced"
        )
    print(f"\nLifetime: {format_practice_duration(db.get_lifetime_practice_duration())}")


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    _configure_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.clear_database or args.show_sessions or args.show_summary:
        db = PracticeDatabase(args.db)
        try:
            if args.clear_database:
                _clear_database(db)
            elif args.show_sessions:
                _show_sessions(db)
            else:
                _show_summary(db)
        finally:
            db.close()
        return 0

    device = _parse_device(args.device)
    tracker = PracticeTracker(
        PracticeDatabase(args.db),
        announcer=NullAnnouncer() if args.no_speech else SpeechAnnouncer(),
        audio_source_factory=lambda: MicrophoneSource(device=device),
        classifier_factory=lambda: load_classifier(args.classifier),
        config_overrides=_config_overrides(args),
        enable_web_server=not args.no_web,
        web_port=args.port,
    )

    shutdown = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        tracker.request_stop(f"signal {signum}")
        shutdown.set()

    def print_session_summary(session):
        if session is None:
            logger.info("Session ended without a saved record")
            return
        print("\n*** Practice session ended ***")
        if tracker.stop_reason:
            print(f"Reason: {tracker.stop_reason}")
        print(f"Practice time: {session.formatted_practice_time}")
        print(f"Session time:  {session.formatted_total_time} "
              f"({session.practice_percentage}% practicing)\n")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    tracker.on_session_end = print_session_summary

    tracker.start()

    print("=" * 60)
    print("Practice Log")
    print("=" * 60)
    if tracker.web_server:
        print(f"Web interface: http://localhost:{tracker.web_server.port}")

    try:
        tracker.start_session()
    except (AudioSourceUnavailable, ClassifierUnavailable) as e:
        print(f"\nCannot start practice session: {e}\n")
        tracker.stop()
        return 1

    if tracker.web_server:
        print("Listening for practice... sessions can be restarted from the web interface. "
              "Press Ctrl+C to quit.\n")
    else:
        print("Listening for practice... press Ctrl+C to finish.\n")

    # Without the web interface nothing can start another session
    while not shutdown.wait(0.5):
        if tracker.web_server is None and not tracker.session_active:
            break

    tracker.stop()
    print("Practice Log stopped. Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
