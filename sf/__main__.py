"""
SF — send files in LAN quickly.  CLI entry point.

Usage:
    python -m sf receive [--strip-prefix] [--dir DIR] [--quiet]
    python -m sf send <IP|auto> <path> [<path>...] [--wait N] [--quiet]

Any fatal error is printed as "FATAL: <message>" and exits with status 1.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

from .connect import AUTO, connect_to_receiver, wait_for_sender
from .errors import SFError
from .progress import NullProgress, ProgressTracker
from .protocol import DISCOVERY_TIMEOUT
from .session import ReceiveSession, SendSession
from .transfer import walk_targets

log = logging.getLogger("sf")


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        level=level,
    )


def _progress(quiet: bool, direction: str) -> ProgressTracker | NullProgress:
    if quiet:
        return NullProgress()
    return ProgressTracker(direction=direction)


# ---------------------------------------------------------------------------
# Sub-commands
# ---------------------------------------------------------------------------

def cmd_receive(args: argparse.Namespace) -> int:
    """Wait for one sender and store what it sends under --dir."""
    print("[SF] Waiting for a sender (broadcasting own ip) ...", file=sys.stderr)
    conn, addr = wait_for_sender()
    print(f"[SF] Sender connected from {addr[0]}", file=sys.stderr)

    progress = _progress(args.quiet, "↓ RECV")
    progress.start()
    t0 = time.monotonic()
    session = ReceiveSession(
        conn,
        dest_dir=args.dir,
        strip_prefix=args.strip_prefix,
        progress=progress,
    )
    try:
        with conn:
            received = session.run()
    finally:
        progress.stop()

    total = session.manifest.total_size
    dt = time.monotonic() - t0
    print(f"[SF] ✓ Received {len(received)} file(s) ({_fmt_size(total)}) in {dt:.1f}s")
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    """Send files/folders to a receiver, found directly or by discovery."""
    entries = walk_targets(args.paths)
    if not entries:
        print("No files to send.", file=sys.stderr)
        return 1

    wait = args.wait if args.wait > 0 else None
    if args.to == AUTO:
        print("[SF] Waiting for a receiver to announce itself ...", file=sys.stderr)
    sock = connect_to_receiver(args.to, discovery_timeout=wait)

    total_size = sum(e.size for e in entries)
    peer = sock.getpeername()
    print(f"[SF] Sending {len(entries)} file(s) ({_fmt_size(total_size)}) → {peer[0]}:{peer[1]}")

    progress = _progress(args.quiet, "↑ SEND")
    progress.start()
    try:
        with sock:
            SendSession(sock, entries, progress=progress).run()
    finally:
        progress.stop()

    print(f"[SF] ✓ Transfer complete — {len(entries)} file(s) sent.")
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt_size(n: float) -> str:
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if n < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} PB"


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sf",
        description="SF — send files in LAN quickly")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    # --- receive ---
    p_recv = sub.add_parser("receive", help="Wait for one sender and receive its files")
    p_recv.add_argument("-s", "--strip-prefix", action="store_true",
                        help="Strip the common directory prefix from received paths "
                             "(useful when the sender sent absolute paths)")
    p_recv.add_argument("--dir", default=".",
                        help="Directory to save received files (default: current directory)")
    p_recv.add_argument("--quiet", action="store_true", help="No progress bars")

    # --- send ---
    p_send = sub.add_parser("send", help="Send files/folders to a receiver")
    p_send.add_argument("to", metavar="IP",
                        help=f"Receiver IP address, or `{AUTO}' to discover it")
    p_send.add_argument("paths", nargs="+", help="Files or directories to send")
    p_send.add_argument("--wait", type=float, default=DISCOVERY_TIMEOUT,
                        help="Seconds to wait for a receiver in auto mode; "
                             f"0 waits forever (default {DISCOVERY_TIMEOUT:g})")
    p_send.add_argument("--quiet", action="store_true", help="No progress bars")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    handlers = {
        "receive": cmd_receive,
        "send":    cmd_send,
    }
    try:
        return handlers[args.command](args)
    except (SFError, OSError) as exc:
        log.debug("Fatal error", exc_info=True)
        print(f"FATAL: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("FATAL: interrupted", file=sys.stderr)
        return 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
