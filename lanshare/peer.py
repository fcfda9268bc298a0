"""
lanshare — P2P File Sharing Engine

Main entry point.  Loads the TLS material, starts the engine (discovery,
request server) and either a CLI loop or the TUI dashboard.

Usage:
    lanshare                          # start TUI mode (default)
    lanshare --cli                    # start CLI mode
    lanshare --port 6000              # use a custom TLS port
    lanshare --cert node.crt --key node.key --trust trust.pem
"""

import argparse
import logging
import os

from .client import format_size
from .config import (
    CERT_FILE,
    DOWNLOAD_DIR,
    KEY_FILE,
    KEY_PASSWORD_ENV,
    SHARED_DIR,
    TCP_PORT,
    TRUST_FILE,
)
from .engine import Peer
from .errors import SecurityInitializationError
from .events import PeerListener
from .security import SecureTransport

logger = logging.getLogger(__name__)


def parse_target(target: str, default_port: int) -> tuple[str, int]:
    """
    Parse a 'host:port' string.  If port is omitted, *default_port* is used.
    """
    if ":" in target:
        host, port_str = target.rsplit(":", 1)
        return host, int(port_str)
    return target, default_port


def load_transport(args: argparse.Namespace) -> SecureTransport | None:
    """Build the TLS transport, or None if the material is unusable."""
    password = args.password or os.environ.get(KEY_PASSWORD_ENV)
    try:
        return SecureTransport.from_files(
            certfile=args.cert,
            keyfile=args.key,
            password=password,
            trustfile=args.trust,
            require_client_cert=args.require_client_cert,
        )
    except SecurityInitializationError as e:
        logger.error("Failed to create TLS context: %s", e)
        return None


class ConsoleListener(PeerListener):
    """Prints engine notifications for CLI mode."""

    def __init__(self):
        self._last_percent: dict[str, int] = {}

    def on_message(self, message: str) -> None:
        print(f"  {message}")

    def on_search_results(self, host: str, port: int, results: list[str]) -> None:
        print(f"  Results from {host}:{port}:")
        if not results:
            print("    (no matches)")
            return
        print(f"    {'Filename':<40} {'Size':>12}  Modified")
        print(f"    {'-' * 40} {'-' * 12}  {'-' * 19}")
        for line in results:
            parts = line.split("\t")
            if len(parts) == 3 and parts[1].isdigit():
                name, size, modified = parts
                print(f"    {name:<40} {format_size(int(size)):>12}  {modified}")
            else:
                print(f"    {line}")

    def on_download_progress(
        self, file_name: str, total_bytes: int, downloaded_bytes: int
    ) -> None:
        percent = int(downloaded_bytes * 100 / total_bytes) if total_bytes else 100
        # Only print every 10%
        if percent // 10 != self._last_percent.get(file_name, -1) // 10:
            self._last_percent[file_name] = percent
            print(f"  {file_name}: {percent}% ({format_size(downloaded_bytes)})")

    def on_peer_status(self, status: dict[str, bool]) -> None:
        for endpoint, online in sorted(status.items()):
            logger.debug("%s is %s", endpoint, "online" if online else "offline")

    def on_transfer_history(self, history: list) -> None:
        if history:
            print(f"  [history] {history[-1]}")


def _print_help() -> None:
    print("""
  lanshare — P2P File Sharing Commands
  ────────────────────────────────────────────────────
  connect <host[:port]>      Track a peer for search/download
  discover                   Show peers found by broadcast
  search <keyword>           Search all tracked peers (*.txt, regex:..)
  download <file>            Download a file from the tracked peers
  share <directory>          Change the shared directory
  status                     Show peer reachability
  history                    Show the transfer ledger
  help                       Show this help message
  quit / exit                Shut down this peer
  ────────────────────────────────────────────────────
""")


def run_cli(peer: Peer, default_port: int) -> None:
    """Line-oriented command loop."""
    print("  Type 'help' for available commands.\n")
    try:
        while True:
            try:
                raw = input("lanshare> ").strip()
            except EOFError:
                break

            if not raw:
                continue

            cmd, _, arg = raw.partition(" ")
            cmd = cmd.lower()
            arg = arg.strip()

            # ----------------------------------------------------------
            if cmd in ("quit", "exit"):
                print("  Shutting down...")
                break

            elif cmd == "help":
                _print_help()

            elif cmd == "connect":
                if not arg:
                    print("  Usage: connect <host[:port]>")
                    continue
                try:
                    host, port = parse_target(arg, default_port)
                except ValueError:
                    print(f"  [!] Invalid port in {arg!r}")
                    continue
                peer.connect(host, port)

            elif cmd in ("discover", "peers"):
                peer.discover_peers()

            elif cmd == "search":
                if not arg:
                    print("  Usage: search <keyword>")
                    continue
                peer.search(arg)

            elif cmd == "download":
                if not arg:
                    print("  Usage: download <file>")
                    continue
                peer.download(arg)

            elif cmd == "share":
                if not arg:
                    print(f"  Shared directory: {os.path.abspath(peer.shared_dir)}")
                    continue
                peer.set_shared_directory(arg)

            elif cmd == "status":
                status = peer.peer_status()
                if not status:
                    print("  No tracked peers.")
                for endpoint, online in sorted(status.items()):
                    print(f"  {endpoint:<24} {'online' if online else 'offline'}")

            elif cmd == "history":
                history = peer.transfer_history()
                if not history:
                    print("  No transfers yet.")
                for record in history:
                    print(f"  {record}")

            else:
                print(f"  Unknown command: {cmd}  (type 'help' for commands)")

    except KeyboardInterrupt:
        print("\n  Interrupted. Shutting down...")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="lanshare P2P File Sharing")
    parser.add_argument(
        "--port", type=int, default=TCP_PORT, help="TLS port to listen on"
    )
    parser.add_argument(
        "--cli", action="store_true", help="Launch CLI mode instead of TUI dashboard"
    )
    parser.add_argument("--shared", default=SHARED_DIR, help="Shared directory")
    parser.add_argument("--downloads", default=DOWNLOAD_DIR, help="Download directory")
    parser.add_argument("--cert", default=CERT_FILE, help="PEM certificate chain")
    parser.add_argument("--key", default=KEY_FILE, help="PEM private key")
    parser.add_argument("--trust", default=TRUST_FILE, help="PEM trust bundle")
    parser.add_argument(
        "--password",
        default=None,
        help=f"Private key password (default: ${KEY_PASSWORD_ENV})",
    )
    parser.add_argument(
        "--require-client-cert",
        action="store_true",
        help="Reject inbound peers that present no trusted certificate",
    )
    parser.add_argument(
        "--parallel", action="store_true", help="Query tracked peers concurrently"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main() -> None:
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    transport = load_transport(args)
    peer = Peer(
        port=args.port,
        transport=transport,
        shared_dir=args.shared,
        download_dir=args.downloads,
        parallel_fanout=args.parallel,
    )

    # ── CLI mode ──
    if args.cli:
        peer.set_listener(ConsoleListener())
        peer.start()
        print(f"  lanshare started  [tcp_port={peer.port}]")
        print(f"  Shared directory: {os.path.abspath(peer.shared_dir)}")
        try:
            run_cli(peer, args.port)
        finally:
            peer.shutdown()
        print("  Goodbye.")
        return

    # ── TUI mode (default) ──
    from .tui import run_tui

    try:
        run_tui(peer)
    finally:
        peer.shutdown()


if __name__ == "__main__":
    main()
