"""
lanshare TUI — a terminal dashboard for the peer engine.

Built with Textual.  Engine operations block on network I/O, so every
call into the engine runs in a worker thread; engine notifications arrive
on those threads and are marshalled back with call_from_thread.
"""

from __future__ import annotations

import os
from datetime import datetime

from rich.markup import escape
from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import (
    Button,
    DataTable,
    Footer,
    Header,
    Input,
    Label,
    ListItem,
    ListView,
    ProgressBar,
    RichLog,
    Static,
)

from .client import format_size
from .engine import Peer
from .events import PeerListener


def parse_result_line(line: str) -> tuple[str, str, str]:
    """Split a ``name<TAB>size<TAB>modified`` result into display columns."""
    parts = line.split("\t")
    if len(parts) != 3:
        return line, "", ""
    name, size, modified = parts
    try:
        size = format_size(int(size))
    except ValueError:
        pass
    return name, size, modified


# ==============================================================================
# Listener bridge
# ==============================================================================


class TuiListener(PeerListener):
    """Forwards engine events onto the Textual event loop."""

    def __init__(self, app: LanshareApp):
        self.app = app

    def on_message(self, message: str) -> None:
        self.app.call_from_thread(self.app.log_message, escape(message))

    def on_search_results(self, host: str, port: int, results: list[str]) -> None:
        self.app.call_from_thread(self.app.add_search_results, host, port, results)

    def on_download_progress(
        self, file_name: str, total_bytes: int, downloaded_bytes: int
    ) -> None:
        self.app.call_from_thread(
            self.app.update_progress, file_name, total_bytes, downloaded_bytes
        )

    def on_peer_status(self, status: dict[str, bool]) -> None:
        self.app.call_from_thread(self.app.update_peer_status, status)

    def on_transfer_history(self, history: list) -> None:
        self.app.call_from_thread(self.app.update_history, history)


# ==============================================================================
# Help Modal
# ==============================================================================


class HelpScreen(ModalScreen):
    """Full help overlay."""

    BINDINGS = [Binding("escape", "dismiss", "Close")]

    def compose(self) -> ComposeResult:
        with Container(id="help-dialog"):
            yield Label("LANSHARE  —  Help", id="help-title")
            yield Static(
                "[bold #5ec4ff]Keybindings[/]\n"
                "\n"
                "  [#e0c97f]F1[/]          Show this help\n"
                "  [#e0c97f]F5[/]          Show discovered peers\n"
                "  [#e0c97f]d[/]           Download the selected search result\n"
                "  [#e0c97f]q[/]           Quit\n"
                "\n"
                "[bold #5ec4ff]Command Input[/]\n"
                "\n"
                "  [#718ca1]connect <host[:port]>[/]   Track a peer\n"
                "  [#718ca1]search <keyword>[/]        Search tracked peers\n"
                "  [#718ca1]download <file>[/]         Download from tracked peers\n"
                "  [#718ca1]share <directory>[/]       Change the shared directory\n"
                "  [#718ca1]discover[/]                List discovered peers\n",
                id="help-content",
            )
            yield Button("Close  (Esc)", id="help-close-btn")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "help-close-btn":
            self.dismiss()


# ==============================================================================
# Main TUI App
# ==============================================================================


class LanshareApp(App):
    """lanshare P2P File Sharing — Terminal Dashboard."""

    TITLE = "LANSHARE"
    SUB_TITLE = "P2P File Sharing"
    ENABLE_COMMAND_PALETTE = False

    CSS = """
    #main-container { height: 1fr; }
    #sidebar { width: 34; border-right: solid $primary; }
    #main-panel { width: 1fr; }
    #peer-list { height: 1fr; }
    #history-table { height: 12; }
    #results-table { height: 1fr; }
    #log-panel { height: 10; border-top: solid $primary; }
    #command-bar { height: 3; }
    #help-dialog { width: 70; height: auto; padding: 1 2; background: $panel; }
    """

    BINDINGS = [
        Binding("f1", "show_help", "Help", show=True),
        Binding("f5", "discover", "Discover", show=True),
        Binding("d", "download_selected", "Download", show=True),
        Binding("q", "quit_app", "Quit", show=True),
    ]

    def __init__(self, peer: Peer):
        super().__init__()
        self.peer = peer

    # --------------------------------------------------------------------------
    # Layout
    # --------------------------------------------------------------------------

    def compose(self) -> ComposeResult:
        yield Header()

        with Horizontal(id="main-container"):
            with Vertical(id="sidebar"):
                yield Label("PEERS", id="sidebar-title")
                yield ListView(id="peer-list")

            with Vertical(id="main-panel"):
                yield Label("SEARCH RESULTS", id="results-title")
                yield DataTable(id="results-table")
                yield Label("", id="progress-label")
                yield ProgressBar(id="progress-bar", show_eta=False)
                yield Label("TRANSFER HISTORY", id="history-title")
                yield DataTable(id="history-table")

        with Vertical(id="log-panel"):
            yield RichLog(id="log-view", highlight=True, markup=True)

        with Horizontal(id="command-bar"):
            yield Input(
                placeholder="Type a command (or press F1 for help)...",
                id="command-input",
            )

        yield Footer()

    def on_mount(self) -> None:
        results = self.query_one("#results-table", DataTable)
        results.add_columns("Peer", "Filename", "Size", "Modified")
        results.cursor_type = "row"
        results.zebra_stripes = True

        history = self.query_one("#history-table", DataTable)
        history.add_columns("Time", "Direction", "Outcome", "File", "Peer")
        history.zebra_stripes = True

        self.peer.set_listener(TuiListener(self))
        self._start_peer()

    @work(thread=True)
    def _start_peer(self) -> None:
        self.peer.start()
        self.call_from_thread(
            self.log_message,
            f"lanshare started  [bold #5ec4ff]tcp_port={self.peer.port}[/]  "
            f"shared=[#718ca1]{os.path.abspath(self.peer.shared_dir)}[/]",
        )

    # --------------------------------------------------------------------------
    # Engine event handlers (always on the app thread)
    # --------------------------------------------------------------------------

    def log_message(self, message: str) -> None:
        log_view = self.query_one("#log-view", RichLog)
        ts = datetime.now().strftime("%H:%M:%S")
        log_view.write(f"[#41505e]{ts}[/]  {message}")

    def add_search_results(self, host: str, port: int, results: list[str]) -> None:
        table = self.query_one("#results-table", DataTable)
        endpoint = f"{host}:{port}"
        for line in results:
            cells = (endpoint, *parse_result_line(line))
            table.add_row(*(Text(cell) for cell in cells))
        self.log_message(f"{len(results)} result(s) from [#5ec4ff]{endpoint}[/]")

    def update_progress(self, file_name: str, total: int, downloaded: int) -> None:
        self.query_one("#progress-bar", ProgressBar).update(
            total=total, progress=downloaded
        )
        self.query_one("#progress-label", Label).update(
            f"{file_name}: {format_size(downloaded)} / {format_size(total)}"
        )

    def update_peer_status(self, status: dict[str, bool]) -> None:
        peer_list = self.query_one("#peer-list", ListView)
        peer_list.clear()
        for endpoint, online in sorted(status.items()):
            dot = "[#00ff9f]●[/]" if online else "[#e74c3c]●[/]"
            peer_list.append(ListItem(Static(f"{dot} [#718ca1]{endpoint}[/]")))

    def update_history(self, history: list) -> None:
        table = self.query_one("#history-table", DataTable)
        table.clear()
        for record in history:
            table.add_row(
                record.timestamp,
                record.direction.value,
                record.outcome.value,
                Text(record.file_name),
                record.peer,
            )

    # --------------------------------------------------------------------------
    # Engine calls (worker threads)
    # --------------------------------------------------------------------------

    @work(thread=True)
    def _connect(self, host: str, port: int) -> None:
        self.peer.connect(host, port)

    @work(thread=True)
    def _search(self, keyword: str) -> None:
        self.peer.search(keyword)

    @work(thread=True)
    def _download(self, file_name: str) -> None:
        self.peer.download(file_name)

    @work(thread=True)
    def _share(self, path: str) -> None:
        self.peer.set_shared_directory(path)

    @work(thread=True)
    def action_discover(self) -> None:
        self.peer.discover_peers()

    # --------------------------------------------------------------------------
    # Actions
    # --------------------------------------------------------------------------

    def action_show_help(self) -> None:
        self.push_screen(HelpScreen())

    def action_quit_app(self) -> None:
        self.log_message("Shutting down...")
        self.exit()

    def action_download_selected(self) -> None:
        table = self.query_one("#results-table", DataTable)
        if table.row_count == 0:
            self.log_message("[#e0c97f]Warning:[/] No search results to download.")
            return
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        file_name = str(table.get_row(row_key)[1])
        self._download(file_name)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "command-input":
            return

        raw = event.value.strip()
        event.input.value = ""
        if not raw:
            return

        cmd, _, arg = raw.partition(" ")
        cmd = cmd.lower()
        arg = arg.strip()

        if cmd == "help":
            self.action_show_help()
        elif cmd == "connect" and arg:
            host, _, port_str = arg.rpartition(":")
            if not host:
                host, port_str = arg, str(self.peer.port)
            try:
                self._connect(host, int(port_str))
            except ValueError:
                self.log_message(f"[#e74c3c]Invalid port:[/] {port_str}")
        elif cmd == "search" and arg:
            self.query_one("#results-table", DataTable).clear()
            self._search(arg)
        elif cmd == "download" and arg:
            self._download(arg)
        elif cmd == "share" and arg:
            self._share(arg)
        elif cmd in ("discover", "peers"):
            self.action_discover()
        elif cmd in ("quit", "exit"):
            self.action_quit_app()
        else:
            self.log_message(f"[#e0c97f]Unknown command:[/] {raw}  (press F1 for help)")


# ==============================================================================
# Entry point (called from peer.py)
# ==============================================================================


def run_tui(peer: Peer) -> None:
    """Launch the lanshare TUI; the app starts the peer once mounted."""
    app = LanshareApp(peer)
    app.run()
