"""
Notifications produced by the engine for a front end.

A front end subclasses PeerListener and overrides the callbacks it cares
about.  Callbacks run on whichever engine thread produced the event, so
GUI code must marshal them onto its own thread.
"""

import logging

logger = logging.getLogger(__name__)


class PeerListener:
    """Receives asynchronous engine events. Every callback is optional."""

    def on_message(self, message: str) -> None:
        pass

    def on_search_results(self, host: str, port: int, results: list[str]) -> None:
        pass

    def on_download_progress(
        self, file_name: str, total_bytes: int, downloaded_bytes: int
    ) -> None:
        pass

    def on_peer_status(self, status: dict[str, bool]) -> None:
        pass

    def on_transfer_history(self, history: list) -> None:
        pass


class Notifier:
    """Forwards events to the current listener.

    A misbehaving listener is logged and otherwise ignored so it can never
    abort a transfer in progress.
    """

    def __init__(self, listener: PeerListener | None = None):
        self.listener = listener

    def _dispatch(self, name: str, *args) -> None:
        listener = self.listener
        if listener is None:
            return
        try:
            getattr(listener, name)(*args)
        except Exception:
            logger.exception("Listener callback %s failed", name)

    def message(self, text: str) -> None:
        logger.info(text)
        self._dispatch("on_message", text)

    def search_results(self, host: str, port: int, results: list[str]) -> None:
        self._dispatch("on_search_results", host, port, results)

    def download_progress(self, file_name: str, total: int, downloaded: int) -> None:
        self._dispatch("on_download_progress", file_name, total, downloaded)

    def peer_status(self, status: dict[str, bool]) -> None:
        self._dispatch("on_peer_status", status)

    def transfer_history(self, history: list) -> None:
        self._dispatch("on_transfer_history", history)
