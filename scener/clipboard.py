"""Clipboard sinks. Copy failures never affect a session."""

from __future__ import annotations

import logging

import pyperclip

from .errors import ClipboardUnavailable

logger = logging.getLogger(__name__)


class Clipboard:
    """System clipboard backed by pyperclip."""

    def copy(self, text: str) -> None:
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as exc:
            raise ClipboardUnavailable(str(exc)) from exc


class NullClipboard:
    """Used when clipboard integration is disabled."""

    def copy(self, text: str) -> None:
        raise ClipboardUnavailable("clipboard integration is disabled")


def copy_quietly(clipboard, text: str) -> bool:
    try:
        clipboard.copy(text)
    except ClipboardUnavailable as exc:
        logger.warning("Could not copy to clipboard: %s", exc)
        return False
    return True
