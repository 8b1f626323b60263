"""
Device code user experience.

The device code flow hands the broker a message, a verification URL and a
user code. Showing them, opening the browser and copying the code are
done here, gated by user settings. Browser and clipboard handles are
created on first use so non-interactive runs never touch them.
"""

import functools
import logging
import webbrowser
from dataclasses import dataclass
from typing import Any, Callable, Optional

import click

from m365broker.core.config_manager import SettingsConfig

logger = logging.getLogger(__name__)


@dataclass
class DeviceCodeInfo:
    """What the identity provider asks the user to do."""

    message: str
    verification_uri: str
    user_code: str

    @classmethod
    def from_flow(cls, flow: dict) -> "DeviceCodeInfo":
        return cls(
            message=flow.get("message", ""),
            verification_uri=flow.get("verification_uri", ""),
            user_code=flow.get("user_code", ""),
        )


class DeviceCodePrompt:
    """Default device code callback used by the broker."""

    def __init__(
        self,
        settings: Optional[SettingsConfig] = None,
        notify: Optional[Callable[[str], None]] = None,
        open_browser: Optional[Callable[[str], Any]] = None,
        clipboard: Optional[Any] = None,
    ):
        self._settings = settings or SettingsConfig()
        self._notify = notify or functools.partial(click.echo, err=True)
        self._open_browser = open_browser
        self._clipboard = clipboard

    async def __call__(self, info: DeviceCodeInfo, debug: bool = False) -> None:
        if debug:
            logger.debug(f"Device code response: {info}")

        self._notify(info.message)

        if self._settings.auto_open_links_in_browser:
            if self._open_browser is None:
                self._open_browser = webbrowser.open
            self._open_browser(info.verification_uri)

        if self._settings.copy_device_code_to_clipboard:
            if self._clipboard is None:
                import pyperclip
                self._clipboard = pyperclip
            self._clipboard.copy(info.user_code)
