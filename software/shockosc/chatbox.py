"""Chatbox messages: template formatting plus the prefixed send."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from software.shockosc.config_validation import ShockOscConfig

logger = logging.getLogger(__name__)


class _MissingField(dict):
    def __missing__(self, key: str) -> Any:
        raise KeyError(key)


def format_template(template: str, data: Mapping[str, Any]) -> str:
    """Fill ``{field}`` placeholders from ``data``.

    A template that names an unknown field, or is otherwise malformed, is
    logged and returned unformatted rather than dropping the message.
    """

    try:
        return template.format_map(_MissingField(data))
    except (KeyError, IndexError, ValueError) as exc:
        logger.warning("Chatbox template %r could not be formatted: %s", template, exc)
        return template


def duration_seconds(duration_ms: int) -> float:
    return round(duration_ms / 1000.0, 1)


class Chatbox:
    def __init__(self, config: ShockOscConfig, send_chatbox: Callable[[str], None]):
        self._config = config
        self._send_chatbox = send_chatbox

    @property
    def enabled(self) -> bool:
        return self._config.osc.chatbox

    def send(self, text: str) -> None:
        message = f"{self._config.chatbox.prefix}{text}"
        try:
            self._send_chatbox(message)
        except OSError as exc:
            logger.warning("Failed to send chatbox message: %s", exc)

    def send_suppressed(self, text: str) -> None:
        """Send a suppression notice; an empty configured text means stay quiet."""

        if text:
            self.send(text)

    def send_local(self, control_type: str, data: Mapping[str, Any]) -> None:
        if not self.enabled:
            return
        template = self._config.chatbox.template_for(control_type)
        self.send(format_template(template.local, data))

    def send_remote(self, control_type: str, data: Mapping[str, Any], custom_name: Optional[str]) -> None:
        template = self._config.chatbox.template_for(control_type)
        if not (self.enabled and self._config.chatbox.display_remote_control and template.enabled):
            return
        text = template.remote if custom_name is None else template.remote_with_custom_name
        self.send(format_template(text, data))
