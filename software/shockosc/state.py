"""Shared state container handed to every loop of a session."""

from __future__ import annotations

import threading

from software.shockosc.groups import GroupStore
from software.shockosc.registry import ParameterRegistry


class SessionState:
    """Groups, parameter registry and global flags behind one re-entrant lock.

    Every read-modify-write on a group or flag happens while holding
    ``lock``. Network I/O never happens under it.
    """

    def __init__(self, groups: GroupStore):
        self.groups = groups
        self.registry = ParameterRegistry()
        self.lock = threading.RLock()
        self.is_afk = False
        self.is_muted = False
        self.kill_switch = False
        self.avatar_id = ""
