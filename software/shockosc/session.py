"""A running bridge session: shared state plus the receive/check/send loops."""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Any, Callable, List, Mapping, Optional, Sequence

from software.shockosc.audit import AuditLogger
from software.shockosc.chatbox import Chatbox
from software.shockosc.check import CheckEvaluator
from software.shockosc.config_validation import ShockOscConfig
from software.shockosc.dispatch import CommandDispatcher, ControlClient
from software.shockosc.feedback import FeedbackPublisher
from software.shockosc.groups import GroupStore
from software.shockosc.ingest import ParameterIngest, ParameterSource
from software.shockosc.remote import ControlLog, ControlLogSender, RemoteEventApplier, parse_control_log
from software.shockosc.state import SessionState
from software.shockosc.tasks import BackgroundTasks
from software.shockosc.transport import Transport
from software.shockosc.underscore_config import UnderscoreConfig

logger = logging.getLogger(__name__)

CHECK_INTERVAL_S = 0.02
SEND_INTERVAL_S = 0.3
STOP_GRACE_S = 1.0


class ShockOscSession:
    """Owns every component and the three loops that drive them.

    ``start()`` flips the running flag and spawns the loops; ``stop()`` clears
    it and waits up to a grace period. A loop that is mid-iteration finishes
    that iteration before noticing.
    """

    def __init__(
        self,
        config: ShockOscConfig,
        transport: Transport,
        control_client: ControlClient,
        *,
        parameter_source: Optional[ParameterSource] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
        tasks: Optional[BackgroundTasks] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.transport = transport
        self.control_client = control_client
        self.audit = audit
        self.tasks = tasks or BackgroundTasks()
        self.state = SessionState(GroupStore(config, transport.send))
        self.chatbox = Chatbox(config, transport.send_chatbox)
        self.publisher = FeedbackPublisher(self.state, config, transport.send, clock)
        self.dispatcher = CommandDispatcher(
            self.state,
            config,
            control_client,
            transport.send,
            self.chatbox,
            self.publisher,
            self.tasks,
            clock,
            audit=audit,
            sleep=sleep,
        )
        self.underscore_config = UnderscoreConfig(self.state, config, transport.send)
        self.ingest = ParameterIngest(
            self.state,
            config,
            self.dispatcher,
            self.underscore_config,
            self.tasks,
            clock,
            parameter_source=parameter_source,
            rng=rng,
        )
        self.checker = CheckEvaluator(self.state, config, self.dispatcher, clock, rng=rng)
        self.remote = RemoteEventApplier(self.state, self.dispatcher, self.publisher, self.chatbox)
        self._sleep = sleep
        self._running = threading.Event()
        self._threads: List[threading.Thread] = []
        self._remote_subscribed = False

    @property
    def running(self) -> bool:
        return self._running.is_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._running.is_set():
            return
        self.transport.open(self.handle_message)
        self._subscribe_remote()
        self._running.set()
        self._threads = [
            threading.Thread(target=self._receive_loop, name="shockosc-receive", daemon=True),
            threading.Thread(
                target=self._periodic_loop,
                args=("check", CHECK_INTERVAL_S, self.checker.tick),
                name="shockosc-check",
                daemon=True,
            ),
            threading.Thread(
                target=self._periodic_loop,
                args=("send", SEND_INTERVAL_S, self.publisher.publish),
                name="shockosc-send",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Ready: %d group(s) loaded", len(self.state.groups))
        if self.audit is not None:
            self.audit.write(
                "session_start",
                status="info",
                details={"groups": [group.name for group in self.state.groups]},
            )
        self.tasks.spawn("announce config", self.underscore_config.send_update_for_all)

    def stop(self, grace: float = STOP_GRACE_S) -> None:
        if not self._running.is_set():
            return
        self._running.clear()
        for thread in self._threads:
            thread.join(timeout=grace)
            if thread.is_alive():
                logger.warning("%s did not stop within %.1fs", thread.name, grace)
        self._threads = []
        self.transport.close()
        logger.info("Session stopped")
        if self.audit is not None:
            self.audit.write("session_stop", status="closed")

    def close(self) -> None:
        """Stop the loops and release the background worker pool."""

        self.stop()
        self.tasks.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------
    def _receive_loop(self) -> None:
        while self._running.is_set():
            try:
                self.transport.receive_once()
            except OSError as exc:
                # transient while the game client restarts
                logger.debug("Error receiving message: %s", exc)
            except Exception:  # noqa: BLE001 - the loop outlives any one message
                logger.exception("Error in receiver loop")

    def _periodic_loop(self, label: str, interval: float, step: Callable[[], Any]) -> None:
        while self._running.is_set():
            try:
                step()
            except Exception:  # noqa: BLE001 - the loop outlives any one tick
                logger.exception("Error in %s loop", label)
            self._sleep(interval)

    # ------------------------------------------------------------------
    # Entry points for collaborators
    # ------------------------------------------------------------------
    def handle_message(self, address: str, args: Sequence[Any]) -> None:
        """Ingest one inbound message; errors are logged, never raised."""

        try:
            self.ingest.handle(address, args)
        except Exception:  # noqa: BLE001 - one bad message must not stop the receiver
            logger.exception("Error handling message %s", address)

    def apply_remote(self, sender: ControlLogSender, log: ControlLog) -> int:
        return self.remote.apply(sender, log)

    def handle_remote_payload(self, payload: Mapping[str, Any]) -> int:
        """Apply one control-log payload pushed by the backend.

        Malformed payloads and apply failures are logged and count as no match.
        """

        try:
            sender, log = parse_control_log(payload)
        except ValueError as exc:
            logger.warning("Dropping malformed control log: %s", exc)
            return 0
        try:
            return self.apply_remote(sender, log)
        except Exception:  # noqa: BLE001 - the backend thread must survive a bad event
            logger.exception("Error applying remote %s for %s", log.type.value, log.device_id)
            return 0

    def _subscribe_remote(self) -> None:
        if self._remote_subscribed:
            return
        subscribe = getattr(self.control_client, "subscribe", None)
        if subscribe is None:
            logger.debug("Backend has no remote event feed; remote control will not update feedback")
            return
        subscribe(self.handle_remote_payload)
        self._remote_subscribed = True
