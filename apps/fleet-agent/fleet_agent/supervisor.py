"""
Connection Supervisor
=====================

Owns one identity's orchestrator connection for the life of the process.

  DISCONNECTED → CONNECTING → CONNECTED → REGISTERED (heartbeating)
       ↑                                        │
       └──────── reconnect_delay ◄── close / error / failed handshake

On every successful handshake a single REGISTER message is sent, then a
HEARTBEAT every `heartbeat_interval` seconds. Heartbeats and inbound reads
share the supervisor's thread, so ticks for one identity never overlap.
A failed handshake and a dropped connection take the same path: wait
`reconnect_delay`, then connect again with the same session. The supervisor
never gives up on its own; only stop() ends it.
"""

from __future__ import annotations
import json
import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlencode

from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from .config import AgentConfig
from .identity import IdentityContext
from .resources import ResourceAssigner
from .store import AccountDirectory, IdentityRecord

log = logging.getLogger(__name__)

MAX_AVAILABLE_MEMORY_GB = 32

# Anything the transport may raise when the connection is unusable
TRANSPORT_ERRORS = (WebSocketException, OSError)


class SupervisorState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING   = "CONNECTING"
    CONNECTED    = "CONNECTED"
    REGISTERED   = "REGISTERED"
    STOPPED      = "STOPPED"


@dataclass(frozen=True)
class Session:
    """Everything needed to (re)connect. Fixed for the supervisor's lifetime."""
    token:      str
    worker_id:  str
    session_id: str
    address:    str

    @classmethod
    def from_record(cls, record: IdentityRecord) -> "Session":
        return cls(record.token, record.worker_id, record.session_id, record.address)


# ─── Messages ─────────────────────────────────────────────────────────────────

def build_register_message(session: Session, config: AgentConfig) -> dict:
    return {
        "workerID":   session.worker_id,
        "msgType":    "REGISTER",
        "workerType": config.worker_type,
        "message": {
            "id":   session.session_id,
            "type": "REGISTER",
            "worker": {
                "host":         config.worker_host,
                "identity":     session.worker_id,
                "ownerAddress": session.address,
                "type":         config.worker_type,
            },
        },
    }


def build_heartbeat_message(
    session: Session,
    config:  AgentConfig,
    gpu:     str,
    storage: str,
    memory:  str,
) -> dict:
    return {
        "message": {
            "Worker": {
                "Identity":     session.worker_id,
                "ownerAddress": session.address,
                "type":         config.worker_type,
                "Host":         config.worker_host,
            },
            "Capacity": {
                "AvailableMemory":  memory,
                "AvailableStorage": storage,
                "AvailableGPU":     gpu,
                "AvailableModels":  [],
            },
        },
        "msgType":    "HEARTBEAT",
        "workerType": config.worker_type,
        "workerID":   session.worker_id,
    }


# ─── Transport ────────────────────────────────────────────────────────────────

def open_websocket(url: str, ctx: IdentityContext, config: AgentConfig):
    """
    Handshake with the orchestrator. The websockets library picks a fresh
    random Sec-WebSocket-Key for every connection.
    """
    return ws_connect(
        url,
        origin             = config.origin,
        user_agent_header  = config.user_agent,
        additional_headers = {
            "Accept-Language": config.accept_language,
            "Cache-Control":   "no-cache",
            "Pragma":          "no-cache",
        },
        proxy              = ctx.active_proxy,
        open_timeout       = config.request_timeout,
    )


TransportFactory = Callable[[str, IdentityContext, AgentConfig], object]


# ─── Supervisor ───────────────────────────────────────────────────────────────

class ConnectionSupervisor:
    def __init__(
        self,
        config:        AgentConfig,
        session:       Session,
        ctx:           IdentityContext,
        resources:     ResourceAssigner,
        accounts:      Optional[AccountDirectory] = None,
        connect:       TransportFactory = open_websocket,
        on_transition: Optional[Callable[[SupervisorState], None]] = None,
        rng:           Optional[random.Random] = None,
        clock:         Callable[[], float] = time.monotonic,
    ):
        self.config        = config
        self.session       = session
        self.ctx           = ctx
        self.resources     = resources
        self.accounts      = accounts
        self.connect       = connect
        self.on_transition = on_transition
        self.rng           = rng or random.Random()
        self.clock         = clock

        self.state           = SupervisorState.DISCONNECTED
        self.connections     = 0   # Successful handshakes
        self.heartbeats_sent = 0

        self._halt      = threading.Event()
        self._lock      = threading.Lock()
        self._transport = None
        self._thread: Optional[threading.Thread] = None

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(
            target = self.run,
            name   = f"supervisor-{self.ctx.index + 1}",
            daemon = True,
        )
        self._thread.start()
        return self._thread

    def stop(self):
        """Stop reconnecting and close the live connection, if any."""
        self._halt.set()
        with self._lock:
            transport = self._transport
        if transport is not None:
            try:
                transport.close()
            except TRANSPORT_ERRORS as e:
                log.debug(f"{self._tag()} close error during stop: {e}")

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._halt.is_set()

    def run(self):
        """Connect, heartbeat until the connection drops, wait, repeat."""
        while not self._halt.is_set():
            try:
                self._run_connection()
            except Exception as e:
                # A bad proxy URL or a store error ends this connection, not the supervisor
                log.exception(f"{self._tag()} Connection for workerID {self.session.worker_id} aborted: {e}")
            if self._halt.is_set():
                break
            self._set_state(SupervisorState.DISCONNECTED)
            log.info(f"{self._tag()} Reconnecting in {self.config.reconnect_delay:g}s for workerID {self.session.worker_id}")
            if self._halt.wait(self.config.reconnect_delay):
                break
        self._set_state(SupervisorState.STOPPED)

    # ─── One connection ───────────────────────────────────────────────────────

    def _run_connection(self):
        self._set_state(SupervisorState.CONNECTING)
        url = f"{self.config.ws_url}?{urlencode({'authToken': self.session.token})}"

        try:
            transport = self.connect(url, self.ctx, self.config)
        except TRANSPORT_ERRORS as e:
            log.warning(f"{self._tag()} Connection failed for workerID {self.session.worker_id}: {e}")
            return

        with self._lock:
            self._transport = transport
        self.connections += 1
        self._set_state(SupervisorState.CONNECTED)
        log.info(f"{self._tag()} Connected to WebSocket for workerID {self.session.worker_id}")

        try:
            if self._halt.is_set():
                return
            self._send(transport, build_register_message(self.session, self.config))
            self._set_state(SupervisorState.REGISTERED)
            self._heartbeat_loop(transport)
        except TRANSPORT_ERRORS as e:
            if not self._halt.is_set():
                log.warning(f"{self._tag()} WebSocket closed for workerID {self.session.worker_id}: {e}")
        finally:
            with self._lock:
                self._transport = None
            try:
                transport.close()
            except TRANSPORT_ERRORS:
                pass

    def _heartbeat_loop(self, transport):
        interval  = self.config.heartbeat_interval
        next_beat = self.clock() + interval

        while not self._halt.is_set():
            remaining = next_beat - self.clock()
            if remaining <= 0:
                self._send_heartbeat(transport)
                next_beat += interval
                if next_beat <= self.clock():
                    next_beat = self.clock() + interval
                continue

            try:
                message = transport.recv(timeout=remaining)
            except TimeoutError:
                continue
            log.info(f"{self._tag()} Received for workerID {self.session.worker_id}: {message}")

    def _send_heartbeat(self, transport):
        gpu, storage = self.resources.ensure_resources(self.session.address)
        memory = f"{self.rng.random() * MAX_AVAILABLE_MEMORY_GB:.2f}"
        log.info(f"{self._tag()} Sending heartbeat for workerID {self.session.worker_id}")
        self._send(transport, build_heartbeat_message(self.session, self.config, gpu, storage, memory))
        self.heartbeats_sent += 1

    def _send(self, transport, message: dict):
        transport.send(json.dumps(message))

    # ─── Observability ────────────────────────────────────────────────────────

    def _set_state(self, state: SupervisorState):
        if state == self.state:
            return
        self.state = state
        log.debug(f"{self._tag()} supervisor → {state.value}")
        if self.on_transition is not None:
            self.on_transition(state)

    def _tag(self) -> str:
        return self.ctx.tag(self.accounts)
