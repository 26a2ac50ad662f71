"""Shared CoIoT UDP listener.

One socket on UDP 5683 serves every device on the network:
  - datagrams are decoded as CoAP and dispatched by source IP to the
    listener (protocol session) registered for that device
  - CoAP-level duplicates (same source and message id inside the
    exchange lifetime) are dropped before dispatch
  - outgoing GET requests are tracked by message id so piggybacked
    responses can be matched and stale requests reported as timeouts
"""

import logging
import random
import socket
import struct
import threading
import time
from typing import Callable, Optional

from . import constants as C
from . import frames

logger = logging.getLogger("coiotd.server")


class CoapRequest:
    """An outstanding GET request to one device.

    Args:
        message_id: CoAP message id used on the wire
        ip: Device IP address
        uri: Requested resource (/cit/d or /cit/s)
        confirmable: CON (True) or NON (False)
        timeout: Seconds after which the request is reported as timed out
        on_timeout: Callback fn(request) invoked once when the timeout expires
    """

    def __init__(
        self,
        message_id: int,
        ip: str,
        uri: str,
        confirmable: bool,
        timeout: float = C.DEFAULT_REQUEST_TIMEOUT,
        on_timeout: Optional[Callable] = None,
    ):
        self.message_id = message_id
        self.ip = ip
        self.uri = uri
        self.confirmable = confirmable
        self.timeout = timeout
        self.on_timeout = on_timeout
        self.sent_at = time.monotonic()
        self.canceled = False
        self.completed = False

    def is_expired(self, now: float) -> bool:
        return now - self.sent_at >= self.timeout

    @property
    def is_pending(self) -> bool:
        return not (self.canceled or self.completed)

    def __repr__(self):
        return (
            f"CoapRequest(mid={self.message_id}, ip={self.ip}, uri={self.uri}, "
            f"{'CON' if self.confirmable else 'NON'})"
        )


class CoIoTListener:
    """UDP endpoint shared by all CoIoT protocol sessions.

    Args:
        host: Bind address (default 0.0.0.0 - all interfaces)
        port: UDP port (default 5683 - standard CoAP)
        multicast: Join the CoIoT multicast group to receive status broadcasts
        request_timeout: Default timeout for outstanding requests (seconds)
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = C.COIOT_PORT,
        multicast: bool = True,
        request_timeout: float = C.DEFAULT_REQUEST_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.multicast = multicast
        self.request_timeout = request_timeout

        self._sock: Optional[socket.socket] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._listeners: dict[str, Callable] = {}
        self._pending: dict[int, CoapRequest] = {}
        self._canceled: dict[int, float] = {}
        self._recent: dict[tuple, float] = {}
        self._next_message_id = random.randint(0, 0xFFFF)
        self._last_sweep = time.monotonic()
        self._lock = threading.Lock()

    def start(self):
        """Bind the socket and start the reader thread."""
        if self._running:
            return
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind((self.host, self.port))
        if self.multicast:
            self._join_multicast()
        self._sock.settimeout(1.0)  # Allow periodic timeout sweeps
        self._running = True
        self._thread = threading.Thread(
            target=self._recv_loop, name="coiot-listener", daemon=True
        )
        self._thread.start()
        logger.info("CoIoT listener on %s:%d/udp", self.host, self.port)

    def stop(self):
        """Stop the reader thread and close the socket."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=3.0)
        if self._sock:
            self._sock.close()
        logger.info("CoIoT listener stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def _join_multicast(self):
        mreq = struct.pack(
            "4s4s",
            socket.inet_aton(C.COIOT_MULTICAST),
            socket.inet_aton(self.host),
        )
        try:
            self._sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            logger.info("Joined CoIoT multicast group %s", C.COIOT_MULTICAST)
        except OSError as e:
            logger.warning("Unable to join multicast group %s: %s", C.COIOT_MULTICAST, e)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_listener(self, ip: str, on_message: Callable):
        """Register fn(message, coiot) for datagrams from ip."""
        with self._lock:
            self._listeners[ip] = on_message
        logger.debug("Listener registered for %s", ip)

    def remove_listener(self, ip: str):
        with self._lock:
            self._listeners.pop(ip, None)
        logger.debug("Listener removed for %s", ip)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def send_request(
        self,
        ip: str,
        uri: str,
        confirmable: bool = True,
        on_timeout: Optional[Callable] = None,
        port: int = C.COIOT_PORT,
    ) -> CoapRequest:
        """Send a GET to a device and track it. Never blocks on a response."""
        with self._lock:
            message_id = self._next_message_id
            self._next_message_id = (self._next_message_id + 1) & 0xFFFF
            request = CoapRequest(
                message_id,
                ip,
                uri,
                confirmable,
                timeout=self.request_timeout,
                on_timeout=on_timeout,
            )
            self._pending[message_id] = request

        frame = frames.encode_get_request(uri, message_id, confirmable)
        logger.debug(
            "→ GET %s to %s mid=%d %s", uri, ip, message_id, "CON" if confirmable else "NON"
        )
        self._send(frame, (ip, port))
        return request

    def cancel_request(self, request: Optional[CoapRequest]):
        """Cancel an outstanding request; late responses to it are discarded."""
        if request is None or not request.is_pending:
            return
        request.canceled = True
        with self._lock:
            self._pending.pop(request.message_id, None)
            self._canceled[request.message_id] = time.monotonic()
        logger.debug("Request canceled: %r", request)

    def check_timeouts(self, now: Optional[float] = None) -> list[CoapRequest]:
        """Expire stale requests and notify their owners. Returns the expired ones."""
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [r for r in self._pending.values() if r.is_expired(now)]
            for request in expired:
                del self._pending[request.message_id]
            for key, seen in list(self._recent.items()):
                if now - seen > C.EXCHANGE_LIFETIME:
                    del self._recent[key]
            for mid, canceled_at in list(self._canceled.items()):
                if now - canceled_at > C.EXCHANGE_LIFETIME:
                    del self._canceled[mid]

        for request in expired:
            request.completed = True
            logger.debug("Request timed out: %r", request)
            if request.on_timeout:
                try:
                    request.on_timeout(request)
                except Exception:
                    logger.exception("Timeout handler failed for %r", request)
        return expired

    def sweep_if_due(self, now: Optional[float] = None) -> list[CoapRequest]:
        """Run check_timeouts() when the last sweep is SWEEP_INTERVAL old.

        Called after every datagram and on socket timeouts, so a steady stream
        of broadcasts does not hold back timeout reporting.
        """
        now = time.monotonic() if now is None else now
        if now - self._last_sweep < C.SWEEP_INTERVAL:
            return []
        self._last_sweep = now
        return self.check_timeouts(now)

    # ------------------------------------------------------------------
    # Receive path
    # ------------------------------------------------------------------

    def _recv_loop(self):
        """Main receive loop - reads datagrams and dispatches by source IP."""
        while self._running:
            try:
                data, addr = self._sock.recvfrom(2048)
            except socket.timeout:
                self.sweep_if_due()
                continue
            except OSError:
                if self._running:
                    logger.exception("Socket error")
                break

            try:
                self.handle_datagram(data, addr)
            except Exception:
                logger.exception("Error handling datagram from %s", addr)
            self.sweep_if_due()

    def handle_datagram(self, data: bytes, addr: tuple) -> bool:
        """Decode one datagram and hand it to the owning session.

        Returns True if the message was delivered to a listener.
        """
        logger.debug("← RAW UDP from %s: %s", addr, data.hex())
        try:
            message = frames.decode_message(data)
        except ValueError as e:
            logger.warning("Bad CoAP frame from %s: %s", addr, e)
            return False

        ip = addr[0]
        mid = message["message_id"]
        now = time.monotonic()

        if message["type"] == C.TYPE_CON:
            self._send(frames.encode_empty_ack(mid), addr)

        with self._lock:
            key = (ip, mid, message["type"])
            if key in self._recent and now - self._recent[key] <= C.EXCHANGE_LIFETIME:
                duplicate = True
            else:
                duplicate = False
                self._recent[key] = now
            canceled = False
            if message["type"] in (C.TYPE_ACK, C.TYPE_RST):
                request = self._pending.pop(mid, None)
                if request:
                    request.completed = True
                canceled = mid in self._canceled
            elif message["code"] == C.CODE_CONTENT:
                # Separate (NON) response: completes the oldest request to this device
                for request in sorted(self._pending.values(), key=lambda r: r.sent_at):
                    if request.ip == ip and not request.confirmable:
                        request.completed = True
                        del self._pending[request.message_id]
                        break
            listener = self._listeners.get(ip)

        if duplicate:
            logger.debug("Duplicate message mid=%d from %s -> discard", mid, ip)
            return False
        if canceled:
            logger.debug("Response for canceled request mid=%d from %s -> discard", mid, ip)
            return False
        if message["type"] == C.TYPE_RST or (
            message["code"] == C.CODE_EMPTY and not message["payload"]
        ):
            return False
        if not listener:
            logger.debug("No session for %s (code %s)", ip, frames.format_code(message["code"]))
            return False

        listener(message, frames.decode_coiot(message))
        return True

    def _send(self, data: bytes, addr: tuple):
        """Send a UDP datagram."""
        if not self._sock:
            logger.debug("Listener not started, dropping %d bytes to %s", len(data), addr)
            return
        try:
            self._sock.sendto(data, addr)
        except OSError:
            logger.exception("Failed to send to %s", addr)
