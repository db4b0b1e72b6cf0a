"""DTLS transport on top of pydtls (the ``Dtls`` distribution).

A single background thread owns every socket: the listening socket, on
which pydtls performs the stateless cookie exchange, one non-blocking socket
per peer whose handshake is still in progress, and one per established
peer. Handshakes are advanced whenever their socket is readable or their
retransmission timer expires, so a peer that stops answering halfway never
holds up anybody else. Outbound datagrams from other threads are queued and
the I/O thread is woken through an inproc ZeroMQ pair, the same way the
publish server hands messages to its sending thread.

pydtls is imported on first use: importing it loads the OpenSSL libraries.
"""

from __future__ import annotations

import logging
import os
import itertools
import queue
import socket
import ssl
import threading
import time
import traceback
from typing import Callable, Dict, List, Optional

import zmq

from . import base

logger = logging.getLogger(__name__)

MAXIMUM_DATAGRAM = 1500
HANDSHAKE_TIMEOUT = 30.0
zmq_context = zmq.Context.instance()
_instances = itertools.count()


def _pydtls():
    from dtls import err
    from dtls.sslconnection import SSLConnection
    return err, SSLConnection


def _ssl_error(exc: Exception, *codes: int) -> bool:
    """Return True if *exc* is a pydtls error carrying one of *codes*."""
    err, _connection = _pydtls()
    return isinstance(exc, err.SSLError) and exc.errno in codes


def _would_block(exc: Exception) -> bool:
    err, _connection = _pydtls()
    return _ssl_error(exc, err.SSL_ERROR_WANT_READ, err.SSL_ERROR_WANT_WRITE)


class Handshake:
    """An accepted association whose handshake has not completed yet."""

    def __init__(self, connection, peer: base.Peer):
        self.connection = connection
        self.peer = peer
        self.socket = connection.get_socket(True)
        self.socket.setblocking(False)
        self.fileno = self.socket.fileno()
        self.started = time.time()


class Channel(base.Channel):
    """An established DTLS association with one peer."""

    def __init__(self, server: "Server", connection, peer):
        base.Channel.__init__(self)
        self.server = server
        self.connection = connection
        self.peer = base.Peer(peer[0], peer[1])
        self.socket = connection.get_socket(True)
        self.fileno = self.socket.fileno()
        self.last = time.time()
        self.closed = False

    def address(self) -> base.Peer:
        return self.peer

    def send(self, data: bytes) -> None:
        if self.closed:
            raise base.TransportError(f"channel to {self.peer} is closed")
        self.server._enqueue(self, bytes(data))

    def close(self) -> None:
        self.server._enqueue(self, None)

    def get_cert_chain(self) -> bytes:
        der = self.connection.getpeercert(True)
        if der is None:
            return b""
        return ssl.DER_cert_to_PEM_cert(der).encode()

    def _read(self) -> None:
        try:
            data = self.connection.read(MAXIMUM_DATAGRAM)
        except Exception as exc:
            # Retransmitted handshake records wake the poller too.
            if _would_block(exc):
                return
            err, _connection = _pydtls()
            if _ssl_error(exc, err.SSL_ERROR_ZERO_RETURN):
                self._shutdown(notify=False)
                return
            raise

        self.last = time.time()

        if data:
            self.server._notify(self, "message", data)

    def _write(self, data: bytes) -> None:
        self.connection.write(data)

    def _shutdown(self, notify: bool = True) -> None:
        if self.closed:
            return
        self.closed = True

        if notify:
            try:
                self.connection.shutdown()
            except Exception:
                logger.debug("shutdown of %s failed:\n%s", self.peer, traceback.format_exc())

        self.socket.close()
        self.server._forget(self)
        self.server._notify(self, "close")


class Server(base.Server):
    """DTLS server. Requires ``key`` and ``cert``; if ``ca`` is set and
    ``verify_peer`` is not false, clients must present a certificate signed
    by it.
    """

    def __init__(self, config):
        base.Server.__init__(self)

        self.keyfile = config.get("key")
        self.certfile = config.get("cert")
        self.ca = config.get("ca")
        self.verify_peer = config.get("verify_peer", self.ca is not None)
        self.idle_timeout = config.get("idle_timeout")
        self.handshake_timeout = HANDSHAKE_TIMEOUT

        if not self.keyfile or not self.certfile:
            raise base.TransportConfigError("the DTLS transport needs both 'key' and 'cert'")

        for path in (self.keyfile, self.certfile, self.ca):
            if path is None:
                continue
            if not os.path.isfile(path):
                raise base.TransportConfigError("cannot read file: " + str(path))

        if self.verify_peer and self.ca is None:
            raise base.TransportConfigError("'verify_peer' requires 'ca'")

        self.channels: Dict[int, Channel] = dict()
        self.handshakes: Dict[int, Handshake] = dict()
        self.listener = None
        self.socket: Optional[socket.socket] = None
        self.thread: Optional[threading.Thread] = None
        self.shutdown = False
        self._closed: List[Callable[[], None]] = list()

        self._queue = queue.SimpleQueue()

        internal = f"inproc://dtls.Server:signal:{next(_instances)}"
        self._sig_rx = zmq_context.socket(zmq.PAIR)
        self._sig_rx.bind(internal)
        self._sig_tx = zmq_context.socket(zmq.PAIR)
        self._sig_tx.connect(internal)
        self._sig_lock = threading.Lock()

    def bind(self, bind) -> None:
        if self.thread is not None:
            raise base.TransportError("server is already bound")

        address = bind.get("address", "::")
        port = int(bind.get("port", 0))

        if ":" in address:
            family = socket.AF_INET6
        else:
            family = socket.AF_INET

        sock = socket.socket(family, socket.SOCK_DGRAM)

        try:
            sock.bind((address, port))
        except OSError as exc:
            sock.close()
            raise base.TransportPortError(f"cannot bind [{address}]:{port}: {exc}") from exc

        try:
            _err, SSLConnection = _pydtls()
        except ImportError as exc:
            sock.close()
            raise base.TransportConfigError("the DTLS transport needs pydtls: pip install Dtls") from exc

        if self.verify_peer:
            cert_reqs = ssl.CERT_REQUIRED
        else:
            cert_reqs = ssl.CERT_NONE

        try:
            self.listener = SSLConnection(
                sock,
                keyfile=self.keyfile,
                certfile=self.certfile,
                server_side=True,
                cert_reqs=cert_reqs,
                ca_certs=self.ca,
                do_handshake_on_connect=False,
            )
        except Exception:
            sock.close()
            raise

        self.socket = sock
        self.thread = threading.Thread(target=self.run, daemon=True)
        self.thread.start()

    def close(self, callback: Optional[Callable[[], None]] = None) -> None:
        if callback is not None:
            self._closed.append(callback)

        if self.thread is None or not self.thread.is_alive():
            self._release()
            return

        self.shutdown = True
        self._wake()

    # --- I/O thread ---

    def run(self) -> None:
        try:
            self._loop()
        except Exception:
            logger.error("DTLS server loop failed:\n%s", traceback.format_exc())
        finally:
            for channel in list(self.channels.values()):
                channel._shutdown()
            for handshake in list(self.handshakes.values()):
                handshake.socket.close()
            self.handshakes.clear()
            self._release()

    def _loop(self) -> None:
        poller = zmq.Poller()
        poller.register(self._sig_rx, zmq.POLLIN)

        listening = self.listener.get_socket(True).fileno()
        poller.register(listening, zmq.POLLIN)

        registered = set()

        while not self.shutdown:
            wanted = set(self.channels) | set(self.handshakes)
            for fileno in wanted - registered:
                poller.register(fileno, zmq.POLLIN)
                registered.add(fileno)
            for fileno in registered - wanted:
                poller.unregister(fileno)
                registered.discard(fileno)

            for active, _flag in poller.poll(self._poll_timeout()):
                if active is self._sig_rx:
                    self._drain()
                elif active == listening:
                    self._listen()
                elif active in self.handshakes:
                    self._handshake(self.handshakes[active])
                else:
                    channel = self.channels.get(active)
                    if channel is not None:
                        self._readable(channel)

            self._retransmit()
            self._expire()

    def _poll_timeout(self) -> int:
        timeouts = [1000]

        connections = [self.listener]
        connections.extend(handshake.connection for handshake in self.handshakes.values())

        for connection in connections:
            timeout = connection.get_timeout()
            if timeout is not None:
                timeouts.append(max(1, int(timeout.total_seconds() * 1000)))

        return min(timeouts)

    def _notify(self, source, event: str, *args) -> bool:
        """Emit *event* on *source*. A raising listener is logged; it never
        reaches the I/O loop. Returns False if a listener raised.
        """
        try:
            source.emit(event, *args)
        except Exception:
            logger.error("'%s' listener failed:\n%s", event, traceback.format_exc())
            return False
        return True

    def _listen(self) -> None:
        try:
            peer = self.listener.listen()
        except Exception as exc:
            logger.warning("DTLS listen failed: %s", exc)
            return

        if peer is None:
            # A HelloVerifyRequest went out; the peer has to come back with
            # the cookie before anything else happens.
            return

        peer = base.Peer(peer[0], peer[1])
        self._notify(self, "connection", peer)

        try:
            accepted = self.listener.accept()
        except Exception as exc:
            self._notify(self, "error", exc, peer)
            return

        if accepted is None:
            return

        connection, _address = accepted
        handshake = Handshake(connection, peer)
        self.handshakes[handshake.fileno] = handshake
        self._handshake(handshake)

    def _handshake(self, handshake: Handshake) -> None:
        try:
            handshake.connection.do_handshake()
        except Exception as exc:
            if _would_block(exc):
                return
            self._abandon(handshake, exc)
            return

        del self.handshakes[handshake.fileno]

        channel = Channel(self, handshake.connection, handshake.peer)
        self.channels[channel.fileno] = channel

        if not self._notify(self, "secureConnection", channel):
            channel._shutdown()

    def _abandon(self, handshake: Handshake, exc: Exception) -> None:
        self.handshakes.pop(handshake.fileno, None)
        handshake.socket.close()
        self._notify(self, "error", exc, handshake.peer)

    def _retransmit(self) -> None:
        try:
            self.listener.handle_timeout()
        except Exception as exc:
            logger.warning("DTLS listener timeout handling failed: %s", exc)

        now = time.time()
        for handshake in list(self.handshakes.values()):
            if now - handshake.started > self.handshake_timeout:
                peer = handshake.peer
                error = base.TransportError(f"handshake with [{peer.address}]:{peer.port} timed out")
                self._abandon(handshake, error)
                continue

            try:
                handshake.connection.handle_timeout()
            except Exception as exc:
                self._abandon(handshake, exc)

    def _readable(self, channel: Channel) -> None:
        try:
            channel._read()
        except Exception as exc:
            self._notify(self, "error", exc, channel.peer)
            channel._shutdown(notify=False)

    def _expire(self) -> None:
        if not self.idle_timeout:
            return

        now = time.time()
        for channel in list(self.channels.values()):
            if now - channel.last > self.idle_timeout:
                channel._shutdown()

    def _drain(self) -> None:
        while True:
            try:
                self._sig_rx.recv(flags=zmq.NOBLOCK)
            except zmq.Again:
                break

        while True:
            try:
                channel, data = self._queue.get(block=False)
            except queue.Empty:
                break

            if channel.closed:
                continue

            if data is None:
                channel._shutdown()
                continue

            try:
                channel._write(data)
            except Exception as exc:
                self._notify(self, "error", exc, channel.peer)

    def _enqueue(self, channel: Channel, data: Optional[bytes]) -> None:
        self._queue.put((channel, data))
        self._wake()

    def _wake(self) -> None:
        with self._sig_lock:
            self._sig_tx.send(b"")

    def _forget(self, channel: Channel) -> None:
        self.channels.pop(channel.fileno, None)

    def _release(self) -> None:
        if self.socket is not None:
            self.socket.close()
            self.socket = None

        self._sig_rx.close()
        self._sig_tx.close()

        callbacks = self._closed
        self._closed = list()
        for callback in callbacks:
            callback()


def create_server(config) -> Server:
    return Server(config)
