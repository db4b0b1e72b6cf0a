"""Transport interface.

This is the (small) contract that secure datagram transports follow. The
gateway only ever talks to a :class:`Server` and the :class:`Channel`
instances it announces; the cryptography and record layer live behind it.

Server events:
    ``connection(peer)``        a handshake was started by *peer*
    ``error(err, peer)``        *peer* caused a transport-level error
    ``secureConnection(chan)``  a handshake completed, *chan* is a Channel

Channel events:
    ``message(data)``           a datagram arrived from the peer
    ``close()``                 the channel is gone
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import namedtuple
from typing import Any, Callable, Optional

from ..events import Emitter


# Transport agnostic exceptions

class TransportError(Exception):
    """Base class for all transport-layer errors."""


class TransportPortError(TransportError):
    """The requested address could not be bound."""


class TransportConfigError(TransportError):
    """The transport configuration is unusable."""


Peer = namedtuple('Peer', ('address', 'port'))


def client_key(peer: Peer) -> str:
    """Return the string identity of a channel to *peer*."""
    return f"{peer.address}_{peer.port}"


class Channel(Emitter, ABC):
    """One established secure channel to a single remote peer."""

    @abstractmethod
    def address(self) -> Peer:
        """Return the remote peer of this channel."""

    @abstractmethod
    def send(self, data: bytes) -> None:
        """Transmit one datagram to the peer."""

    @abstractmethod
    def get_cert_chain(self) -> bytes:
        """Return the peer certificate chain, PEM encoded."""

    @abstractmethod
    def close(self) -> None:
        """Shut down the channel; a ``close`` event follows."""


class Server(Emitter, ABC):
    """Accepts secure channels on a datagram socket."""

    @abstractmethod
    def bind(self, bind: Any) -> None:
        """Start listening according to *bind* (``address``, ``port``)."""

    @abstractmethod
    def close(self, callback: Optional[Callable[[], None]] = None) -> None:
        """Stop listening and close all channels.

        *callback* is invoked once everything has been released; it may be
        invoked from another thread.
        """
