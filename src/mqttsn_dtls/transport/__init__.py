"""Secure datagram transport implementations."""

import importlib

from .base import (
    Channel,
    Peer,
    Server,
    TransportConfigError,
    TransportError,
    TransportPortError,
    client_key,
)

DEFAULT_BACKEND = "dtls"


def create_server(config):
    """Construct the transport server selected by ``config['transport']``.

    Backends are imported on demand, so that the OpenSSL bindings are only
    required when the DTLS backend is actually used. Any exception raised
    while constructing the server propagates unchanged.
    """

    backend = config.get("transport") or DEFAULT_BACKEND

    try:
        module = importlib.import_module("." + backend, __name__)
    except ModuleNotFoundError as exc:
        if exc.name == f"{__name__}.{backend}":
            raise TransportConfigError(f"unknown transport backend: {backend!r}") from exc
        raise

    return module.create_server(config)
