import pytest

from mqttsn_dtls import transport
from mqttsn_dtls.transport import Peer


def test_client_key():

    assert transport.client_key(Peer('::1', 12345)) == '::1_12345'
    assert transport.client_key(Peer('192.0.2.1', 5684)) == '192.0.2.1_5684'


def test_unknown_backend():

    with pytest.raises(transport.TransportConfigError):
        transport.create_server({'transport': 'carrier_pigeon'})


def test_errors():

    assert issubclass(transport.TransportPortError, transport.TransportError)
    assert issubclass(transport.TransportConfigError, transport.TransportError)


def test_abstract():

    with pytest.raises(TypeError):
        transport.Server()

    with pytest.raises(TypeError):
        transport.Channel()


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
