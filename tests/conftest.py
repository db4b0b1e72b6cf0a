import pytest

import mqttsn_dtls
from mqttsn_dtls import transport
from mqttsn_dtls.transport import Peer


class FakeServer(transport.Server):
    """ Stand-in for the DTLS server: records bind() and close() calls,
        events are injected by the test via emit().
    """

    def __init__(self, config):
        transport.Server.__init__(self)
        self.config = config
        self.bound = list()
        self.closes = list()
        self.close_immediately = True

    def bind(self, bind):
        self.bound.append(bind)

    def close(self, callback=None):
        self.closes.append(callback)
        if self.close_immediately and callback is not None:
            callback()


class FakeChannel(transport.Channel):

    def __init__(self, address='::1', port=12345, chain=b''):
        transport.Channel.__init__(self)
        self.peer = Peer(address, port)
        self.chain = chain
        self.chain_requests = 0
        self.sent = list()
        self.fail_send = None

    def address(self):
        return self.peer

    def send(self, data):
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(data)

    def get_cert_chain(self):
        self.chain_requests += 1
        return self.chain

    def close(self):
        self.emit('close')


class Recorder:
    """ A logger offering only the requested *levels*. Every call is kept
        in :attr:`calls` as a (level, message, fields) tuple.
    """

    def __init__(self, *levels):
        self.calls = list()
        for level in levels:
            setattr(self, level, self._method(level))

    def _method(self, level):
        def method(message, fields):
            self.calls.append((level, message, fields))
        return method

    def messages(self, level=None):
        return [message for called, message, fields in self.calls if level is None or called == level]

    def find(self, message):
        for call in self.calls:
            if call[1] == message:
                return call
        return None


class SpyBus(mqttsn_dtls.Bus):
    """ A real bus that additionally remembers what was asked of it.
    """

    def __init__(self):
        mqttsn_dtls.Bus.__init__(self)
        self.subscribed = list()
        self.removed = list()
        self.emitted = list()

    def on(self, topic, handler):
        self.subscribed.append((topic, handler))
        mqttsn_dtls.Bus.on(self, topic, handler)

    def remove_listener(self, topic, handler):
        self.removed.append((topic, handler))
        return mqttsn_dtls.Bus.remove_listener(self, topic, handler)

    def emit(self, topic, payload):
        self.emitted.append((topic, payload))
        return mqttsn_dtls.Bus.emit(self, topic, payload)


@pytest.fixture
def servers(monkeypatch):
    """ Replace the transport factory; every server constructed by the
        gateway is appended to the returned list.
    """

    created = list()

    def create_server(config):
        server = FakeServer(config)
        created.append(server)
        return server

    monkeypatch.setattr(mqttsn_dtls.transport, 'create_server', create_server)
    return created


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def bus():
    return SpyBus()


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
