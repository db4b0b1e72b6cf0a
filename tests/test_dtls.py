import datetime
import socket
import threading
import time
import pytest

from mqttsn_dtls import transport
from mqttsn_dtls.transport import Peer, dtls


class FakeConnection:
    """ Stands in for a pydtls SSLConnection on a real, unconnected UDP
        socket, so that file descriptors behave as they would.
    """

    def __init__(self, incoming=()):
        self.socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.incoming = list(incoming)
        self.written = list()
        self.handshakes = 0
        self.shut = False

    def get_socket(self, inbound):
        return self.socket

    def do_handshake(self):
        self.handshakes += 1

    def read(self, size):
        return self.incoming.pop(0)

    def write(self, data):
        self.written.append(data)
        return len(data)

    def shutdown(self):
        self.shut = True

    def getpeercert(self, binary_form=False):
        return None

    def get_timeout(self):
        return None

    def handle_timeout(self):
        return False


class FakeListener:

    def __init__(self, connection, peer=('::1', 5684)):
        self.connection = connection
        self.peer = peer

    def listen(self):
        return self.peer

    def accept(self):
        return self.connection, self.peer

    def get_timeout(self):
        return None

    def handle_timeout(self):
        return False


@pytest.fixture
def files(tmp_path):
    """ Key, certificate and CA paths. Only their existence is checked
        before the server is bound.
    """

    paths = dict()
    for name in ('key', 'cert', 'ca'):
        path = tmp_path / (name + '.pem')
        path.write_bytes(b'placeholder\n')
        paths[name] = str(path)

    return paths


@pytest.fixture
def server(files):
    server = dtls.Server({'key': files['key'], 'cert': files['cert']})
    yield server
    server.close()


def attach(server, connection, peer=('::1', 1)):
    channel = dtls.Channel(server, connection, peer)
    server.channels[channel.fileno] = channel
    return channel


def test_config_errors(files):

    invalid = (
        {},
        {'key': files['key']},
        {'cert': files['cert']},
        {'key': files['key'], 'cert': '/nonexistent/cert.pem'},
        {'key': files['key'], 'cert': files['cert'], 'ca': '/nonexistent/ca.pem'},
        {'key': files['key'], 'cert': files['cert'], 'verify_peer': True},
    )

    for config in invalid:
        with pytest.raises(transport.TransportConfigError):
            dtls.Server(config)


def test_verify_peer_follows_ca(files):

    server = dtls.Server(files)
    assert server.verify_peer == True
    server.close()

    config = dict(files)
    config['verify_peer'] = False
    server = dtls.Server(config)
    assert server.verify_peer == False
    server.close()


def test_default_backend(files):

    server = transport.create_server({'key': files['key'], 'cert': files['cert']})
    assert isinstance(server, dtls.Server)
    server.close()


def test_close_before_bind(server):

    closed = list()
    server.close(lambda: closed.append(1))
    assert closed == [1]


def test_bind_port_in_use(server):

    occupied = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    occupied.bind(('127.0.0.1', 0))
    port = occupied.getsockname()[1]

    try:
        with pytest.raises(transport.TransportPortError):
            server.bind({'address': '127.0.0.1', 'port': port})
    finally:
        occupied.close()

    assert server.thread is None
    assert server.socket is None


def test_handshake_established(server):

    connection = FakeConnection()
    established = list()
    server.on('secureConnection', established.append)
    server.listener = FakeListener(connection)

    server._listen()

    channel, = established
    assert connection.handshakes == 1
    assert server.handshakes == {}
    assert server.channels == {channel.fileno: channel}
    assert channel.address() == Peer('::1', 5684)
    assert channel.get_cert_chain() == b''

    channel._shutdown()
    assert server.channels == {}


def test_failing_listeners_contained(server):

    def broken(*args):
        raise RuntimeError('listener failed')

    server.on('connection', broken)
    server.on('secureConnection', broken)

    connection = FakeConnection()
    server.listener = FakeListener(connection)

    server._listen()

    # The half-initialized channel is closed, the server carries on.
    assert server.channels == {}
    assert server.handshakes == {}
    assert connection.shut == True


def test_handshake_timeout(server):

    errors = list()
    server.on('error', lambda error, peer: errors.append((error, peer)))
    server.listener = FakeListener(None)

    stalled = dtls.Handshake(FakeConnection(), Peer('::1', 7))
    stalled.started = time.time() - server.handshake_timeout - 1
    server.handshakes[stalled.fileno] = stalled

    waiting = dtls.Handshake(FakeConnection(), Peer('::1', 8))
    server.handshakes[waiting.fileno] = waiting

    server._retransmit()

    assert list(server.handshakes.values()) == [waiting]
    assert len(errors) == 1
    error, peer = errors[0]
    assert isinstance(error, transport.TransportError)
    assert peer == Peer('::1', 7)

    waiting.socket.close()


def test_idle_expiry(files):

    server = dtls.Server({'key': files['key'], 'cert': files['cert'], 'idle_timeout': 5})

    stale = attach(server, FakeConnection(), ('::1', 1))
    fresh = attach(server, FakeConnection(), ('::1', 2))
    stale.last = time.time() - 10

    closed = list()
    stale.on('close', lambda: closed.append('stale'))
    fresh.on('close', lambda: closed.append('fresh'))

    server._expire()

    assert closed == ['stale']
    assert stale.closed == True
    assert list(server.channels.values()) == [fresh]

    fresh._shutdown()
    server.close()


def test_queued_send(server):

    connection = FakeConnection()
    channel = attach(server, connection)

    channel.send(b'\x02\x17')
    assert connection.written == []

    server._drain()
    assert connection.written == [b'\x02\x17']

    channel.close()
    assert channel.closed == False

    server._drain()
    assert channel.closed == True
    assert connection.shut == True
    assert server.channels == {}

    with pytest.raises(transport.TransportError):
        channel.send(b'\x02\x17')


def test_message_listener_failure(server):

    connection = FakeConnection([b'\x02\x16', b'\x02\x16'])
    channel = attach(server, connection)

    def broken(data):
        raise RuntimeError('listener failed')

    channel.on('message', broken)
    server._readable(channel)
    assert channel.closed == False

    received = list()
    channel.remove_listener('message', broken)
    channel.on('message', received.append)
    server._readable(channel)

    assert received == [b'\x02\x16']
    channel._shutdown()


def test_bind_and_close(tmp_path):

    try:
        dtls._pydtls()
    except Exception as e:
        pytest.skip('pydtls cannot be loaded: %s' % (e))

    from cryptography import x509
    from cryptography.x509.oid import NameOID
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec

    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, 'gateway')])
    now = datetime.datetime.now(datetime.timezone.utc)

    builder = x509.CertificateBuilder()
    builder = builder.subject_name(name)
    builder = builder.issuer_name(name)
    builder = builder.public_key(key.public_key())
    builder = builder.serial_number(x509.random_serial_number())
    builder = builder.not_valid_before(now - datetime.timedelta(minutes=1))
    builder = builder.not_valid_after(now + datetime.timedelta(days=1))
    certificate = builder.sign(key, hashes.SHA256())

    key_path = tmp_path / 'key.pem'
    cert_path = tmp_path / 'cert.pem'
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption()))
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))

    server = dtls.Server({'key': str(key_path), 'cert': str(cert_path)})
    server.bind({'address': '127.0.0.1', 'port': 0})
    assert server.thread.is_alive()

    released = threading.Event()
    server.close(released.set)

    assert released.wait(5)
    server.thread.join(5)
    assert server.thread.is_alive() == False
    assert server.socket is None


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
