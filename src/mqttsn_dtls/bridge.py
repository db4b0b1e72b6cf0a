""" Connect the in-process bus to the outside world via ZeroMQ. Every
    message a client sends is republished on a PUB socket; messages for
    clients are received on a SUB socket connected to one or more upstream
    PUB sockets and emitted on the bus, where the session for that client
    picks them up.

    The multipart layout is::

        topic, version, header, bulk

    The topic is ``'<category>.<clientKey>.'``; the trailing dot prevents
    one client key from matching as a prefix of another, so subscribers can
    filter per client. The header is the JSON-encoded packet dictionary; a
    bytes-valued field (``payload``, ``will_msg`` or ``gw_add``) travels in
    the bulk frame instead, its name recorded in the header as ``_bulk``.
"""

import logging
import threading
import traceback
import zmq

from . import json
from .bus import INGRESS, OUTGRESS, WILDCARD, ingress, outgress

logger = logging.getLogger(__name__)

version = b'1'
minimum_port = 10139
maximum_port = 13679
zmq_context = zmq.Context.instance()


def to_frames(category, message):
    """ Return the multipart tuple for *message*, which must carry a
        ``clientKey``.
    """

    client_key = message['clientKey']
    header = dict()
    bulk = b''
    bulk_name = None

    for key, value in message.items():
        if isinstance(value, (bytes, bytearray, memoryview)):
            if bulk_name is not None:
                raise ValueError('more than one binary field: %s, %s' % (bulk_name, key))
            bulk_name = key
            bulk = bytes(value)
        else:
            header[key] = value

    if bulk_name is not None:
        header['_bulk'] = bulk_name

    topic = '%s.%s.' % (category, client_key)
    return (topic.encode(), version, json.dumps(header), bulk)


def from_frames(parts):
    """ Return ``(category, message)`` for a received multipart message.
        Raises :class:`ValueError` if the parts cannot be interpreted.
    """

    if len(parts) != 4:
        raise ValueError('expected 4 frames, got %d' % (len(parts)))

    topic, their_version, header, bulk = parts

    if their_version != version:
        raise ValueError('message is bridge protocol %r, expected %r' % (their_version, version))

    category = bytes(topic).decode().split('.', 1)[0]

    try:
        message = json.loads(header)
    except json.DecodeError as e:
        raise ValueError('invalid header: ' + str(e))

    if isinstance(message, dict):
        pass
    else:
        raise ValueError('header is not an object')

    bulk_name = message.pop('_bulk', None)
    if bulk_name is not None:
        message[bulk_name] = bytes(bulk)

    return category, message



class Bridge:
    """ Relay ingress traffic from *bus* to a ZeroMQ PUB socket, and
        outgress traffic from the *upstream* PUB sockets onto *bus*.

        The PUB socket listens on all interfaces on *port*, or on the first
        available port in the default range if *port* is None. *upstream*
        is a sequence of ``(address, port)`` pairs.

        :ivar port: The port the PUB socket is listening on.
    """

    def __init__(self, bus, port=None, upstream=()):

        self.bus = bus
        self.socket = zmq_context.socket(zmq.PUB)
        self.socket.setsockopt(zmq.LINGER, 0)
        self.socket_lock = threading.Lock()

        if port is None:
            minimum = minimum_port
            maximum = maximum_port
        else:
            port = int(port)
            minimum = port
            maximum = port

        trial = minimum
        while trial <= maximum:
            try:
                self.socket.bind('tcp://*:' + str(trial))
            except zmq.error.ZMQError:
                # Assume this port is in use.
                trial += 1
            else:
                break

        if trial > maximum:
            self.socket.close()
            if port is None:
                error = 'no ports available in range %d:%d' % (minimum, maximum)
            else:
                error = 'port already in use: ' + str(port)
            raise zmq.error.ZMQError(msg=error)

        self.port = trial

        self.subscriber = zmq_context.socket(zmq.SUB)
        self.subscriber.setsockopt(zmq.LINGER, 0)
        self.subscriber.setsockopt(zmq.SUBSCRIBE, (OUTGRESS + '.').encode())

        for address, upstream_port in upstream:
            if ':' in address:
                self.subscriber.setsockopt(zmq.IPV6, 1)
                address = '[' + address + ']'
            self.subscriber.connect('tcp://%s:%d' % (address, upstream_port))

        self.ingress_topic = ingress(WILDCARD)
        self.ingress_handler = self.publish
        self.bus.on(self.ingress_topic, self.ingress_handler)

        self.shutdown = False
        self.thread = threading.Thread(target=self.run)
        self.thread.daemon = True
        self.thread.start()


    def publish(self, message):
        """ Send an ingress *message* out through the PUB socket.
        """

        parts = to_frames(INGRESS, message)

        # Concurrent send_multipart() calls on one socket interleave frames.

        with self.socket_lock:
            self.socket.send_multipart(parts)


    def run(self):

        poller = zmq.Poller()
        poller.register(self.subscriber, zmq.POLLIN)

        while self.shutdown == False:
            sockets = poller.poll(100)
            for active, flag in sockets:
                if self.subscriber == active:
                    parts = self.subscriber.recv_multipart()
                    try:
                        self._outgress_incoming(parts)
                    except Exception:
                        logger.error('outgress relay failed:\n%s', traceback.format_exc())

        self.subscriber.close()


    def _outgress_incoming(self, parts):

        try:
            category, message = from_frames(parts)
            client_key = message['clientKey']
            cmd = message['cmd']
        except (KeyError, ValueError):
            logger.warning('dropping malformed outgress message:\n%s', traceback.format_exc())
            return

        if category != OUTGRESS:
            return

        for value in (client_key, cmd):
            if isinstance(value, str) and value != '' and value != WILDCARD:
                continue
            logger.warning('dropping outgress message addressed to %r/%r', client_key, cmd)
            return

        consumed = self.bus.emit(outgress(client_key, cmd), message)

        if consumed:
            pass
        else:
            logger.info('no session for outgress message to %s', client_key)


    def close(self):
        """ Stop relaying in both directions and release the sockets.
        """

        self.bus.remove_listener(self.ingress_topic, self.ingress_handler)
        self.shutdown = True
        self.thread.join()

        with self.socket_lock:
            self.socket.close()


# end of class Bridge



def create(config, bus):
    """ Return a :class:`Bridge` for the ``bridge`` section of *config*, or
        None if there is no such section.
    """

    try:
        section = config['bridge']
    except KeyError:
        return None

    return Bridge(bus, section.get('port'), section.get('upstream', ()))


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
