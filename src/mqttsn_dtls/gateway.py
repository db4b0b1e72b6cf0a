""" The gateway proper: a DTLS server whose established channels are each
    handed to a :class:`mqttsn_dtls.session.Session`. The typical sequence
    of events is::

        bus = mqttsn_dtls.Bus()
        start = mqttsn_dtls.create(config)(bus)
        stop = start()
        ...
        stop().result()
"""

import concurrent.futures
import threading

from . import config as configuration
from . import log
from . import transport
from .session import Session
from .transport import client_key


class Gateway:
    """ Terminate DTLS connections and route their MQTT-SN traffic onto
        *bus*. The transport server is created immediately; any exception
        raised while doing so propagates to the caller unchanged, before a
        single listener is attached.

        :ivar sessions: The :class:`Session` of every open channel, keyed
            by client key.
    """

    def __init__(self, config, bus):

        self.config = configuration.get(config)
        self.bus = bus
        self.log = log.wrap(self.config.get('log'))
        self.sessions = dict()
        self.server = transport.create_server(self.config)

        self._stopped = None
        self._stop_lock = threading.Lock()

        if self.log.enabled('debug'):
            self.server.on('connection', self._connection)

        if self.log.enabled('warn'):
            self.server.on('error', self._error)

        self.server.on('secureConnection', self._secure_connection)


    def start(self):
        """ Bind the server according to the ``bind`` configuration and
            return :func:`stop`.
        """

        self.server.bind(self.config['bind'])
        return self.stop


    def stop(self):
        """ Close the server and every open channel. Returns a
            :class:`concurrent.futures.Future` that completes once the
            transport has released its resources; repeated calls return the
            same future.
        """

        with self._stop_lock:
            if self._stopped is not None:
                return self._stopped

            future = concurrent.futures.Future()
            self._stopped = future

        def closed():
            if future.done():
                return
            future.set_result(None)

        try:
            self.server.close(closed)
        except Exception as e:
            future.set_exception(e)

        return future


    def _connection(self, peer):

        fields = dict()
        fields['message_id'] = log.HANDSHAKE_STARTED
        fields['clientKey'] = client_key(peer)

        self.log.debug('Handshake started by [%s]:%s' % (peer.address, peer.port), fields)


    def _error(self, error, peer=None):

        if peer is None:
            return

        fields = dict()
        fields['message_id'] = log.PEER_ERROR
        fields['clientKey'] = client_key(peer)

        self.log.warn('Error caused by [%s]:%s: %s' % (peer.address, peer.port, error), fields)


    def _secure_connection(self, channel):

        session = Session(channel, self.bus, self.config, self.log)
        key = session.client_key
        self.sessions[key] = session

        def forget():
            if self.sessions.get(key) is session:
                del self.sessions[key]

        channel.on('close', forget)


# end of class Gateway



def create(config):
    """ Return a function that, given a bus, constructs a :class:`Gateway`
        and returns its start method. The configuration is validated here,
        the transport server is constructed when the bus is supplied.
    """

    config = configuration.get(config)

    def attach(bus):
        gateway = Gateway(config, bus)
        return gateway.start

    return attach


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
