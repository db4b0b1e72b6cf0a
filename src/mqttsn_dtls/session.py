""" The :class:`Session` binds one established DTLS channel to the bus for
    as long as the channel is open. It owns a private MQTT-SN parser, the
    certificate attributes of the peer (only when a guard is configured),
    and a registry of every listener it installed, so that closing the
    channel can detach all of them in one place.
"""

import traceback

from collections.abc import Mapping

from . import cert
from . import guard
from . import log
from . import packet
from .bus import ingress, outgress
from .transport import Peer, client_key


ESTABLISHING = 'ESTABLISHING'
OPEN = 'OPEN'
CLOSED = 'CLOSED'


class Session:
    """ Wire a single *channel* to the *bus*. Everything happens within the
        constructor, which is expected to be invoked synchronously from the
        transport's ``secureConnection`` event: no datagram can arrive
        between the channel becoming available and the listeners being in
        place.

        Inbound, every datagram goes through the parser; every decoded packet
        goes through the guard and is then published under
        ``('snUnicastIngress', client_key, cmd)`` with the client key added.
        Outbound, anything published under
        ``('snUnicastOutgress', client_key, <anything>)`` is encoded and sent.

        :ivar client_key: ``<address>_<port>`` of the peer, the identity of
            this channel on the bus and in the logs.
        :ivar certificate: Attributes of the peer certificate, or None.
        :ivar state: One of ESTABLISHING, OPEN, or CLOSED.
    """

    def __init__(self, channel, bus, config, logger=None):

        self.state = ESTABLISHING
        self.channel = channel
        self.bus = bus
        self.log = log.wrap(logger)
        self.guard = config.get('guard')
        self.certificate = None
        self.registry = list()

        self.peer = _peer(channel.address())
        self.client_key = client_key(self.peer)

        self.log.debug('Handshake successfully finished with [%s]:%s' % self.peer, self._fields(log.HANDSHAKE_FINISHED))

        # Certificates are only parsed if somebody is going to look at them.

        if self.guard is not None:
            self._load_certificate()

        self.parser = packet.parser()

        # The handlers are stored once: a bound method is a new object every
        # time it is looked up, and removal is by identity.

        self.outgress_topic = outgress(self.client_key)
        self.outgress_handler = self._outgress

        self._register(self.channel, 'message', self._ingress)
        self._register(self.parser, 'packet', self._packet)
        self._register(self.parser, 'error', self._parser_error)
        self._register(self.bus, self.outgress_topic, self.outgress_handler)
        self._register(self.channel, 'close', self.close)

        self.state = OPEN


    def _register(self, source, topic, handler):
        source.on(topic, handler)
        self.registry.append((source, topic, handler))


    def _load_certificate(self):

        try:
            chain = self.channel.get_cert_chain()
            self.certificate = cert.parse(chain)
        except Exception as e:
            # Fail closed: without certificate attributes the guard cannot
            # make a meaningful decision, so nothing from this peer passes.
            self.certificate = None
            self.guard = guard.reject

            fields = self._fields(log.CERTIFICATE_ERROR)
            fields['stack'] = traceback.format_exc()
            self.log.warn('Certificate error: ' + str(e), fields)


    def _fields(self, message_id, message=None):

        fields = dict()

        if isinstance(message, Mapping):
            fields.update(message)

        fields['message_id'] = message_id
        fields['clientKey'] = self.client_key

        return fields


    def _ingress(self, data):

        if self.state != OPEN:
            return

        if self.log.enabled('debug'):
            fields = self._fields(log.INGRESS_DATAGRAM)
            fields['data'] = bytes(data).hex()
            self.log.debug('Ingress datagram', fields)

        self.parser.parse(data)


    def _packet(self, message):

        if self.state != OPEN:
            return

        if guard.check(self.guard, self.peer, self.certificate, message):
            pass
        else:
            self.log.warn('Packet rejected by guard', self._fields(log.PACKET_REJECTED, message))
            return

        published = dict(message)
        published['clientKey'] = self.client_key

        topic = ingress(self.client_key, message['cmd'])
        consumed = self.bus.emit(topic, published)

        if consumed:
            pass
        else:
            self.log.error('Unconsumed MQTTSN packet', self._fields(log.PACKET_UNCONSUMED, message))


    def _parser_error(self, error):

        if self.state != OPEN:
            return

        fields = self._fields(log.PARSER_ERROR)
        fields['stack'] = _stack(error)
        self.log.warn('Parser error: ' + str(error), fields)


    def _outgress(self, message):

        if self.state != OPEN:
            return

        try:
            data = packet.generate(message)

            if self.log.enabled('debug'):
                fields = self._fields(log.EGRESS_DATAGRAM)
                fields['data'] = data.hex()
                self.log.debug('Egress datagram', fields)

            self.channel.send(data)

        except Exception as e:
            fields = self._fields(log.GENERATOR_ERROR, message)
            fields['stack'] = traceback.format_exc()
            self.log.error('Generator error: ' + str(e), fields)


    def close(self):
        """ Detach every listener this session installed. This is invoked
            by the channel's ``close`` event; calling it more than once is
            harmless.
        """

        if self.state == CLOSED:
            return

        self.state = CLOSED

        registry = self.registry
        self.registry = list()

        for source, topic, handler in reversed(registry):
            source.remove_listener(topic, handler)

        self.log.debug('Connection to [%s]:%s closed' % self.peer, self._fields(log.CONNECTION_CLOSED))


# end of class Session



def _peer(address):
    """ Accept either a :class:`Peer` or anything with ``address`` and
        ``port`` as keys or attributes.
    """

    if isinstance(address, Peer):
        return address

    if isinstance(address, Mapping):
        return Peer(address['address'], address['port'])

    return Peer(address.address, address.port)


def _stack(error):

    if error.__traceback__ is None:
        return ''.join(traceback.format_exception_only(type(error), error))

    return ''.join(traceback.format_exception(type(error), error, error.__traceback__))


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
