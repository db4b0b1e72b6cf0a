""" Encoding and decoding of MQTT-SN (version 1.2) packets. One datagram
    carries exactly one packet. Decoded packets are dictionaries with a
    ``cmd`` key naming the message type, plus the fields of that type; see
    :data:`TYPES` for the names. :func:`generate` accepts the same
    dictionaries and returns the bytes to put on the wire.

    :class:`Parser` is the per-connection entry point: it is fed datagrams
    via :func:`Parser.parse` and announces the outcome as a ``packet`` or an
    ``error`` event, never raising.
"""

import struct

from .events import Emitter


TYPES = {
    0x00: 'advertise',
    0x01: 'searchgw',
    0x02: 'gwinfo',
    0x04: 'connect',
    0x05: 'connack',
    0x06: 'willtopicreq',
    0x07: 'willtopic',
    0x08: 'willmsgreq',
    0x09: 'willmsg',
    0x0A: 'register',
    0x0B: 'regack',
    0x0C: 'publish',
    0x0D: 'puback',
    0x0E: 'pubcomp',
    0x0F: 'pubrec',
    0x10: 'pubrel',
    0x12: 'subscribe',
    0x13: 'suback',
    0x14: 'unsubscribe',
    0x15: 'unsuback',
    0x16: 'pingreq',
    0x17: 'pingresp',
    0x18: 'disconnect',
    0x1A: 'willtopicupd',
    0x1B: 'willtopicresp',
    0x1C: 'willmsgupd',
    0x1D: 'willmsgresp',
}

CODES = dict((cmd, code) for code, cmd in TYPES.items())

RETURN_CODES = ('accepted', 'congestion', 'invalid topic id', 'not supported')
TOPIC_ID_TYPES = ('normal', 'pre-defined', 'short name')

PROTOCOL_ID = 0x01
MAXIMUM_LENGTH = 0xFFFF

# Bit layout of the flags field.

DUP = 0x80
QOS_SHIFT = 5
QOS_MASK = 0x60
RETAIN = 0x10
WILL = 0x08
CLEAN_SESSION = 0x04
TOPIC_ID_TYPE_MASK = 0x03


class PacketError(ValueError):
    """ A datagram could not be decoded, or a message could not be encoded.
    """


def decode(data):
    """ Decode a single datagram into a packet dictionary. Raises
        :class:`PacketError` if the datagram is not a valid MQTT-SN packet.
    """

    data = bytes(data)

    if len(data) < 2:
        raise PacketError('datagram too short: %d bytes' % (len(data)))

    if data[0] == 0x01:
        if len(data) < 4:
            raise PacketError('datagram too short for extended length: %d bytes' % (len(data)))
        length = struct.unpack('>H', data[1:3])[0]
        header = 3
    else:
        length = data[0]
        header = 1

    if length != len(data):
        raise PacketError('length field %d does not match datagram length %d' % (length, len(data)))

    code = data[header]

    try:
        cmd = TYPES[code]
    except KeyError:
        raise PacketError('unknown message type 0x%02x' % (code))

    body = data[header + 1:]
    packet = dict()
    packet['cmd'] = cmd

    decoder = _decoders[cmd]
    decoder(body, packet)

    return packet


def generate(message):
    """ Encode the packet dictionary *message* and return the datagram.
        Fields unknown to the message type (such as ``clientKey``) are
        ignored. Raises :class:`PacketError` for an unknown ``cmd`` or a
        missing or invalid field.
    """

    try:
        cmd = message['cmd']
    except (KeyError, TypeError):
        raise PacketError('message has no cmd: ' + repr(message))

    try:
        code = CODES[cmd]
    except (KeyError, TypeError):
        raise PacketError('unknown cmd: ' + repr(cmd))

    encoder = _encoders[cmd]

    try:
        body = encoder(message)
    except KeyError as e:
        raise PacketError("missing field %s for '%s'" % (e, cmd))
    except (struct.error, AttributeError, TypeError, ValueError, UnicodeError) as e:
        if isinstance(e, PacketError):
            raise
        raise PacketError("invalid field for '%s': %s" % (cmd, e))

    length = len(body) + 2

    if length < 256:
        return bytes((length, code)) + body

    length += 2

    if length > MAXIMUM_LENGTH:
        raise PacketError('packet too long: %d bytes' % (length))

    return b'\x01' + struct.pack('>HB', length, code) + body



class Parser(Emitter):
    """ Decoder bound to a single connection. Every call to :func:`parse`
        results in exactly one ``packet`` or ``error`` event.
    """

    def parse(self, data):

        try:
            packet = decode(data)
        except PacketError as e:
            self.emit('error', e)
            return

        self.emit('packet', packet)


# end of class Parser



def parser():
    """ Return a fresh :class:`Parser` instance.
    """

    return Parser()


# Field helpers.

def _need(body, size, cmd):
    if len(body) < size:
        raise PacketError("'%s' needs at least %d bytes, got %d" % (cmd, size, len(body)))


def _exact(body, size, cmd):
    if len(body) != size:
        raise PacketError("'%s' needs exactly %d bytes, got %d" % (cmd, size, len(body)))


def _word(body, offset):
    return struct.unpack('>H', body[offset:offset + 2])[0]


def _text(body, cmd):
    try:
        return body.decode('utf-8')
    except UnicodeDecodeError:
        raise PacketError("'%s' carries invalid UTF-8" % (cmd))


def _return_code(byte):
    try:
        return RETURN_CODES[byte]
    except IndexError:
        raise PacketError('invalid return code 0x%02x' % (byte))


def _flags(byte, topic_id=False):
    """ Unpack a flags byte. The TopicIdType bits are only interpreted, and
        only validated, when *topic_id* is set; CONNECT and the will
        messages leave them unused.
    """

    qos = (byte & QOS_MASK) >> QOS_SHIFT
    if qos == 3:
        qos = -1

    flags = dict()
    flags['dup'] = bool(byte & DUP)
    flags['qos'] = qos
    flags['retain'] = bool(byte & RETAIN)
    flags['will'] = bool(byte & WILL)
    flags['clean_session'] = bool(byte & CLEAN_SESSION)

    if topic_id:
        topic_id_type = byte & TOPIC_ID_TYPE_MASK
        try:
            flags['topic_id_type'] = TOPIC_ID_TYPES[topic_id_type]
        except IndexError:
            raise PacketError('reserved topic id type 0x%02x' % (topic_id_type))

    return flags


def _pack_flags(message, *names):

    byte = 0

    if 'dup' in names and message.get('dup', False):
        byte |= DUP

    if 'qos' in names:
        qos = message.get('qos', 0)
        if qos == -1:
            qos = 3
        elif qos not in (0, 1, 2):
            raise PacketError('invalid qos: ' + repr(qos))
        byte |= qos << QOS_SHIFT

    if 'retain' in names and message.get('retain', False):
        byte |= RETAIN

    if 'will' in names and message.get('will', False):
        byte |= WILL

    if 'clean_session' in names and message.get('clean_session', False):
        byte |= CLEAN_SESSION

    if 'topic_id_type' in names:
        topic_id_type = message.get('topic_id_type', 'normal')
        try:
            byte |= TOPIC_ID_TYPES.index(topic_id_type)
        except ValueError:
            raise PacketError('invalid topic_id_type: ' + repr(topic_id_type))

    return bytes((byte,))


def _pack_code(message):
    return_code = message['return_code']
    try:
        return bytes((RETURN_CODES.index(return_code),))
    except ValueError:
        raise PacketError('invalid return_code: ' + repr(return_code))


def _short_name(name):
    name = name.encode('utf-8')
    if len(name) != 2:
        raise PacketError('short topic names are exactly two bytes: ' + repr(name))
    return name


# Decoders, one per message type. Each fills in the packet dictionary.

def _decode_empty(cmd):
    def decoder(body, packet):
        _exact(body, 0, cmd)
    return decoder


def _decode_msg_id(cmd):
    def decoder(body, packet):
        _exact(body, 2, cmd)
        packet['msg_id'] = _word(body, 0)
    return decoder


def _decode_return_code(cmd):
    def decoder(body, packet):
        _exact(body, 1, cmd)
        packet['return_code'] = _return_code(body[0])
    return decoder


def _decode_will_topic(cmd):
    def decoder(body, packet):
        if len(body) == 0:
            # An empty WILLTOPIC deletes the will.
            packet['qos'] = 0
            packet['retain'] = False
            packet['will_topic'] = None
            return
        flags = _flags(body[0])
        packet['qos'] = flags['qos']
        packet['retain'] = flags['retain']
        packet['will_topic'] = _text(body[1:], cmd)
    return decoder


def _decode_will_msg(cmd):
    def decoder(body, packet):
        packet['will_msg'] = body
    return decoder


def _decode_advertise(body, packet):
    _exact(body, 3, 'advertise')
    packet['gw_id'] = body[0]
    packet['duration'] = _word(body, 1)


def _decode_searchgw(body, packet):
    _exact(body, 1, 'searchgw')
    packet['radius'] = body[0]


def _decode_gwinfo(body, packet):
    _need(body, 1, 'gwinfo')
    packet['gw_id'] = body[0]
    if len(body) > 1:
        packet['gw_add'] = body[1:]
    else:
        packet['gw_add'] = None


def _decode_connect(body, packet):
    _need(body, 4, 'connect')
    flags = _flags(body[0])
    packet['will'] = flags['will']
    packet['clean_session'] = flags['clean_session']
    packet['protocol_id'] = body[1]
    packet['duration'] = _word(body, 2)
    packet['client_id'] = _text(body[4:], 'connect')


def _decode_connack(body, packet):
    _exact(body, 1, 'connack')
    packet['return_code'] = _return_code(body[0])


def _decode_register(body, packet):
    _need(body, 4, 'register')
    packet['topic_id'] = _word(body, 0)
    packet['msg_id'] = _word(body, 2)
    packet['topic_name'] = _text(body[4:], 'register')


def _decode_ack(cmd):
    def decoder(body, packet):
        _exact(body, 5, cmd)
        packet['topic_id'] = _word(body, 0)
        packet['msg_id'] = _word(body, 2)
        packet['return_code'] = _return_code(body[4])
    return decoder


def _decode_publish(body, packet):
    _need(body, 5, 'publish')
    flags = _flags(body[0], topic_id=True)
    packet['dup'] = flags['dup']
    packet['qos'] = flags['qos']
    packet['retain'] = flags['retain']
    packet['topic_id_type'] = flags['topic_id_type']
    if flags['topic_id_type'] == 'short name':
        packet['topic_name'] = _text(body[1:3], 'publish')
    else:
        packet['topic_id'] = _word(body, 1)
    packet['msg_id'] = _word(body, 3)
    packet['payload'] = body[5:]


def _decode_subscription(cmd):
    def decoder(body, packet):
        _need(body, 3, cmd)
        flags = _flags(body[0], topic_id=True)
        packet['dup'] = flags['dup']
        packet['qos'] = flags['qos']
        packet['topic_id_type'] = flags['topic_id_type']
        packet['msg_id'] = _word(body, 1)
        topic = body[3:]
        if flags['topic_id_type'] == 'pre-defined':
            _exact(topic, 2, cmd)
            packet['topic_id'] = _word(topic, 0)
        elif flags['topic_id_type'] == 'short name':
            _exact(topic, 2, cmd)
            packet['topic_name'] = _text(topic, cmd)
        else:
            packet['topic_name'] = _text(topic, cmd)
    return decoder


def _decode_suback(body, packet):
    _exact(body, 6, 'suback')
    flags = _flags(body[0])
    packet['qos'] = flags['qos']
    packet['topic_id'] = _word(body, 1)
    packet['msg_id'] = _word(body, 3)
    packet['return_code'] = _return_code(body[5])


def _decode_pingreq(body, packet):
    if len(body) > 0:
        packet['client_id'] = _text(body, 'pingreq')
    else:
        packet['client_id'] = None


def _decode_disconnect(body, packet):
    if len(body) == 0:
        packet['duration'] = None
        return
    _exact(body, 2, 'disconnect')
    packet['duration'] = _word(body, 0)


_decoders = {
    'advertise': _decode_advertise,
    'searchgw': _decode_searchgw,
    'gwinfo': _decode_gwinfo,
    'connect': _decode_connect,
    'connack': _decode_connack,
    'willtopicreq': _decode_empty('willtopicreq'),
    'willtopic': _decode_will_topic('willtopic'),
    'willmsgreq': _decode_empty('willmsgreq'),
    'willmsg': _decode_will_msg('willmsg'),
    'register': _decode_register,
    'regack': _decode_ack('regack'),
    'publish': _decode_publish,
    'puback': _decode_ack('puback'),
    'pubcomp': _decode_msg_id('pubcomp'),
    'pubrec': _decode_msg_id('pubrec'),
    'pubrel': _decode_msg_id('pubrel'),
    'subscribe': _decode_subscription('subscribe'),
    'suback': _decode_suback,
    'unsubscribe': _decode_subscription('unsubscribe'),
    'unsuback': _decode_msg_id('unsuback'),
    'pingreq': _decode_pingreq,
    'pingresp': _decode_empty('pingresp'),
    'disconnect': _decode_disconnect,
    'willtopicupd': _decode_will_topic('willtopicupd'),
    'willtopicresp': _decode_return_code('willtopicresp'),
    'willmsgupd': _decode_will_msg('willmsgupd'),
    'willmsgresp': _decode_return_code('willmsgresp'),
}


# Encoders, one per message type. Each returns the body following the
# message type byte.

def _encode_empty(message):
    return b''


def _encode_msg_id(message):
    return struct.pack('>H', message['msg_id'])


def _encode_return_code(message):
    return _pack_code(message)


def _encode_will_topic(message):
    will_topic = message.get('will_topic')
    if will_topic is None:
        return b''
    return _pack_flags(message, 'qos', 'retain') + will_topic.encode('utf-8')


def _encode_will_msg(message):
    return bytes(message['will_msg'])


def _encode_advertise(message):
    return struct.pack('>BH', message['gw_id'], message['duration'])


def _encode_searchgw(message):
    return struct.pack('>B', message['radius'])


def _encode_gwinfo(message):
    gw_add = message.get('gw_add')
    if gw_add is None:
        gw_add = b''
    return struct.pack('>B', message['gw_id']) + bytes(gw_add)


def _encode_connect(message):
    flags = _pack_flags(message, 'will', 'clean_session')
    protocol_id = message.get('protocol_id', PROTOCOL_ID)
    fixed = struct.pack('>BH', protocol_id, message['duration'])
    return flags + fixed + message['client_id'].encode('utf-8')


def _encode_register(message):
    fixed = struct.pack('>HH', message['topic_id'], message['msg_id'])
    return fixed + message['topic_name'].encode('utf-8')


def _encode_ack(message):
    fixed = struct.pack('>HH', message['topic_id'], message['msg_id'])
    return fixed + _pack_code(message)


def _encode_publish(message):
    flags = _pack_flags(message, 'dup', 'qos', 'retain', 'topic_id_type')
    if message.get('topic_id_type', 'normal') == 'short name':
        topic = _short_name(message['topic_name'])
    else:
        topic = struct.pack('>H', message['topic_id'])
    msg_id = struct.pack('>H', message.get('msg_id', 0))
    payload = message.get('payload')
    if payload is None:
        payload = b''
    elif isinstance(payload, str):
        payload = payload.encode('utf-8')
    return flags + topic + msg_id + bytes(payload)


def _encode_subscription(message):
    flags = _pack_flags(message, 'dup', 'qos', 'topic_id_type')
    msg_id = struct.pack('>H', message['msg_id'])
    topic_id_type = message.get('topic_id_type', 'normal')
    if topic_id_type == 'pre-defined':
        topic = struct.pack('>H', message['topic_id'])
    elif topic_id_type == 'short name':
        topic = _short_name(message['topic_name'])
    else:
        topic = message['topic_name'].encode('utf-8')
    return flags + msg_id + topic


def _encode_suback(message):
    flags = _pack_flags(message, 'qos')
    fixed = struct.pack('>HH', message['topic_id'], message['msg_id'])
    return flags + fixed + _pack_code(message)


def _encode_pingreq(message):
    client_id = message.get('client_id')
    if client_id is None:
        return b''
    return client_id.encode('utf-8')


def _encode_disconnect(message):
    duration = message.get('duration')
    if duration is None:
        return b''
    return struct.pack('>H', duration)


_encoders = {
    'advertise': _encode_advertise,
    'searchgw': _encode_searchgw,
    'gwinfo': _encode_gwinfo,
    'connect': _encode_connect,
    'connack': _encode_return_code,
    'willtopicreq': _encode_empty,
    'willtopic': _encode_will_topic,
    'willmsgreq': _encode_empty,
    'willmsg': _encode_will_msg,
    'register': _encode_register,
    'regack': _encode_ack,
    'publish': _encode_publish,
    'puback': _encode_ack,
    'pubcomp': _encode_msg_id,
    'pubrec': _encode_msg_id,
    'pubrel': _encode_msg_id,
    'subscribe': _encode_subscription,
    'suback': _encode_suback,
    'unsubscribe': _encode_subscription,
    'unsuback': _encode_msg_id,
    'pingreq': _encode_pingreq,
    'pingresp': _encode_empty,
    'disconnect': _encode_disconnect,
    'willtopicupd': _encode_will_topic,
    'willtopicresp': _encode_return_code,
    'willmsgupd': _encode_will_msg,
    'willmsgresp': _encode_return_code,
}


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
