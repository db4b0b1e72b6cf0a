import pytest

import mqttsn_dtls
from mqttsn_dtls import bus as topics


def test_matching():

    assert topics.matches(('a', 'b', 'c'), ('a', 'b', 'c')) == True
    assert topics.matches(('a', 'b', '*'), ('a', 'b', 'c')) == True
    assert topics.matches(('a', 'b', 'c'), ('a', 'b', 'd')) == False
    assert topics.matches(('a', 'b'), ('a', 'b', 'c')) == False
    assert topics.matches(('a', '*', '*'), ('b', 'x', 'y')) == False

    # Only the registered side is a pattern.
    assert topics.matches(('a', 'b', 'c'), ('a', '*', 'c')) == False
    assert topics.matches(('a', '*', 'c'), ('a', '*', 'c')) == True


def test_topic_helpers():

    assert topics.ingress('::1_5', 'connect') == ('snUnicastIngress', '::1_5', 'connect')
    assert topics.outgress('::1_5') == ('snUnicastOutgress', '::1_5', '*')


def test_emit_consumed():

    bus = mqttsn_dtls.Bus()
    received = list()

    assert bus.emit(('snUnicastIngress', 'x_1', 'connect'), 1) == False

    bus.on(('snUnicastIngress', 'x_1', '*'), received.append)
    assert bus.emit(('snUnicastIngress', 'x_1', 'connect'), 2) == True
    assert bus.emit(('snUnicastIngress', 'x_2', 'connect'), 3) == False
    assert received == [2]


def test_emit_wildcard_refused():

    bus = mqttsn_dtls.Bus()
    received = list()
    bus.on(('snUnicastOutgress', '::1_1', '*'), received.append)
    bus.on(('snUnicastOutgress', '::1_2', '*'), received.append)

    with pytest.raises(ValueError):
        bus.emit(('snUnicastOutgress', '*', 'pingresp'), 1)

    with pytest.raises(ValueError):
        bus.emit(('snUnicastOutgress', '::1_1', '*'), 2)

    assert received == []


def test_remove_listener_exact():

    bus = mqttsn_dtls.Bus()
    received = list()

    def first(payload):
        received.append(('first', payload))

    def second(payload):
        received.append(('second', payload))

    bus.on(('a', 'x', '*'), first)
    bus.on(('a', 'y', '*'), second)

    # Neither a different handler nor a different topic removes anything.
    assert bus.remove_listener(('a', 'x', '*'), second) == False
    assert bus.remove_listener(('a', 'x', 'b'), first) == False
    assert len(bus) == 2

    assert bus.remove_listener(['a', 'x', '*'], first) == True
    assert len(bus) == 1

    bus.emit(('a', 'y', 'b'), 1)
    assert received == [('second', 1)]


def test_bound_method_identity():

    class Holder:
        def handler(self, payload):
            pass

    holder = Holder()
    bus = mqttsn_dtls.Bus()
    bus.on(('a', 'b', 'c'), holder.handler)

    # A freshly looked-up bound method is a different object.
    assert bus.remove_listener(('a', 'b', 'c'), holder.handler) == False


def test_failing_handler():

    bus = mqttsn_dtls.Bus()
    received = list()

    def broken(payload):
        raise RuntimeError('broken')

    bus.on(('a', 'b', 'c'), broken)
    bus.on(('a', 'b', 'c'), received.append)

    assert bus.emit(('a', 'b', 'c'), 'payload') == True
    assert received == ['payload']


def test_invalid_topics():

    bus = mqttsn_dtls.Bus()

    with pytest.raises(TypeError):
        bus.on('snUnicastIngress', print)

    with pytest.raises(TypeError):
        bus.on(('a', 1), print)

    with pytest.raises(TypeError):
        bus.on(('a', 'b'), 'not callable')


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
