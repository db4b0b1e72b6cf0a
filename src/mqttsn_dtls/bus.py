""" The in-process message bus. Topics are tuples of strings. In a
    registered topic, a segment consisting of a single asterisk matches any
    one segment; an emitted topic must be concrete, since a wildcard there
    would address every client at once. This is the
    meeting point between the gateway and whatever consumes MQTT-SN traffic:
    the gateway publishes everything a client sends under :data:`INGRESS`,
    and transmits anything published under :data:`OUTGRESS` for that client.
"""

import logging
import threading
import traceback

logger = logging.getLogger(__name__)

INGRESS = 'snUnicastIngress'
OUTGRESS = 'snUnicastOutgress'
WILDCARD = '*'


def ingress(client_key, cmd=WILDCARD):
    """ Return the topic tuple for messages received from *client_key*.
    """

    return (INGRESS, client_key, cmd)


def outgress(client_key, cmd=WILDCARD):
    """ Return the topic tuple for messages to be sent to *client_key*.
    """

    return (OUTGRESS, client_key, cmd)


def matches(pattern, topic):
    """ Return True if the concrete *topic* matches the registered
        *pattern*. A wildcard in *pattern* accepts any segment; a wildcard
        in *topic* is compared literally. Both must have the same number of
        segments.
    """

    if len(pattern) != len(topic):
        return False

    for expected, actual in zip(pattern, topic):
        if expected == WILDCARD:
            continue
        if expected != actual:
            return False

    return True


def _concrete(topic):

    topic = _normalize(topic)

    if WILDCARD in topic:
        raise ValueError('cannot publish to a wildcard topic: ' + repr(topic))

    return topic


def _normalize(topic):

    if isinstance(topic, str):
        raise TypeError('topics are tuples, not strings: ' + repr(topic))

    topic = tuple(topic)

    for segment in topic:
        if isinstance(segment, str):
            pass
        else:
            raise TypeError('topic segments must be strings: ' + repr(topic))

    return topic



class Bus:
    """ Synchronous publish/subscribe dispatcher. Handlers are kept as
        strong references and compared by identity upon removal, so a
        handler must be removed with the exact object that was registered.

        Dispatch is serialized with a re-entrant lock: the DTLS server and
        the ZeroMQ bridge both publish from their own threads, and handlers
        must never run concurrently with each other. A handler that raises
        is logged and does not prevent delivery to the remaining handlers.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._handlers = list()


    def on(self, topic, handler):
        """ Invoke *handler* with the payload of every :func:`emit` whose
            topic matches *topic*.
        """

        if callable(handler):
            pass
        else:
            raise TypeError('handler must be callable')

        topic = _normalize(topic)

        with self.lock:
            self._handlers.append((topic, handler))


    def remove_listener(self, topic, handler):
        """ Remove the registration of *handler* under *topic*. Both must be
            identical to what was handed to :func:`on`: the topic is compared
            structurally, the handler by identity. Returns True if a
            registration was removed.
        """

        topic = _normalize(topic)

        with self.lock:
            for index, registered in enumerate(self._handlers):
                if registered[0] == topic and registered[1] is handler:
                    del self._handlers[index]
                    return True

        return False


    def listeners(self, topic):
        """ Return the handlers that would receive a publication on *topic*,
            which may not contain wildcards.
        """

        topic = _concrete(topic)

        with self.lock:
            return [handler for registered, handler in self._handlers if matches(registered, topic)]


    def emit(self, topic, payload):
        """ Deliver *payload* to every handler registered for a topic matching
            *topic*. Returns True if at least one handler received it.
            Raises :class:`ValueError` if *topic* contains a wildcard.
        """

        with self.lock:
            handlers = self.listeners(topic)

            for handler in handlers:
                try:
                    handler(payload)
                except Exception:
                    logger.error('bus handler failed for %s:\n%s', repr(topic), traceback.format_exc())
                    continue

        return len(handlers) > 0


    def __len__(self):
        return len(self._handlers)


# end of class Bus


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
