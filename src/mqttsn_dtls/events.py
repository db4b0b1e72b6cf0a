""" A minimal synchronous event emitter. The transport server, its channels,
    and the MQTT-SN parser all announce what happens to them by emitting
    named events; interested parties register a callable via :func:`on`.
"""

import logging

logger = logging.getLogger(__name__)


class Emitter:
    """ Keep track of callbacks registered against event names. Callbacks
        are invoked in registration order, synchronously, in whichever thread
        invokes :func:`emit`. Unlike :class:`mqttsn_dtls.bus.Bus` an exception
        raised by a callback is not caught here; the emitting party decides
        what a failure means.
    """

    def __init__(self):
        self._callbacks = dict()


    def on(self, event, callback):
        """ Register *callback* to be invoked every time *event* is emitted.
            Registering the same callback twice results in two invocations.
        """

        if callable(callback):
            pass
        else:
            raise TypeError('callback must be callable')

        try:
            callbacks = self._callbacks[event]
        except KeyError:
            callbacks = list()
            self._callbacks[event] = callbacks

        callbacks.append(callback)


    def once(self, event, callback):
        """ Register *callback* for the next emission of *event* only.
        """

        def wrapper(*args):
            self.remove_listener(event, wrapper)
            return callback(*args)

        wrapper.callback = callback
        self.on(event, wrapper)


    def remove_listener(self, event, callback):
        """ Remove one registration of *callback* for *event*. The comparison
            is by identity; an unknown callback is silently ignored.
        """

        try:
            callbacks = self._callbacks[event]
        except KeyError:
            return

        for index, registered in enumerate(callbacks):
            if registered is callback or getattr(registered, 'callback', None) is callback:
                del callbacks[index]
                break

        if len(callbacks) == 0:
            del self._callbacks[event]


    def listeners(self, event):
        """ Return a copy of the callbacks currently registered for *event*.
        """

        try:
            callbacks = self._callbacks[event]
        except KeyError:
            return list()

        return list(callbacks)


    def emit(self, event, *args):
        """ Invoke every callback registered for *event* with *args*. Returns
            True if at least one callback was invoked.
        """

        callbacks = self.listeners(event)

        for callback in callbacks:
            callback(*args)

        return len(callbacks) > 0


# end of class Emitter


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
