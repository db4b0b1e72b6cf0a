""" Structured, leveled log emission. The gateway never requires a logger:
    any object offering some subset of ``debug``, ``info``, ``warn`` and
    ``error`` methods, each accepting a message and a dictionary of fields,
    can be configured. Levels that are absent are silently skipped.

    A standard :class:`logging.Logger` is adapted automatically; the fields
    are passed along as ``extra={'fields': ...}`` so that a formatter or
    handler can render them.

    Every call site in the gateway carries a fixed ``message_id`` so that log
    streams can be filtered by machine. The identifiers are collected here.
"""

import logging

levels = ('debug', 'info', 'warn', 'error')


# Correlation identifiers, one per log statement.

HANDSHAKE_STARTED = 'c266859e94db40edbf126f74634dd5fc'
PEER_ERROR = 'c62a326b9eae447c862d139a5972f92c'
HANDSHAKE_FINISHED = '1d223f68a881407d86b94babf40da157'
CONNECTION_CLOSED = '0664446f18574088b369460de3aa197b'
PACKET_REJECTED = '8a3c6a3e2d4b4c5f9b1e7d0f2a6c4e91'
PACKET_UNCONSUMED = '5f2b9c1d7e6a4f3b8c0d1e2f3a4b5c6d'
GENERATOR_ERROR = '3e7d1f0a9b8c4d2e6f5a4b3c2d1e0f9a'
PARSER_ERROR = 'b1c2d3e4f5a64b7c8d9e0f1a2b3c4d5e'
CERTIFICATE_ERROR = '9d8c7b6a5f4e4d3c2b1a0f9e8d7c6b5a'
INGRESS_DATAGRAM = 'e4a1f2b3c4d54e6f7a8b9c0d1e2f3a4b'
EGRESS_DATAGRAM = '7c6b5a4f3e2d4c1b0a9f8e7d6c5b4a3f'

_numbers = {'debug': logging.DEBUG, 'info': logging.INFO, 'warn': logging.WARNING, 'error': logging.ERROR}



class Log:
    """ Capability-checked logging port. Each of :data:`levels` is an
        attribute that either forwards to the wrapped *target* or does
        nothing at all. Use :func:`enabled` to check whether a level is
        present before doing expensive work to construct the fields.
    """

    def __init__(self, target=None):

        self.target = target
        self._methods = dict()

        if target is None:
            pass
        elif isinstance(target, logging.Logger):
            self._methods = _adapt(target)
        else:
            for level in levels:
                method = getattr(target, level, None)
                if method is None:
                    continue
                if callable(method):
                    pass
                else:
                    raise TypeError("log method '%s' is not callable" % (level))
                self._methods[level] = method


    def enabled(self, level):
        """ Return True if a message at *level* would go anywhere. For a
            :class:`logging.Logger` this follows its effective level.
        """

        if level in self._methods:
            pass
        else:
            return False

        if isinstance(self.target, logging.Logger):
            return self.target.isEnabledFor(_numbers[level])

        return True


    def emit(self, level, message, fields=None):

        try:
            method = self._methods[level]
        except KeyError:
            return

        if fields is None:
            fields = dict()

        method(message, fields)


    def debug(self, message, fields=None):
        self.emit('debug', message, fields)

    def info(self, message, fields=None):
        self.emit('info', message, fields)

    def warn(self, message, fields=None):
        self.emit('warn', message, fields)

    def error(self, message, fields=None):
        self.emit('error', message, fields)


# end of class Log



def _adapt(logger):
    """ Map the four gateway levels onto a :class:`logging.Logger`.
    """

    methods = dict()

    for level, number in _numbers.items():
        methods[level] = _forward(logger, number)

    return methods


def _forward(logger, number):

    def method(message, fields):
        logger.log(number, message, extra={'fields': fields})

    return method



def wrap(target):
    """ Return a :class:`Log` for *target*, which may already be one.
    """

    if isinstance(target, Log):
        return target

    return Log(target)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
