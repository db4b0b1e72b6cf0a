""" Gateway configuration. A :class:`Configuration` behaves like a read-only
    dictionary; it is built once, validated, and handed to the transport,
    the sessions and the bridge, none of which may modify it.

    Recognized keys:

    ``bind``
        Dictionary with the ``address`` (default ``'::'``) and ``port``
        (default 0) the DTLS server listens on.
    ``key``, ``cert``, ``ca``
        Paths to the PEM files for the DTLS server. Clients are required to
        present a certificate signed by ``ca`` if it is set.
    ``verify_peer``
        Override whether client certificates are required.
    ``transport``
        Name of the transport backend, default ``'dtls'``.
    ``idle_timeout``
        Seconds after which a silent channel is closed; None disables.
    ``guard``
        A callable ``guard(peer, certificate, packet) -> bool``, or the
        string ``'module:function'`` naming one.
    ``log``
        Any object with some of ``debug``, ``info``, ``warn`` and ``error``,
        or a :class:`logging.Logger`.
    ``bridge``
        Dictionary with the ZeroMQ ``port`` to publish ingress traffic on
        and a list of ``upstream`` ``'address:port'`` PUB endpoints to
        receive outgress traffic from.
"""

import importlib
import types

from collections.abc import Mapping

from . import json
from . import log


known_keys = set((
    'bind', 'key', 'cert', 'ca', 'verify_peer', 'transport', 'idle_timeout',
    'guard', 'log', 'bridge'))



class Configuration(Mapping):
    """ Immutable, validated gateway configuration. Accepts the same
        arguments as :class:`dict`. Unknown keys are rejected to catch typos
        early; invalid values raise :class:`ValueError` or
        :class:`TypeError`.
    """

    def __init__(self, *args, **kwargs):

        values = dict(*args, **kwargs)

        unknown = set(values) - known_keys
        if unknown:
            raise ValueError('unknown configuration keys: ' + ', '.join(sorted(unknown)))

        values['bind'] = _bind(values.get('bind'))
        values['guard'] = _guard(values.get('guard'))
        values['log'] = log.wrap(values.get('log'))

        for key in ('key', 'cert', 'ca', 'transport'):
            value = values.get(key)
            if value is None or isinstance(value, str):
                pass
            else:
                raise TypeError("'%s' must be a string" % (key))

        verify_peer = values.get('verify_peer')
        if verify_peer is None:
            values.pop('verify_peer', None)
        elif isinstance(verify_peer, bool):
            pass
        else:
            raise TypeError("'verify_peer' must be true or false")

        idle_timeout = values.get('idle_timeout')
        if idle_timeout is not None:
            if isinstance(idle_timeout, bool) or not isinstance(idle_timeout, (int, float)):
                raise TypeError("'idle_timeout' must be a number")
            if idle_timeout <= 0:
                raise ValueError("'idle_timeout' must be positive")

        if 'bridge' in values:
            values['bridge'] = _bridge(values['bridge'])

        self._values = values


    def __getitem__(self, key):
        return self._values[key]


    def __iter__(self):
        return iter(self._values)


    def __len__(self):
        return len(self._values)


    def __repr__(self):
        return 'Configuration(%r)' % (self._values)


# end of class Configuration



def get(config=None):
    """ Return *config* as a :class:`Configuration`, building one from a
        plain dictionary if necessary.
    """

    if isinstance(config, Configuration):
        return config

    if config is None:
        config = dict()

    return Configuration(config)


def load(filename, **overrides):
    """ Read a JSON configuration file and return a :class:`Configuration`.
        Keyword arguments take precedence over the file contents; this is
        how values that cannot be expressed in JSON, such as a logger
        instance, are supplied.
    """

    with open(filename, 'rb') as contents:
        raw = contents.read()

    try:
        values = json.loads(raw)
    except json.DecodeError as e:
        raise ValueError('cannot parse %s: %s' % (filename, e))

    if isinstance(values, dict):
        pass
    else:
        raise ValueError('configuration file must contain an object: ' + str(filename))

    values.update(overrides)
    return Configuration(values)


def _bind(bind):

    if bind is None:
        bind = dict()

    if isinstance(bind, Mapping):
        pass
    else:
        raise TypeError("'bind' must be a dictionary")

    address = bind.get('address', '::')
    port = bind.get('port', 0)

    if isinstance(address, str):
        pass
    else:
        raise TypeError("'bind.address' must be a string")

    if isinstance(port, bool) or not isinstance(port, int):
        raise TypeError("'bind.port' must be an integer")

    if port < 0 or port > 65535:
        raise ValueError("'bind.port' out of range: %d" % (port))

    return types.MappingProxyType({'address': address, 'port': port})


def _guard(guard):

    if guard is None:
        return None

    if isinstance(guard, str):
        guard = resolve(guard)

    if callable(guard):
        pass
    else:
        raise TypeError("'guard' must be callable")

    return guard


def resolve(name):
    """ Import and return the object named by *name*, in the form
        ``'package.module:attribute'``.
    """

    try:
        module_name, attribute = name.split(':')
    except ValueError:
        raise ValueError("expected 'module:attribute', got " + repr(name))

    module = importlib.import_module(module_name)

    try:
        return getattr(module, attribute)
    except AttributeError:
        raise ValueError('%s has no attribute %s' % (module_name, repr(attribute)))


def _bridge(bridge):

    if isinstance(bridge, Mapping):
        pass
    else:
        raise TypeError("'bridge' must be a dictionary")

    port = bridge.get('port')
    if port is not None:
        if isinstance(port, bool) or not isinstance(port, int):
            raise TypeError("'bridge.port' must be an integer")

    upstream = list()
    for endpoint in bridge.get('upstream', ()):
        upstream.append(_endpoint(endpoint))

    return types.MappingProxyType({'port': port, 'upstream': tuple(upstream)})


def _endpoint(endpoint):

    if isinstance(endpoint, str):
        address, separator, port = endpoint.rpartition(':')
        if separator == '' or address == '':
            raise ValueError("upstream endpoint must be 'address:port': " + repr(endpoint))
        address = address.strip('[]')
    else:
        try:
            address, port = endpoint
        except (TypeError, ValueError):
            raise ValueError('invalid upstream endpoint: ' + repr(endpoint))

    try:
        port = int(port)
    except ValueError:
        raise ValueError('invalid upstream port: ' + repr(endpoint))

    return (address, port)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
