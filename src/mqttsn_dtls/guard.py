""" Authorization of inbound MQTT-SN packets. A guard is any callable
    accepting the peer identity, the certificate attributes of the peer,
    and the decoded packet, returning True if the packet may be published.
"""


def check(guard, peer, certificate, packet):
    """ Invoke *guard* for a single decoded *packet*. With no guard
        configured every packet is accepted.

        The policy is fail-closed: a guard that raises is treated exactly
        like a guard that returned False. Only a strict True accepts a
        packet, so a guard returning a truthy object by accident does not
        open the gateway.
    """

    if guard is None:
        return True

    try:
        verdict = guard(peer, certificate, packet)
    except Exception:
        return False

    return verdict is True


def reject(peer, certificate, packet):
    """ A guard that rejects everything. Used in place of the configured
        guard for a channel whose certificate could not be parsed.
    """

    return False


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
