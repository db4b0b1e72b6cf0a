""" MQTT-SN over DTLS gateway. Secure datagram connections from sensor
    clients are terminated here; their MQTT-SN packets are decoded and
    published on a topic-keyed bus, and packets published on that bus for a
    client are encoded and sent back over its channel.
"""

# Utility components.

from . import events
from . import json
from . import log

# Collaborators of the gateway.

from . import bus
from . import cert
from . import guard
from . import packet
from . import transport
from . import config

# Primary public-facing interfaces.

from .bus import Bus
from .config import Configuration
from .gateway import Gateway, create
from .session import Session

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
