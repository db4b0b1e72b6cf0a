""" Run a gateway from a JSON configuration file::

        python -m mqttsn_dtls gateway.json

    The ``bridge`` section of the configuration is required here: without
    it nothing outside this process could see the traffic.
"""

import argparse
import logging
import signal
import sys
import threading

from . import bridge
from . import config
from .bus import Bus
from .gateway import Gateway


def main(arguments=None):

    parser = argparse.ArgumentParser(prog='python -m mqttsn_dtls', description='MQTT-SN over DTLS gateway')
    parser.add_argument('config', help='JSON configuration file')
    parser.add_argument('-v', '--verbose', action='store_true', help='log debug messages')
    arguments = parser.parse_args(arguments)

    if arguments.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    configuration = config.load(arguments.config, log=logging.getLogger('mqttsn_dtls'))

    if 'bridge' in configuration:
        pass
    else:
        parser.error("the configuration needs a 'bridge' section")

    bus = Bus()
    relay = bridge.create(configuration, bus)
    gateway = Gateway(configuration, bus)
    stop = gateway.start()

    logging.getLogger(__name__).info('gateway bound to [%s]:%s, publishing on port %d',
        configuration['bind']['address'], configuration['bind']['port'], relay.port)

    done = threading.Event()

    def interrupted(signum, frame):
        done.set()

    signal.signal(signal.SIGINT, interrupted)
    signal.signal(signal.SIGTERM, interrupted)

    while not done.is_set():
        done.wait(1)

    stop().result(timeout=10)
    relay.close()

    return 0


if __name__ == '__main__':
    sys.exit(main())


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
