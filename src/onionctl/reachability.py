"""
Network reachability: probing which IP versions the host can route, turning that into
agent configuration, and announcing changes on an event source.

The decision table is shared by launch arguments and live configuration:

- IPv6 only: prefer IPv6 OR ports. IPv4 stays on when bridges are in use, since the bridge
  lines name the addresses to connect to and may be IPv4. Otherwise IPv4 is turned off.
- anything else: let the agent choose the port preference, IPv4 on.
"""
import logging
import socket
from enum import Enum

from onionctl.bridges import BridgeType
from onionctl.control.channel import KeyValue
from onionctl.support.events import EventSource
from onionctl.support.loop import AsyncLoop
from onionctl.support.mixins import CommonEqualityMixin

logger = logging.getLogger(__name__)

# documentation-range addresses, used only to consult the routing table
IPV4_PROBE_ADDRESS = ('198.51.100.1', 53)
IPV6_PROBE_ADDRESS = ('2001:db8::1', 53)


class IPStatus(Enum):
    NO_CONNECTION = 'none'
    IPV4_ONLY = 'ipv4'
    IPV6_ONLY = 'ipv6'
    DUAL_STACK = 'dual'


def _can_route(family, address):
    """ connecting a UDP socket only consults the routing table. """
    try:
        with socket.socket(family, socket.SOCK_DGRAM) as sock:
            sock.connect(address)
        return True
    except OSError:
        return False


def probe_ip_status(ipv4_address=IPV4_PROBE_ADDRESS, ipv6_address=IPV6_PROBE_ADDRESS) -> IPStatus:
    """ Determines which IP versions the host currently has a route for. """
    ipv4 = _can_route(socket.AF_INET, ipv4_address)
    ipv6 = socket.has_ipv6 and _can_route(socket.AF_INET6, ipv6_address)
    if ipv4 and ipv6:
        return IPStatus.DUAL_STACK
    if ipv6:
        return IPStatus.IPV6_ONLY
    if ipv4:
        return IPStatus.IPV4_ONLY
    return IPStatus.NO_CONNECTION


def _use_ipv4(bridge_type):
    return '1' if bridge_type is not BridgeType.NONE else '0'


def ip_version_args(status: IPStatus, bridge_type: BridgeType):
    """
    The IP version policy as agent launch arguments.

    >>> ip_version_args(IPStatus.IPV6_ONLY, BridgeType.NONE)
    ['--ClientPreferIPv6ORPort', '1', '--ClientUseIPv4', '0']
    >>> ip_version_args(IPStatus.DUAL_STACK, BridgeType.NONE)
    ['--ClientPreferIPv6ORPort', 'auto', '--ClientUseIPv4', '1']
    """
    if status is IPStatus.IPV6_ONLY:
        return ['--ClientPreferIPv6ORPort', '1', '--ClientUseIPv4', _use_ipv4(bridge_type)]
    return ['--ClientPreferIPv6ORPort', 'auto', '--ClientUseIPv4', '1']


def ip_version_confs(status: IPStatus, bridge_type: BridgeType):
    """ The IP version policy as live configuration for the control channel. """
    if status is IPStatus.IPV6_ONLY:
        return [KeyValue('ClientPreferIPv6ORPort', '1'),
                KeyValue('ClientUseIPv4', _use_ipv4(bridge_type))]
    return [KeyValue('ClientPreferIPv6DirPort', 'auto'),
            KeyValue('ClientPreferIPv6ORPort', 'auto'),
            KeyValue('ClientUseIPv4', '1')]


class ReachabilityChangedEvent(CommonEqualityMixin):
    """ Posted when the host's IP reachability changes. """

    def __init__(self, source, status: IPStatus, previous: IPStatus=None):
        self.source = source
        self.status = status
        self.previous = previous


class ReachabilityMonitor:
    """
    Polls an IP status probe and fires a ReachabilityChangedEvent to its listeners
    whenever the result differs from the previous poll. The first poll only records the status.

    :param probe: a callable returning an IPStatus
    :param listeners: the event source to post to. Usually shared with whoever reacts to the change.
    """

    def __init__(self, probe=probe_ip_status, listeners: EventSource=None):
        self.probe = probe
        self.listeners = listeners if listeners is not None else EventSource()
        self.previous = None

    def update(self):
        status = self.probe()
        previous = self.previous
        self.previous = status
        if previous is not None and status is not previous:
            logger.info("reachability changed from %s to %s" % (previous.value, status.value))
            self.listeners.fire(ReachabilityChangedEvent(self, status, previous))
            return True
        return False


class ReachabilityMonitorLoop(AsyncLoop):
    """
    polls a reachability monitor on a background thread.

    :param monitor  the monitor to update
    :param period   seconds between polls
    """

    def __init__(self, monitor: ReachabilityMonitor, period=5):
        super().__init__()
        self.monitor = monitor
        self.period = period

    def loop(self):
        try:
            self.monitor.update()
        finally:
            self.wait(self.period)
