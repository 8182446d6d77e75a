import socket
import unittest
from unittest.mock import Mock, patch

import timeout_decorator
from hamcrest import assert_that, is_, contains_exactly, has_item, not_

from onionctl.bridges import BridgeType
from onionctl.control.channel import KeyValue
from onionctl.reachability import IPStatus, ReachabilityChangedEvent, ReachabilityMonitor, ReachabilityMonitorLoop, \
    ip_version_args, ip_version_confs, probe_ip_status
from onionctl.support.events import EventSource


class IPVersionPolicyTest(unittest.TestCase):

    def test_ipv6_only_without_bridges_disables_ipv4(self):
        assert_that(ip_version_confs(IPStatus.IPV6_ONLY, BridgeType.NONE),
                    contains_exactly(KeyValue('ClientPreferIPv6ORPort', '1'), KeyValue('ClientUseIPv4', '0')))
        assert_that(ip_version_args(IPStatus.IPV6_ONLY, BridgeType.NONE),
                    is_(['--ClientPreferIPv6ORPort', '1', '--ClientUseIPv4', '0']))

    def test_ipv6_only_with_bridges_keeps_ipv4(self):
        for kind in (BridgeType.OBFS4, BridgeType.MEEK_AZURE, BridgeType.CUSTOM):
            confs = ip_version_confs(IPStatus.IPV6_ONLY, kind)
            assert_that(confs, has_item(KeyValue('ClientUseIPv4', '1')))
            assert_that(confs, not_(has_item(KeyValue('ClientUseIPv4', '0'))))
            assert_that(ip_version_args(IPStatus.IPV6_ONLY, kind),
                        is_(['--ClientPreferIPv6ORPort', '1', '--ClientUseIPv4', '1']))

    def test_other_statuses_use_auto(self):
        for status in (IPStatus.DUAL_STACK, IPStatus.IPV4_ONLY, IPStatus.NO_CONNECTION):
            for kind in BridgeType:
                assert_that(ip_version_confs(status, kind),
                            contains_exactly(KeyValue('ClientPreferIPv6DirPort', 'auto'),
                                             KeyValue('ClientPreferIPv6ORPort', 'auto'),
                                             KeyValue('ClientUseIPv4', '1')))
                assert_that(ip_version_args(status, kind),
                            is_(['--ClientPreferIPv6ORPort', 'auto', '--ClientUseIPv4', '1']))


class ProbeTest(unittest.TestCase):

    def probe(self, ipv4, ipv6):
        def can_route(family, address):
            return ipv4 if family == socket.AF_INET else ipv6

        with patch('onionctl.reachability._can_route', side_effect=can_route), \
                patch('socket.has_ipv6', True):
            return probe_ip_status()

    def test_statuses(self):
        assert_that(self.probe(True, True), is_(IPStatus.DUAL_STACK))
        assert_that(self.probe(False, True), is_(IPStatus.IPV6_ONLY))
        assert_that(self.probe(True, False), is_(IPStatus.IPV4_ONLY))
        assert_that(self.probe(False, False), is_(IPStatus.NO_CONNECTION))

    def test_unroutable_socket_error(self):
        with patch('socket.socket') as sock:
            sock.return_value.__enter__.return_value.connect.side_effect = OSError("Network is unreachable")
            assert_that(probe_ip_status(), is_(IPStatus.NO_CONNECTION))


class ReachabilityMonitorTest(unittest.TestCase):
    def setUp(self):
        self.probe = Mock(return_value=IPStatus.DUAL_STACK)
        self.listener = Mock()
        self.listeners = EventSource()
        self.listeners += self.listener
        self.sut = ReachabilityMonitor(self.probe, self.listeners)

    def test_first_update_records_status(self):
        assert_that(self.sut.update(), is_(False))
        assert_that(self.sut.previous, is_(IPStatus.DUAL_STACK))
        self.listener.assert_not_called()

    def test_unchanged_status_fires_nothing(self):
        self.sut.update()
        assert_that(self.sut.update(), is_(False))
        self.listener.assert_not_called()

    def test_change_fires_event(self):
        self.sut.update()
        self.probe.return_value = IPStatus.IPV6_ONLY
        assert_that(self.sut.update(), is_(True))
        self.listener.assert_called_once_with(
            ReachabilityChangedEvent(self.sut, IPStatus.IPV6_ONLY, IPStatus.DUAL_STACK))

    def test_creates_listeners_if_not_given(self):
        sut = ReachabilityMonitor(self.probe)
        assert_that(sut.listeners.handlers(), is_(()))


class ReachabilityMonitorLoopTest(unittest.TestCase):

    @timeout_decorator.timeout(5)
    def test_polls_until_stopped(self):
        monitor = Mock()
        sut = ReachabilityMonitorLoop(monitor, period=0.01)
        sut.start()
        sut.stop()
        assert_that(sut.background_thread, is_(None))

    def test_loop_updates_then_waits(self):
        monitor = Mock()
        sut = ReachabilityMonitorLoop(monitor, period=7)
        sut.stop_event = Mock()
        sut.loop()
        monitor.update.assert_called_once_with()
        sut.stop_event.wait.assert_called_once_with(7)
