"""
Drives the network agent from stopped to connected and back.

start() launches the agent (or, when it is already running, pushes any changed bridges), waits for
it to settle, connects and authenticates the control channel and then reports bootstrap progress and
the first established circuit to a delegate. A retry is armed on every start: if no circuit is
established in time, the agent's network is toggled to make it re-evaluate connectivity and the
delegate is told the connection is having difficulties.

All state is owned by a DispatchQueue. Public methods post their work to the queue and return;
channel completions and observer deliveries are posted back to it, so no two pieces of work
ever run at the same time.
"""
import logging
import weakref
from enum import Enum

from onionctl.agent import AgentConfiguration, AgentProcess, LaunchError, TransportHelper
from onionctl.bridges import NO_BRIDGES, BridgeConfiguration, BridgeType, BuiltinBridges, bridges_differ, \
    to_control_ops, to_launch_args
from onionctl.control.channel import AuthenticationError, ChannelError, ControlChannel, ReconfigurationError, \
    bootstrap_progress
from onionctl.reachability import ReachabilityMonitorLoop, ip_version_args, ip_version_confs, probe_ip_status
from onionctl.retry import RetryScheduler
from onionctl.support.dispatch import DispatchQueue
from onionctl.support.events import EventSource

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NOT_STARTED = 'not_started'
    STARTING = 'starting'
    CONNECTED = 'connected'
    STOPPED = 'stopped'


class ConnectionDelegate:
    """
    Receives notifications about the connection. The orchestrator only keeps a weak reference, so
    the caller must keep the delegate alive for as long as it wants notifications.
    """

    def on_progress(self, percent):
        """ bootstrap progress, 0 to 100 """

    def on_connected(self):
        """ the first circuit has been established """

    def on_difficulties(self):
        """ the agent has not connected in time; bridges may be needed """


def _no_delegate():
    return None


class _Subscription:
    """ An observer registered on a channel. Deliveries for a removed subscription are dropped. """

    def __init__(self, channel: ControlChannel):
        self.channel = channel
        self.token = None

    def remove(self, log=logger):
        token = self.token
        self.token = None
        if token is not None:
            try:
                self.channel.remove_observer(token)
            except ChannelError as e:
                log.warning("unable to remove observer: %s" % e)


class ConnectionOrchestrator:
    """
    Manages the lifecycle of the network agent and its control channel.

    :param configuration: the agent's base configuration
    :param channel_factory: a callable (host, port) returning an unconnected ControlChannel
    :param queue: the dispatch queue all work is serialized on
    :param agent_factory: a callable taking the argument list and returning an unstarted AgentProcess
    :param transport: the pluggable transport helper, started alongside the agent if not running
    :param reachability: an event source of ReachabilityChangedEvent. Subscribed to for the lifetime
        of the orchestrator.
    :param ip_probe: a callable returning the current IPStatus
    :param monitor_loop: a ReachabilityMonitorLoop started when the agent is started
    """

    def __init__(self, configuration: AgentConfiguration, channel_factory, queue: DispatchQueue,
                 agent_factory=AgentProcess, transport: TransportHelper=None, reachability: EventSource=None,
                 ip_probe=probe_ip_status, builtin_bridges: BuiltinBridges=None, advanced_arguments=(),
                 settle_delay=1.0, retry_delay=15.0, monitor_loop: ReachabilityMonitorLoop=None, log=logger):
        self.configuration = configuration
        self.channel_factory = channel_factory
        self.queue = queue
        self.agent_factory = agent_factory
        self.transport = transport
        self.ip_probe = ip_probe
        self.builtin_bridges = builtin_bridges or BuiltinBridges()
        self.advanced_arguments = list(advanced_arguments)
        self.settle_delay = settle_delay
        self.retry_delay = retry_delay
        self.monitor_loop = monitor_loop
        self.logger = log
        self.state = ConnectionState.NOT_STARTED
        self._retry = RetryScheduler(queue, log)
        self._channel = None
        self._agent = None
        self._settle = None
        self._requested = NO_BRIDGES
        self._applied = NO_BRIDGES
        self._pending = False
        self._progress = None
        self._established = None
        if reachability is not None:
            reachability.add(self.network_changed)

    @property
    def pending_reconfiguration(self):
        """ True when the requested bridges differ from those last applied to the agent. """
        return self._pending

    @property
    def bridge_configuration(self) -> BridgeConfiguration:
        return self._requested

    @property
    def retry_armed(self):
        return self._retry.armed

    # public operations - each posts its work to the queue

    def set_bridge_configuration(self, kind: BridgeType, custom_lines=None):
        """
        Requests a bridge configuration. It takes effect on the next start().
        :param kind: the BridgeType
        :param custom_lines: the bridge lines for BridgeType.CUSTOM
        """
        self.queue.submit(self._set_bridge_configuration, BridgeConfiguration(kind, custom_lines))

    def start(self, delegate: ConnectionDelegate=None):
        delegate_ref = weakref.ref(delegate) if delegate is not None else _no_delegate
        self.queue.submit(self._start, delegate_ref)

    def reconnect(self, callback=None):
        """ :param callback: called with True when the channel connection was reset """
        self.queue.submit(self._reconnect, callback)

    def stop(self):
        self.queue.submit(self._stop)

    def get_circuits(self, callback):
        self.queue.submit(self._get_circuits, callback)

    def close_circuits(self, circuits, callback):
        self.queue.submit(self._close_circuits, list(circuits), callback)

    def network_changed(self, event=None):
        """ reachability event handler. Uses the status carried by the event, or probes if there is none. """
        self.queue.submit(self._network_changed, getattr(event, 'status', None))

    def close(self):
        """
        Stops the queue, the agent, the transport helper and the reachability monitor, for process exit.
        Runs on the calling thread once the queue has stopped.
        """
        self.queue.stop()
        self._stop()
        if self.transport is not None:
            self.transport.stop()
        if self.monitor_loop is not None:
            self.monitor_loop.stop()

    def launch_arguments(self, ip_status=None):
        """ the full agent command line: base, advanced, bridges and IP version policy. """
        status = ip_status or self.ip_probe()
        self.logger.info("ipv6 status: %s" % status.value)
        config = self._requested
        return self.configuration.base_arguments() + self.advanced_arguments + \
            to_launch_args(config, self.builtin_bridges) + ip_version_args(status, config.kind)

    # work run on the queue

    def _completion(self, fn, *args):
        """ wraps fn as a channel completion that is posted back to the queue with the channel's results. """
        def complete(*result):
            self.queue.submit(fn, *(args + result))
        return complete

    def _notify(self, delegate_ref, method, *args):
        delegate = delegate_ref()
        if delegate is not None:
            getattr(delegate, method)(*args)

    def _set_bridge_configuration(self, config):
        self._requested = config
        self._pending = bridges_differ(self._applied, config)
        self.logger.debug("bridges requested: %s, reconfiguration pending: %s" % (config, self._pending))

    def _start(self, delegate_ref):
        self._retry.arm(self.retry_delay, lambda: self._retry_connection(delegate_ref))
        self.state = ConnectionState.STARTING
        if self._channel is None:
            self._channel = self.channel_factory(self.configuration.control_host, self.configuration.control_port)
        if self.monitor_loop is not None:
            self.monitor_loop.start()

        agent = self._agent
        if agent is not None and agent.running:
            if self._pending:
                self._reconfigure_bridges(self._channel)
        elif not self._launch():
            return

        if self._settle is not None:
            self._settle.cancel()
        self._settle = self.queue.submit_after(self.settle_delay, self._connect, self._channel, delegate_ref)

    def _launch(self):
        self._agent = None
        arguments = self.launch_arguments()
        self.logger.debug("arguments=%s" % arguments)
        self.configuration.prepare()
        agent = self.agent_factory(arguments)
        try:
            agent.start()
        except LaunchError as e:
            self.logger.error("unable to start the network agent: %s" % e)
            return False
        self._agent = agent
        self._applied = self._requested
        self._pending = False
        self._start_transport()
        self.logger.info("network agent starting")
        return True

    def _start_transport(self):
        transport = self.transport
        if transport is None or transport.running:
            return
        try:
            transport.start()
        except LaunchError as e:
            self.logger.warning("unable to start the pluggable transport: %s" % e)

    def _reconfigure_bridges(self, channel):
        """ pushes the requested bridges to the running agent without restarting it. """
        previous = self._applied
        config = self._applied = self._requested
        self._pending = False
        ops = to_control_ops(config, self.builtin_bridges)
        self.logger.info("reconfiguring bridges: %d bridge lines" % len(ops))
        try:
            channel.reset_conf('Bridge')
            if ops:
                # the bridges must be in place before UseBridges is turned on
                channel.set_confs(ops, self._completion(self._bridges_set, channel, previous))
            else:
                channel.set_conf_for_key('UseBridges', '0', self._completion(self._use_bridges_set, previous))
        except ChannelError as e:
            self._reconfiguration_failed(previous, e)

    def _bridges_set(self, channel, previous, success, error=None):
        if not success:
            self._reconfiguration_failed(previous, error)
        elif channel is self._channel:
            try:
                channel.set_conf_for_key('UseBridges', '1', self._completion(self._use_bridges_set, previous))
            except ChannelError as e:
                self._reconfiguration_failed(previous, e)

    def _use_bridges_set(self, previous, success, error=None):
        if not success:
            self._reconfiguration_failed(previous, error)

    def _reconfiguration_failed(self, previous, error):
        """ restores the applied bridges so the change is pushed again on the next start. """
        self.logger.error(ReconfigurationError("bridge reconfiguration failed: %s" % error))
        self._applied = previous
        self._pending = bridges_differ(previous, self._requested)

    def _connect(self, channel, delegate_ref):
        if channel is not self._channel:
            return
        self._settle = None
        if not channel.is_connected:
            try:
                channel.connect()
            except ChannelError as e:
                self.logger.error("unable to connect to the control port: %s" % e)
                return

        cookie = self.configuration.read_cookie()
        if cookie is None:
            self.logger.error("could not connect to the network agent - cookie unreadable at %s"
                              % self.configuration.cookie_path)
            return

        try:
            channel.authenticate(cookie, self._completion(self._authenticated, channel, delegate_ref))
        except ChannelError as e:
            self.logger.error("unable to authenticate: %s" % e)

    def _authenticated(self, channel, delegate_ref, success, error=None):
        if channel is not self._channel:
            return
        if not success:
            self.logger.error(AuthenticationError("didn't connect to control port: %s" % error))
            return
        self._remove_observers()
        try:
            self._established = established = _Subscription(channel)
            established.token = channel.add_circuit_established_observer(
                lambda value: self.queue.submit(self._circuit_established, established, delegate_ref, value))

            self._progress = progress = _Subscription(channel)
            progress.token = channel.add_status_observer(self._status_observer(progress, delegate_ref))
        except ChannelError as e:
            self.logger.error("unable to observe the network agent: %s" % e)

    def _status_observer(self, subscription, delegate_ref):
        def observe(event_type, severity, action, arguments):
            progress = bootstrap_progress(event_type, action, arguments)
            if progress is None:
                return False
            self.queue.submit(self._bootstrap_progress, subscription, delegate_ref, progress)
            return True
        return observe

    def _bootstrap_progress(self, subscription, delegate_ref, progress):
        if subscription is not self._progress:
            return
        self.logger.debug("progress=%d" % progress)
        if progress >= 100:
            self._progress = None
            subscription.remove(self.logger)
        self._notify(delegate_ref, 'on_progress', progress)

    def _circuit_established(self, subscription, delegate_ref, established):
        if subscription is not self._established or not established:
            return
        self.state = ConnectionState.CONNECTED
        self._established = None
        subscription.remove(self.logger)
        self._retry.cancel()
        self.logger.info("connection established")
        self._notify(delegate_ref, 'on_connected')

    def _remove_observers(self):
        for subscription in (self._established, self._progress):
            if subscription is not None:
                subscription.remove(self.logger)
        self._established = self._progress = None

    def _retry_connection(self, delegate_ref):
        self.logger.info("triggering connection retry")
        channel = self._channel
        if channel is not None:
            try:
                channel.set_conf_for_key('DisableNetwork', '1')
                channel.set_conf_for_key('DisableNetwork', '0')
            except ChannelError as e:
                self.logger.warning("unable to reset the network: %s" % e)
        # hint that a bridge may be needed
        self._notify(delegate_ref, 'on_difficulties')

    def _reconnect(self, callback=None):
        channel = self._channel
        if channel is None:
            if callback is not None:
                callback(False)
            return
        try:
            channel.reset_connection(self._completion(self._connection_reset, callback))
        except ChannelError as e:
            self.logger.warning("unable to reset the connection: %s" % e)
            if callback is not None:
                callback(False)

    def _connection_reset(self, callback, success, error=None):
        if not success:
            self.logger.warning("connection reset failed: %s" % error)
        if callback is not None:
            callback(success)

    def _stop(self):
        self.logger.info("stopping network agent")
        self._retry.cancel()
        if self._settle is not None:
            self._settle.cancel()
            self._settle = None
        self._remove_observers()
        channel = self._channel
        self._channel = None
        if channel is not None:
            try:
                channel.disconnect()
            except ChannelError as e:
                self.logger.warning("error disconnecting the control channel: %s" % e)
        agent = self._agent
        self._agent = None
        if agent is not None:
            agent.cancel()
        self.state = ConnectionState.STOPPED

    def _get_circuits(self, callback):
        channel = self._channel
        if channel is None:
            callback([])
            return
        try:
            channel.get_circuits(self._completion(callback))
        except ChannelError as e:
            self.logger.warning("unable to get circuits: %s" % e)
            callback([])

    def _close_circuits(self, circuits, callback):
        channel = self._channel
        if channel is None:
            callback(False)
            return
        try:
            channel.close_circuits(circuits, self._completion(callback))
        except ChannelError as e:
            self.logger.warning("unable to close circuits: %s" % e)
            callback(False)

    def _network_changed(self, status=None):
        channel = self._channel
        if channel is None:
            return
        status = status or self.ip_probe()
        confs = ip_version_confs(status, self._requested.kind)
        self.logger.info("network changed, ipv6 status: %s" % status.value)
        try:
            channel.set_confs(confs, self._completion(self._network_reconfigured))
        except ChannelError as e:
            self.logger.error(ReconfigurationError("unable to apply network change: %s" % e))

    def _network_reconfigured(self, success, error=None):
        if not success:
            self.logger.error(ReconfigurationError("unable to apply network change: %s" % error))
        self._reconnect()
