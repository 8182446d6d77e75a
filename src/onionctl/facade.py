"""
Composition root: builds the single ConnectionOrchestrator for the process from onionctl.settings.
"""
import logging

from onionctl import settings
from onionctl.agent import AgentConfiguration, AgentProcess, TransportHelper
from onionctl.bridges import BuiltinBridges
from onionctl.control.stem_channel import StemControlChannel
from onionctl.orchestrator import ConnectionOrchestrator
from onionctl.reachability import ReachabilityMonitor, ReachabilityMonitorLoop, probe_ip_status
from onionctl.support.dispatch import DispatchQueue
from onionctl.support.events import EventSource

logger = logging.getLogger(__name__)


def build_agent_configuration(conf=settings) -> AgentConfiguration:
    return AgentConfiguration(control_host=conf.control_host, control_port=conf.control_port,
                              socks_port=conf.socks_port, obfs4_port=conf.obfs4_port, meek_port=conf.meek_port,
                              geoip_file=conf.geoip_file, geoip6_file=conf.geoip6_file, debug=conf.debug)


def build_orchestrator(channel_factory=StemControlChannel, conf=settings, configure=True, ip_probe=probe_ip_status,
                       reachability: EventSource=None, start_queue=True) -> ConnectionOrchestrator:
    """
    Builds the orchestrator, its dispatch queue and reachability monitoring.

    :param channel_factory: a callable (host, port) returning a ControlChannel for the agent's control port.
        Defaults to StemControlChannel.
    :param conf: the settings module, or an object with the same attributes
    :param configure: when True, the configuration files are applied to conf first
    :param reachability: the reachability event bus. A new one is created if not given.
    :param start_queue: start the dispatch queue's background thread
    """
    if configure:
        conf.configure()
    reachability = reachability if reachability is not None else EventSource()
    queue = DispatchQueue()
    monitor = ReachabilityMonitor(ip_probe, reachability)
    executable = conf.agent_executable

    def agent_factory(arguments):
        return AgentProcess(arguments, executable=executable)

    orchestrator = ConnectionOrchestrator(
        build_agent_configuration(conf), channel_factory, queue,
        agent_factory=agent_factory,
        transport=TransportHelper(conf.transport_executable),
        reachability=reachability,
        ip_probe=ip_probe,
        builtin_bridges=BuiltinBridges.from_file(conf.obfs4_bridges_file),
        advanced_arguments=conf.advanced_arguments,
        settle_delay=conf.settle_delay,
        retry_delay=conf.retry_delay,
        monitor_loop=ReachabilityMonitorLoop(monitor, conf.reachability_period))
    if start_queue:
        queue.start()
    logger.debug("built orchestrator for control port %s:%s" % (conf.control_host, conf.control_port))
    return orchestrator
