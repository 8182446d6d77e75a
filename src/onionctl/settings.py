"""
Tunable values for the network agent and the orchestrator.

The module attributes below are defaults. configure() overlays settings.default.cfg, a platform file
(settings.<os>.cfg), ~/settings.cfg and settings.cfg from this directory, validated against
settings.schema.cfg. Values live in the [onionctl] [[settings]] section.
"""
import sys

from onionctl.config.config import configure_module

agent_executable = 'tor'
transport_executable = 'lyrebird'

control_host = '127.0.0.1'
control_port = 39060
socks_port = 39050
obfs4_port = 47351
meek_port = 47352

geoip_file = ''
geoip6_file = ''
obfs4_bridges_file = ''

# arguments appended to the agent command line after the base arguments
advanced_arguments = []

settle_delay = 1.0
retry_delay = 15.0
reachability_period = 5.0

debug = False


def configure(user_file=None):
    """
    applies the configuration files to this module.
    :param user_file: the per-user override file, ~/settings.cfg when not given.
    :return: the merged configuration
    """
    return configure_module(sys.modules[__name__], user_file=user_file)
