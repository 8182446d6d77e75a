"""
Bridge configuration: which bridges the agent should use as its first hop, whether a newly
requested configuration differs from the one in force, and how to express bridges as launch
arguments or as live configuration changes.
"""
import logging
import os
from enum import Enum

from onionctl.control.channel import KeyValue
from onionctl.support.mixins import CommonEqualityMixin, StringerMixin

logger = logging.getLogger(__name__)

MEEK_AZURE_BRIDGES = (
    "meek_lite 0.0.2.0:3 97700DFE9F483596DDA6264C4D7DF7641E1E39CE "
    "url=https://meek.azureedge.net/ front=ajax.aspnetcdn.com",
)


class BridgeType(Enum):
    NONE = 'none'
    OBFS4 = 'obfs4'
    MEEK_AZURE = 'meekazure'
    CUSTOM = 'custom'


class BridgeConfiguration(CommonEqualityMixin, StringerMixin):
    """
    The bridges requested by the user. Custom lines are only meaningful for BridgeType.CUSTOM.

    custom_lines keeps the distinction between None (never given) and an empty sequence.
    """

    def __init__(self, kind: BridgeType=BridgeType.NONE, custom_lines=None):
        self.kind = kind
        self.custom_lines = tuple(custom_lines) if custom_lines is not None else None

    @property
    def active(self):
        return self.kind is not BridgeType.NONE


NO_BRIDGES = BridgeConfiguration()


def bridges_differ(old: BridgeConfiguration, new: BridgeConfiguration) -> bool:
    """
    Determines if a newly requested bridge configuration differs materially from the old one.

    >>> bridges_differ(BridgeConfiguration(BridgeType.CUSTOM, None), BridgeConfiguration(BridgeType.CUSTOM, []))
    True
    >>> bridges_differ(BridgeConfiguration(BridgeType.OBFS4, ['a']), BridgeConfiguration(BridgeType.OBFS4))
    False
    """
    if old.kind is not new.kind:
        return True
    if new.kind is not BridgeType.CUSTOM:
        return False
    return old.custom_lines != new.custom_lines


def load_bridge_list(file):
    """
    Reads bridge lines from a file, one per line. Blank lines and lines starting with # are skipped.
    :return: a tuple of bridge lines, empty if the file is not given or cannot be read.
    """
    if not file or not os.path.isfile(file):
        return ()
    try:
        with open(file, encoding='utf-8') as f:
            lines = [line.strip() for line in f]
    except OSError as e:
        logger.warning("unable to read bridge list %s: %s" % (file, e))
        return ()
    return tuple(line for line in lines if line and not line.startswith('#'))


class BuiltinBridges:
    """ The bridge lines that ship with the application, for the non-custom bridge types. """

    def __init__(self, obfs4=(), meek_azure=MEEK_AZURE_BRIDGES):
        self.obfs4 = tuple(obfs4)
        self.meek_azure = tuple(meek_azure)

    @classmethod
    def from_file(cls, obfs4_file):
        return cls(obfs4=load_bridge_list(obfs4_file))


def bridge_lines(config: BridgeConfiguration, builtin: BuiltinBridges=None):
    """
    :return: the bridge lines in force for the given configuration.
    """
    builtin = builtin or BuiltinBridges()
    kind = config.kind
    if kind is BridgeType.OBFS4:
        return builtin.obfs4
    if kind is BridgeType.MEEK_AZURE:
        return builtin.meek_azure
    if kind is BridgeType.CUSTOM:
        return config.custom_lines or ()
    return ()


def to_launch_args(config: BridgeConfiguration, builtin: BuiltinBridges=None):
    """
    The bridges as agent command line arguments.

    >>> to_launch_args(BridgeConfiguration(BridgeType.CUSTOM, ['obfs4 1.2.3.4:443 cert=x']))
    ['--Bridge', 'obfs4 1.2.3.4:443 cert=x', '--UseBridges', '1']
    >>> to_launch_args(BridgeConfiguration(BridgeType.CUSTOM, []))
    []
    """
    args = []
    for line in bridge_lines(config, builtin):
        args += ['--Bridge', line]
    if args:
        args += ['--UseBridges', '1']
    return args


def to_control_ops(config: BridgeConfiguration, builtin: BuiltinBridges=None):
    """
    The bridges as a list of configuration changes for the control channel.
    Each line is quoted since it contains spaces. UseBridges is left to the caller.
    """
    return [KeyValue('Bridge', '"%s"' % line) for line in bridge_lines(config, builtin)]
