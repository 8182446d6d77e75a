"""
Layered configuration files, read with configobj and checked with its validate module.

A configuration called <name> is a family of files:

- <name>.schema.cfg   types and defaults, in validate's configspec syntax
- <name>.default.cfg  shipped defaults
- <name>.<os>.cfg     platform overrides (linux, osx, windows)
- ~/<name>.cfg        per-user overrides
- <name>.cfg          local overrides beside the code

Later layers win. Validation converts every value to its declared type and fills in defaults.
"""
import logging
import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from validate import Validator

logger = logging.getLogger(__name__)

# The default extension for configuration files
config_extension = '.cfg'

SCHEMA = 'schema'
DEFAULTS = 'default'


def config_flavor(name, flavor=None):
    return name + '.' + flavor if flavor else name


def config_filename(name, directory):
    return os.path.join(directory, name + config_extension)


def load_config_file_base(file, must_exist=True) -> ConfigObj:
    """
    Loads a single configuration file.
    :param must_exist: when False, a missing file loads as an empty configuration.
    :raises IOError: when a required file is missing
    :raises ConfigObjError: when the file cannot be parsed. The message names the file.
    """
    if not must_exist and not os.path.exists(file):
        return ConfigObj()
    try:
        return ConfigObj(file, interpolation='Template', file_error=True)
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file) from e


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    return 'osx' if name == 'darwin' else name


def os_name():
    return map_os_name(platform.system())


def user_config_file(name):
    return os.path.expanduser(os.path.join('~', name + config_extension))


def config_layers(name, directory, user_file=None):
    """ the files that make up a configuration, lowest precedence first. """
    return [
        config_filename(config_flavor(name, DEFAULTS), directory),
        config_filename(config_flavor(name, os_name()), directory),
        user_file or user_config_file(name),
        config_filename(name, directory),
    ]


def validation_errors(config, result):
    """ describes each value that failed validation as 'section/key: reason'. """
    errors = []
    for sections, key, error in flatten_errors(config, result):
        path = '/'.join(list(sections) + [key if key is not None else '(section)'])
        errors.append("%s: %s" % (path, error or 'missing'))
    return errors


def load_config(name, directory, user_file=None) -> ConfigObj:
    """
    Merges the layers of a configuration and validates the result against its schema.
    :param directory: the location of the configuration files
    :param user_file: the user override file. Defaults to ~/<name>.cfg
    :return: the validated ConfigObj
    :raises ConfigObjError: when a value does not match the schema
    """
    config = ConfigObj(configspec=config_filename(config_flavor(name, SCHEMA), directory))
    for file in config_layers(name, directory, user_file):
        config.merge(load_config_file_base(file, must_exist=False))
    result = config.validate(Validator(), preserve_errors=True)
    if result is not True:
        raise ConfigObjError("the config file %s failed validation: %s"
                             % (name, "; ".join(validation_errors(config, result))))
    return config


def fetch_conf_path(conf: Section, path):
    """
    :param path: the names of the sections to descend through
    :return: the section at the end of the path, or None
    """
    for p in path:
        conf = conf.get(p, None)
        if conf is None:
            return None
    return conf


def apply_conf(conf: Section, target):
    """
    Sets the values in a section as attributes of target. Only attributes target already has are set.
    :return: the names that were set
    """
    applied = []
    for k, v in conf.items():
        if hasattr(target, k):
            setattr(target, k, v)
            applied.append(k)
    return applied


def apply_conf_path(conf: Section, name_parts, target):
    conf = fetch_conf_path(conf, name_parts)
    return apply_conf(conf, target) if conf else []


def configure_module(module, config_name=None, user_file=None):
    """
    Configures a module from the configuration files beside it. The section path is the
    module's dotted name, so onionctl.settings reads [onionctl] [[settings]].
    :param config_name: the configuration name, the last part of the module name by default
    :return: the validated configuration
    """
    path = module.__name__.split('.')
    conf = load_config(config_name or path[-1], os.path.dirname(module.__file__), user_file)
    applied = apply_conf_path(conf, path, module)
    logger.debug("configured %s: %s" % (module.__name__, ", ".join(applied)))
    return conf
