"""
Value-object behaviour for the small records passed around the package
(bridge configurations, circuits, reachability events).
"""
from enum import Enum


def _format(value):
    if value is None:
        return "None"
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_format(v) for v in value) + "]"
    return "'%s'" % value


def _hashable(value):
    if isinstance(value, (list, tuple)):
        return tuple(_hashable(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, _hashable(v)) for k, v in value.items()))
    return value


class StringerMixin:

    def __str__(self):
        """
        outputs the class name and the attributes in key sorted order.
        Enums are shown by name, sequences element by element.
        """
        return type(self).__name__ + ':{' + ", ".join(
            "'%s': %s" % (key, _format(val)) for key, val in sorted(self.__dict__.items())) + "}"

    __repr__ = __str__


class CommonEqualityMixin(object):
    """ equality and hashing by attribute values, between objects of the same type. """

    def __eq__(self, other):
        return type(other) is type(self) and self.__dict__ == other.__dict__

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((type(self).__name__, _hashable(self.__dict__)))
