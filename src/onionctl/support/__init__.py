"""
Building blocks shared by the rest of the package: event sources, value object mixins,
background loops and the serial dispatch queue.
"""
