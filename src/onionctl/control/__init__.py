"""
The control package is the boundary to the network agent's control port.
ControlChannel describes the session; StemControlChannel speaks it through stem.
"""
