"""TDMA network simulation: frame protocol, slot scheduler, TCP transport and satellite/ground-station nodes."""

__version__ = "0.1.0"