"""DMS status report harvester for the DTC fleet-tracking dashboard."""

__version__ = "1.0.0"
