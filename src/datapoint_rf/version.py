"""DataPoint RF - a DataPoint (DP) protocol decoder & arbitrator."""

__version__ = "0.3.1"
VERSION = __version__
