"""Building blocks for managing PTP, SyncE and u-blox GNSS timing on Linux hosts."""

__version__ = "0.1.0"