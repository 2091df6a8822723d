"""TaskBridge marketplace core: trust scoring, task lifecycle and provider bookings."""

__version__ = "0.1.0"
