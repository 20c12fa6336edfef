"""Plan limit enforcement for memorial pages."""

__version__ = "0.1.0"
