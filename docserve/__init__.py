"""A TCP document server with pluggable caches and a verifying load client."""

__version__ = "0.1.0"