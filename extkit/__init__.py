"""Framed TCP and TLS networking helpers with a threaded client/server layer."""

__version__ = "0.1.0"