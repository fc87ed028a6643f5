"""pingguard: run a child process under a UDP heartbeat deadline."""

__version__ = "0.1.0"
