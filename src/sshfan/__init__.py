"""sshfan: run one script on many SSH hosts in parallel."""

__version__ = "0.1.0"
