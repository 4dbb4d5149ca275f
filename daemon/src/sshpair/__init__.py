"""sshpair - exchange SSH public keys between machines on the same network."""

__version__ = "0.1.0"
