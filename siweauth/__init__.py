"""Sign-In with Ethereum message building and verification service."""

__version__ = "0.1.0"
