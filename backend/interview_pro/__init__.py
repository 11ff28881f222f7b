"""Interview practice backend and interview-session client."""

__version__ = "0.1.0"
