"""solmgr - resolves csolution contexts and generates build configuration files."""

__version__ = "0.1.0"
