"""Live installation-progress streaming for the component marketplace."""

__version__ = "0.1.0"
