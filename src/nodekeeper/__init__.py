"""nodekeeper: lifecycle and backup agent for dockerized AVS node instances."""

__version__ = "0.1.0"
