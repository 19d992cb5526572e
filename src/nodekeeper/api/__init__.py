"""nodekeeper HTTP API."""
