"""Ambient utilities: logging, tracing, metrics, connections and secrets."""
