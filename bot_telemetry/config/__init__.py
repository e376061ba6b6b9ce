"""Forwarder configuration loading."""
