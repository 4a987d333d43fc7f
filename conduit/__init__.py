"""Conduit — uniform connector lifecycle and action dispatch for third-party services."""
