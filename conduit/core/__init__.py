"""
Conduit Core: the integration manager, lifecycle event bus, configuration,
and the HTTP API over them.
"""
