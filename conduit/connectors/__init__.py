"""
Conduit Connectors

Plugin framework for external integrations. Connectors implement a small
structural contract; the registry maps integration ids to factories, the
vault keeps credentials encrypted at rest, and the instance store holds
workspace-scoped connector instances.
"""
__version__ = "0.1.0"
