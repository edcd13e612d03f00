"""
Domain Layer Exceptions
"""


class MachineDefinitionError(Exception):
    """Raised when a machine definition (or a snapshot restored into it) is inconsistent."""
    pass


class InterpreterStateError(Exception):
    """Raised when an interpreter is used outside of its lifecycle (e.g. before start())."""
    pass
