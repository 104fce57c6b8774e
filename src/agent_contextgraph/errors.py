"""Error taxonomy for agent-contextgraph."""


class ContextGraphError(Exception):
    """Base class for all context graph errors."""


class InvalidInputError(ContextGraphError, ValueError):
    """Bad arguments: empty transcript, unknown type name, non-positive limit."""


class EmbeddingUnavailable(ContextGraphError):
    """The embedding model could not produce a vector."""


class PersistenceUnavailable(ContextGraphError):
    """The graph store failed or is unreachable."""


class NotFound(ContextGraphError, KeyError):
    """A referenced node or edge does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument
        return str(self.args[0]) if self.args else ""
