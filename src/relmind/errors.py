"""Error types raised by relmind."""


class RelmindError(Exception):
    """Base class for all relmind errors."""


class NotFoundError(RelmindError):
    """Raised when an entity looked up by id does not exist."""


class NoPrimaryPerson(RelmindError):
    """Raised when a touchpoint has no primary person to extract for."""

    def __init__(self, touchpoint_id: str | None = None) -> None:
        self.touchpoint_id = touchpoint_id
        super().__init__("No primary person associated with this touchpoint.")


class ExtractionError(RelmindError):
    """Base class for extraction collaborator failures."""


class ExtractionTransportError(ExtractionError):
    """Raised when the extraction collaborator cannot be reached."""


class ExtractionParseError(ExtractionError):
    """Raised when the extraction response is not usable JSON."""


class CommitFailure(RelmindError):
    """Raised when a confirmed extraction cannot be persisted.

    The transaction is rolled back before this is raised.
    """
