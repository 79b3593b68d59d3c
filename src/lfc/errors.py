"""Exception types raised outside the estimation core."""


class LFCError(Exception):
    """Base class for LFC errors."""


class ScenarioError(LFCError):
    """Raised when a scenario file cannot be read.

    Carries the offending *path* and a human-readable *details* string.
    """

    def __init__(self, path: str, details: str) -> None:
        self.path = path
        self.details = details
        super().__init__(f"Cannot load scenario {path}: {details}")
