"""
Exceptions raised by the prune pipeline.
"""


class PruneError(Exception):
    """Base class for prune failures."""
    pass


class UnsupportedPolicyError(PruneError):
    """Raised when a policy name does not resolve to a registered policy."""

    def __init__(self, name: str):
        super().__init__(f"unsupported policy: {name}")
        self.name = name


class MissingTimeBucketError(PruneError):
    """Raised when an object's path carries no recognizable time."""

    def __init__(self, path: str):
        super().__init__(f"found entry not under a particular time bucket: {path}")
        self.path = path


class PolicyClosedError(PruneError):
    """Raised when records are fed to a policy that already decided."""
    pass


class PolicyInvariantError(PruneError):
    """Raised when a policy reaches a state its rules should make impossible."""
    pass


class InvalidDecisionError(PruneError):
    """Raised when a decision record violates the decision contract."""
    pass


class FinderError(PruneError):
    """Raised when the object tree cannot be traversed."""
    pass


class StorePathError(PruneError):
    """Raised when a path falls outside the object store."""
    pass


class PruneConfigError(PruneError):
    """Raised for invalid prune configuration."""
    pass


class StageError(PruneError):
    """A failure in one pipeline stage, labeled with the stage name."""

    def __init__(self, label: str, cause: BaseException):
        super().__init__(f"{label}: {cause}")
        self.label = label
        self.cause = cause
