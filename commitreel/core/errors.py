"""Exception hierarchy for commitreel.

Precondition failures (no version control, no run command, broken manifest)
reach the direct caller of the recorder / run manager API. Not-found cases are
not exceptions: they come back as empty or sentinel results.
"""


class CommitReelError(Exception):
    """Base class for all commitreel errors."""


class ConfigurationError(CommitReelError):
    """Workspace is not in a state that allows the requested operation."""


class RunCommandNotFoundError(CommitReelError):
    """No run command could be inferred for a checkpoint."""


class ManifestError(CommitReelError):
    """A project manifest in the sandbox is malformed."""


class SandboxError(CommitReelError):
    """Materializing or removing a run sandbox failed."""


class RevisionSourceError(CommitReelError):
    """A version-control query failed."""


class StoreUnavailableError(CommitReelError):
    """The checkpoint store could not be opened."""
