"""
Shared exception types for the Master Pool indexer.
"""


class FatalConfigError(Exception):
    """Raised when the run cannot proceed safely.

    Covers a missing or unreadable source root and a structurally invalid
    overrides file. The CLI turns this into exit code 1 before any artifact
    is written.
    """
