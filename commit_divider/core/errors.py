"""
Exception types shared by the analysis core and the tool server.

Every error carries a JSON-RPC style code so the server can turn it into a
structured ``{code, message, hint}`` object without guessing.
"""

from typing import Dict, List, Optional

INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
EXECUTION_ERROR = -32000
CYCLIC_DEPENDENCY = -32001


class DividerError(Exception):
    """Base error with code and hint."""

    code = INTERNAL_ERROR

    def __init__(self, message: str, hint: str = "", code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, object]:
        data = {"code": self.code, "message": self.message}
        if self.hint:
            data["hint"] = self.hint
        return data


class ConfigurationError(DividerError):
    """Raised when configuration or a repository registry cannot be loaded."""


class AnalysisFailure(DividerError):
    """Raised when a repository cannot be read for analysis.

    Analysis operations absorb it into the sentinel error pattern.
    """


class InvalidProposalFormat(DividerError):
    """Raised when a caller-supplied proposal is missing required fields."""

    code = INVALID_PARAMS


class BackendError(DividerError):
    """Raised when the version control backend fails."""

    code = EXECUTION_ERROR

    def __init__(self, message: str, hint: str = "", transient: bool = False):
        super().__init__(message, hint)
        self.transient = transient


class ExecutionError(DividerError):
    """Raised when replaying a proposal fails part way through."""

    code = EXECUTION_ERROR

    def __init__(self, message: str, created: Optional[Dict[str, List[str]]] = None, hint: str = ""):
        super().__init__(message, hint)
        self.created = created or {}


class CyclicDependencyError(DividerError):
    """Raised when repository dependencies form a cycle."""

    code = CYCLIC_DEPENDENCY

    def __init__(self, cycle: List[str]):
        super().__init__(
            "Cyclic dependency between repositories: " + " -> ".join(cycle),
            "Remove one of the declared dependencies or the reference that creates the cycle",
        )
        self.cycle = cycle
