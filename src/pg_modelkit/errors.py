"""Structured errors raised by pg-modelkit.

Every error carries a machine-readable code, a message naming the offending
model, field or option, and an optional suggestion.
"""


class ErrorCode:
    """Error codes used across the package."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    DECLARATION_ERROR = "DECLARATION_ERROR"
    VIEW_DEFINITION_ERROR = "VIEW_DEFINITION_ERROR"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    FILTER_ERROR = "FILTER_ERROR"
    MERGE_ERROR = "MERGE_ERROR"
    SCHEMA_SYNC_ERROR = "SCHEMA_SYNC_ERROR"


# Default suggestions for each error code
ERROR_SUGGESTIONS: dict[str, str] = {
    ErrorCode.CONFIGURATION_ERROR: "Set DB_CONN_STR or pass a connection string and models path",
    ErrorCode.DECLARATION_ERROR: "Review the model declaration",
    ErrorCode.VIEW_DEFINITION_ERROR: "Review the view definition and its parameters",
    ErrorCode.MODEL_NOT_FOUND: "Make sure the model is declared in the registry",
    ErrorCode.FILTER_ERROR: "Review filter field names and operators",
    ErrorCode.MERGE_ERROR: "Override values must have the same shape as the query option",
    ErrorCode.SCHEMA_SYNC_ERROR: "Fix the underlying issue and re-run sync",
}


class ModelKitError(Exception):
    """Base class for all pg-modelkit errors."""

    code = ErrorCode.DECLARATION_ERROR

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        """Initialize error.

        Args:
            message: Human-readable error message.
            suggestion: Actionable suggestion (uses default for the code if not provided).
        """
        self.message = message
        self.suggestion = suggestion or ERROR_SUGGESTIONS.get(self.code)
        super().__init__(message)


class ConfigurationError(ModelKitError):
    """Raised when the database handle cannot be configured."""

    code = ErrorCode.CONFIGURATION_ERROR


class DeclarationError(ModelKitError):
    """Raised when a model declaration violates its contract."""

    code = ErrorCode.DECLARATION_ERROR


class ViewDefinitionError(DeclarationError):
    """Raised on a missing, mismatched or under-parameterized view definition."""

    code = ErrorCode.VIEW_DEFINITION_ERROR


class ModelNotFoundError(ModelKitError, LookupError):
    """Raised when a model name is not registered."""

    code = ErrorCode.MODEL_NOT_FOUND


class FilterError(ModelKitError, ValueError):
    """Raised on conflicting or unusable filter input."""

    code = ErrorCode.FILTER_ERROR


class MergeError(ModelKitError, TypeError):
    """Raised when a query override does not match the target option shape."""

    code = ErrorCode.MERGE_ERROR


class SchemaSyncError(ModelKitError):
    """Raised when materializing a model's schema fails."""

    code = ErrorCode.SCHEMA_SYNC_ERROR

    def __init__(self, model_name: str, message: str) -> None:
        self.model_name = model_name
        super().__init__(f"Sync of model '{model_name}' failed: {message}")


def find_similar_names(name: str, candidates: list[str], max_results: int = 3) -> list[str]:
    """Find similar names using Levenshtein distance.

    Args:
        name: The name to match against.
        candidates: List of candidate names.
        max_results: Maximum number of results to return.

    Returns:
        List of similar names sorted by similarity.
    """

    def levenshtein_distance(s1: str, s2: str) -> int:
        if len(s1) < len(s2):
            return levenshtein_distance(s2, s1)
        if len(s2) == 0:
            return len(s1)

        prev_row = list(range(len(s2) + 1))
        for i, c1 in enumerate(s1):
            curr_row = [i + 1]
            for j, c2 in enumerate(s2):
                insertions = prev_row[j + 1] + 1
                deletions = curr_row[j] + 1
                substitutions = prev_row[j] + (c1 != c2)
                curr_row.append(min(insertions, deletions, substitutions))
            prev_row = curr_row
        return prev_row[-1]

    scored = [(c, levenshtein_distance(name.lower(), c.lower())) for c in candidates]
    scored.sort(key=lambda x: x[1])

    # Names within edit distance of 3
    return [c for c, d in scored[:max_results] if d <= 3]


def did_you_mean(name: str, candidates: list[str]) -> str | None:
    """Build a suggestion string from similar candidate names."""
    similar = find_similar_names(name, candidates)
    if not similar:
        return None
    return f"Did you mean: {', '.join(similar)}?"
