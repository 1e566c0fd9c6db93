"""
Engine exceptions plus error codes and user-friendly messages for the API.

Propagation policy: profiling and hierarchy detection never raise for
structurally valid data, they encode quality problems as anomaly tags and
low confidence. Only chart suggestion validation and explicit feedback
submission raise to the caller.
"""
from typing import Dict, List, Optional


class VizEngineError(Exception):
    """Base class for engine errors."""


class ValidationError(VizEngineError):
    """Dataset cannot be used for a chart suggestion."""

    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__(f"Data validation failed: {', '.join(self.issues)}")


class UnsupportedChartType(VizEngineError):
    """A scored chart type is outside the allow-list. Never leaves the recommender."""

    def __init__(self, chart_type: str):
        self.chart_type = chart_type
        super().__init__(f"Unsupported chart type: {chart_type!r}")


class LearningJobError(VizEngineError):
    """Mining or rule regeneration failed."""


class FeedbackSubmissionError(VizEngineError):
    """An explicitly submitted feedback record was rejected."""


class DegenerateInputWarning(UserWarning):
    """Column has no usable signal (all null, single value); result is best effort."""


# Error codes
class ErrorCodes:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN_COLUMN = "UNKNOWN_COLUMN"
    DATASET_TOO_LARGE = "DATASET_TOO_LARGE"
    FEEDBACK_REJECTED = "FEEDBACK_REJECTED"
    LEARNING_JOB_FAILED = "LEARNING_JOB_FAILED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    ErrorCodes.VALIDATION_ERROR: {
        "message": "We need a bit more data to suggest a chart",
        "detail": "Your dataset doesn't have enough rows or columns for us to recommend a visualization.",
        "suggestion": "💡 Make sure your data has a header row, at least one column, and at least two data rows."
    },
    ErrorCodes.UNKNOWN_COLUMN: {
        "message": "We couldn't find that column",
        "detail": "The column you asked about isn't part of this dataset.",
        "suggestion": "💡 Check the spelling of the column name. Names are case sensitive!"
    },
    ErrorCodes.DATASET_TOO_LARGE: {
        "message": "That's a lot of rows!",
        "detail": "Your dataset exceeds the number of rows we analyze in a single request.",
        "suggestion": "💡 Send a representative sample of your data. A few thousand rows is plenty for profiling and chart suggestions."
    },
    ErrorCodes.FEEDBACK_REJECTED: {
        "message": "We couldn't save your correction",
        "detail": "The feedback you sent was incomplete or couldn't be stored.",
        "suggestion": "💡 Make sure the corrected type differs from the original one and try again."
    },
    ErrorCodes.LEARNING_JOB_FAILED: {
        "message": "Learning from feedback didn't finish",
        "detail": "The learning job hit a problem. Classification keeps working with the rules it already has.",
        "suggestion": "💡 Try running the learning job again in a few minutes."
    },
    ErrorCodes.RATE_LIMIT_EXCEEDED: {
        "message": "Whoa there! Slow down a bit",
        "detail": "You're asking for suggestions faster than we can keep up!",
        "suggestion": "💡 Take a quick break and try again in about a minute."
    },
    ErrorCodes.TIMEOUT: {
        "message": "This is taking longer than expected",
        "detail": "Analyzing your data took too long.",
        "suggestion": "💡 Try a smaller sample of your data."
    },
    ErrorCodes.UNKNOWN_ERROR: {
        "message": "Hmm, something unexpected happened",
        "detail": "We encountered an issue we weren't expecting. Don't worry - it's not your fault!",
        "suggestion": "💡 Give it another try in a moment."
    }
}


def get_error_response(error_code: str, additional_detail: Optional[str] = None) -> Dict[str, str]:
    """
    Get user-friendly error response for an error code.

    Args:
        error_code: One of the ErrorCodes constants
        additional_detail: Optional additional detail to append

    Returns:
        Dictionary with code, message, detail, and suggestion
    """
    error_info = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCodes.UNKNOWN_ERROR])

    response = {
        "code": error_code,
        "message": error_info["message"],
        "detail": error_info["detail"],
        "suggestion": error_info["suggestion"]
    }

    if additional_detail:
        response["detail"] = f"{response['detail']} {additional_detail}"

    return response
