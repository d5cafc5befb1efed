from __future__ import annotations


class CodeRunnerError(Exception):
    """Base class for request-level errors raised before anything is spawned.

    Example:
        ```python
        try:
            run_code(request)
        except CodeRunnerError as exc:
            print(f"rejected: {exc}")
        ```
    """


class UnsupportedLanguageError(CodeRunnerError, ValueError):
    """Raised when a language identifier has no registered profile.

    Example:
        ```python
        raise UnsupportedLanguageError("cobol")
        ```
    """

    def __init__(self, language: str) -> None:
        """Store the rejected identifier.

        Example:
            ```python
            err = UnsupportedLanguageError("cobol")
            assert err.language == "cobol"
            ```
        """
        super().__init__(f"unsupported language: {language}")
        self.language = language


class InvalidRequestError(CodeRunnerError, ValueError):
    """Raised when run arguments are malformed or name nothing to run.

    Example:
        ```python
        raise InvalidRequestError("one of 'code' or 'path' is required")
        ```
    """
