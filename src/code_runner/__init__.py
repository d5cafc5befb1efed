from .errors import CodeRunnerError, InvalidRequestError, UnsupportedLanguageError
from .execution import CancellationToken, ExecutionRequest, RunOutcome, Supervisor, Termination
from .languages import DEFAULT_REGISTRY, LanguageProfile, LanguageRegistry
from .runner import run_code, run_code_arguments
from .settings import RunnerSettings

__all__ = [
    "CancellationToken",
    "CodeRunnerError",
    "DEFAULT_REGISTRY",
    "ExecutionRequest",
    "InvalidRequestError",
    "LanguageProfile",
    "LanguageRegistry",
    "RunOutcome",
    "RunnerSettings",
    "Supervisor",
    "Termination",
    "UnsupportedLanguageError",
    "run_code",
    "run_code_arguments",
]
