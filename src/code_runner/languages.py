from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from .errors import UnsupportedLanguageError
from .settings import DEFAULT_CONFIG_PATH, load_config_table

_FALLBACK_LANGUAGES: dict[str, dict[str, Any]] = {
    "python": {"command": "python3", "extension": ".py"},
}


def _tuple_of_str(value: Any, field_name: str) -> tuple[str, ...]:
    """Validate and normalize a list-of-strings profile field.

    Example:
        ```python
        args = _tuple_of_str(["run"], "args")
        ```
    """
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return tuple(out)


@dataclass(frozen=True, slots=True)
class LanguageProfile:
    """How to run (and optionally compile) source files of one language.

    Example:
        ```python
        profile = LanguageProfile(name="go", command="go", args=("run",), extension=".go")
        ```
    """

    name: str
    command: str = ""
    args: tuple[str, ...] = ()
    extension: str = ""
    needs_compile: bool = False
    compile_command: str = ""
    compile_args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Reject profiles that could never produce a command line.

        Example:
            ```python
            LanguageProfile(name="c", extension=".c", needs_compile=True, compile_command="gcc")
            ```
        """
        if self.needs_compile and not self.compile_command:
            raise ValueError(f"language '{self.name}' needs a 'compile_command'")
        if not self.needs_compile and not self.command:
            raise ValueError(f"language '{self.name}' needs a 'command'")

    def run_argv(self, target: str) -> list[str]:
        """Return the interpreter command line for a source file.

        Example:
            ```python
            argv = profile.run_argv("/tmp/main.go")  # ["go", "run", "/tmp/main.go"]
            ```
        """
        return [self.command, *self.args, target]

    def compile_argv(self, source: str, binary: str) -> list[str]:
        """Return the compiler command line producing `binary` from `source`.

        Example:
            ```python
            argv = profile.compile_argv("/tmp/main.c", "/tmp/crun-bin-1")
            # ["gcc", "-o", "/tmp/crun-bin-1", "/tmp/main.c"]
            ```
        """
        return [self.compile_command, *self.compile_args, binary, source]

    @classmethod
    def from_table(cls, name: str, raw: Mapping[str, Any]) -> "LanguageProfile":
        """Build a profile from one `[languages.<name>]` TOML table.

        Example:
            ```python
            profile = LanguageProfile.from_table("python", {"command": "python3", "extension": ".py"})
            ```
        """
        if not isinstance(raw, Mapping):
            raise ValueError(f"language '{name}' must be a TOML table")
        return cls(
            name=name,
            command=str(raw.get("command", "")),
            args=_tuple_of_str(raw.get("args"), "args"),
            extension=str(raw.get("extension", "")),
            needs_compile=bool(raw.get("needs_compile", False)),
            compile_command=str(raw.get("compile_command", "")),
            compile_args=_tuple_of_str(raw.get("compile_args"), "compile_args"),
        )


class LanguageRegistry:
    """Read-only lookup table from language identifier to profile.

    Safe to share between concurrent runs: the table is frozen at construction.

    Example:
        ```python
        registry = LanguageRegistry.from_file("/tmp/crun.toml")
        profile = registry.lookup("python")
        ```
    """

    def __init__(self, profiles: Mapping[str, LanguageProfile]) -> None:
        """Freeze a copy of the given profiles.

        Example:
            ```python
            registry = LanguageRegistry({"sh": LanguageProfile(name="sh", command="sh", extension=".sh")})
            ```
        """
        self._profiles: Mapping[str, LanguageProfile] = MappingProxyType(dict(profiles))

    def lookup(self, language: str) -> LanguageProfile:
        """Return the profile for an exact identifier.

        Example:
            ```python
            profile = DEFAULT_REGISTRY.lookup("rust")
            ```
        """
        try:
            return self._profiles[language]
        except KeyError:
            raise UnsupportedLanguageError(language) from None

    def names(self) -> list[str]:
        """Return registered identifiers in sorted order.

        Example:
            ```python
            print(", ".join(DEFAULT_REGISTRY.names()))
            ```
        """
        return sorted(self._profiles)

    def __contains__(self, language: object) -> bool:
        """Example:
            ```python
            "rust" in DEFAULT_REGISTRY  # True
            ```
        """
        return language in self._profiles

    def __iter__(self) -> Iterator[LanguageProfile]:
        """Iterate profiles in identifier order.

        Example:
            ```python
            commands = [profile.command for profile in DEFAULT_REGISTRY]
            ```
        """
        return iter(self._profiles[name] for name in self.names())

    def __len__(self) -> int:
        """Example:
            ```python
            len(DEFAULT_REGISTRY)  # 20
            ```
        """
        return len(self._profiles)

    @classmethod
    def from_file(cls, config_path: str | Path) -> "LanguageRegistry":
        """Load profiles from the `[languages]` tables of a TOML file.

        Example:
            ```python
            registry = LanguageRegistry.from_file("/tmp/crun.toml")
            ```
        """
        raw = load_config_table(Path(config_path), "languages") or _FALLBACK_LANGUAGES
        return cls({name: LanguageProfile.from_table(name, table) for name, table in raw.items()})


DEFAULT_REGISTRY = LanguageRegistry.from_file(DEFAULT_CONFIG_PATH)
