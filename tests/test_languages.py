import dataclasses
from pathlib import Path

import pytest

from code_runner import DEFAULT_REGISTRY, LanguageProfile, LanguageRegistry, UnsupportedLanguageError

EXPECTED_LANGUAGES = {
    "bash", "c", "cpp", "dart", "go", "java", "javascript", "kotlin", "lua", "perl",
    "php", "python", "python2", "r", "ruby", "rust", "scala", "shell", "swift", "typescript",
}


def test_default_registry_lists_bundled_languages() -> None:
    assert set(DEFAULT_REGISTRY.names()) == EXPECTED_LANGUAGES
    assert len(DEFAULT_REGISTRY) == len(EXPECTED_LANGUAGES)
    assert "python" in DEFAULT_REGISTRY


def test_lookup_interpreted_profile() -> None:
    profile = DEFAULT_REGISTRY.lookup("go")

    assert profile.needs_compile is False
    assert profile.run_argv("/tmp/main.go") == ["go", "run", "/tmp/main.go"]


def test_lookup_compiled_profile() -> None:
    profile = DEFAULT_REGISTRY.lookup("c")

    assert profile.needs_compile is True
    assert profile.extension == ".c"
    assert profile.compile_argv("/tmp/main.c", "/tmp/crun-bin-1") == ["gcc", "-o", "/tmp/crun-bin-1", "/tmp/main.c"]


def test_unknown_language_raises() -> None:
    with pytest.raises(UnsupportedLanguageError, match="unsupported language: cobol") as exc:
        DEFAULT_REGISTRY.lookup("cobol")
    assert exc.value.language == "cobol"


def test_lookup_is_exact_match() -> None:
    with pytest.raises(UnsupportedLanguageError):
        DEFAULT_REGISTRY.lookup("Python")


def test_profiles_are_immutable() -> None:
    profile = DEFAULT_REGISTRY.lookup("python")
    with pytest.raises(dataclasses.FrozenInstanceError):
        profile.command = "python9"  # type: ignore[misc]


def test_registry_copies_its_input() -> None:
    profiles = {"sh": LanguageProfile(name="sh", command="sh", extension=".sh")}
    registry = LanguageRegistry(profiles)
    profiles.clear()

    assert registry.names() == ["sh"]


def test_registry_from_file(tmp_path: Path) -> None:
    config = tmp_path / "crun.toml"
    config.write_text(
        (
            "[languages.zig]\n"
            "extension = \".zig\"\n"
            "needs_compile = true\n"
            "compile_command = \"zig\"\n"
            "compile_args = [\"build-exe\", \"-femit-bin\"]\n"
            "\n"
            "[languages.deno]\n"
            "command = \"deno\"\n"
            "args = [\"run\", \"-A\"]\n"
            "extension = \".ts\"\n"
        ),
        encoding="utf-8",
    )

    registry = LanguageRegistry.from_file(config)

    assert registry.names() == ["deno", "zig"]
    assert registry.lookup("deno").run_argv("a.ts") == ["deno", "run", "-A", "a.ts"]
    assert registry.lookup("zig").compile_args == ("build-exe", "-femit-bin")


def test_registry_from_missing_file_falls_back_to_python(tmp_path: Path) -> None:
    registry = LanguageRegistry.from_file(tmp_path / "missing.toml")

    assert registry.names() == ["python"]


def test_profile_without_command_is_rejected() -> None:
    with pytest.raises(ValueError, match="needs a 'command'"):
        LanguageProfile(name="broken", extension=".x")
    with pytest.raises(ValueError, match="needs a 'compile_command'"):
        LanguageProfile(name="broken", extension=".x", needs_compile=True)


def test_profile_args_must_be_strings(tmp_path: Path) -> None:
    config = tmp_path / "crun.toml"
    config.write_text('[languages.bad]\ncommand = "bad"\nargs = [1, 2]\n', encoding="utf-8")

    with pytest.raises(ValueError, match="'args' must contain only strings"):
        LanguageRegistry.from_file(config)
