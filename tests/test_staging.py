import os
import tempfile
from pathlib import Path

import pytest

from code_runner import DEFAULT_REGISTRY, ExecutionRequest
from code_runner.execution.staging import resolve_target, stage


@pytest.fixture(autouse=True)
def _isolated_tempdir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))


def test_inline_code_is_written_and_removed(tmp_path: Path) -> None:
    request = ExecutionRequest(language="python", code="print('staged')")

    with stage(request, DEFAULT_REGISTRY.lookup("python")) as staged:
        source = Path(staged.source)
        assert source.parent == tmp_path
        assert source.name.startswith("crun-python-")
        assert source.suffix == ".py"
        assert source.read_text(encoding="utf-8") == "print('staged')"
        assert staged.binary is None

    assert not source.exists()
    assert list(tmp_path.iterdir()) == []


def test_inline_code_wins_over_path() -> None:
    request = ExecutionRequest(language="python", code="x = 1", path="/srv", file="app.py")

    with stage(request, DEFAULT_REGISTRY.lookup("python")) as staged:
        assert staged.source != os.path.join("/srv", "app.py")


def test_path_and_file_are_joined() -> None:
    request = ExecutionRequest(language="python", path="/srv/project", file="main.py")

    assert resolve_target(request) == os.path.join("/srv/project", "main.py")


def test_path_alone_is_used_as_is(tmp_path: Path) -> None:
    request = ExecutionRequest(language="python", path="/srv/project/main.py")

    with stage(request, DEFAULT_REGISTRY.lookup("python")) as staged:
        assert staged.source == "/srv/project/main.py"
    assert list(tmp_path.iterdir()) == []


def test_missing_path_target_is_not_checked() -> None:
    request = ExecutionRequest(language="python", path="/definitely/not/here.py")

    with stage(request, DEFAULT_REGISTRY.lookup("python")) as staged:
        assert staged.source == "/definitely/not/here.py"


def test_compiled_language_gets_binary_removed_on_error(tmp_path: Path) -> None:
    request = ExecutionRequest(language="c", code="int main(void) { return 0; }")

    with pytest.raises(RuntimeError, match="compiler exploded"):
        with stage(request, DEFAULT_REGISTRY.lookup("c")) as staged:
            assert staged.binary is not None
            binary = Path(staged.binary)
            assert binary.parent == tmp_path
            assert not binary.exists()
            binary.write_bytes(b"\x7fELF")
            raise RuntimeError("compiler exploded")

    assert list(tmp_path.iterdir()) == []


def test_temp_prefix_is_configurable(tmp_path: Path) -> None:
    request = ExecutionRequest(language="bash", code="echo hi")

    with stage(request, DEFAULT_REGISTRY.lookup("bash"), temp_prefix="job") as staged:
        assert Path(staged.source).name.startswith("job-bash-")


def test_cleanup_tolerates_already_deleted_files(tmp_path: Path) -> None:
    request = ExecutionRequest(language="python", code="pass")

    with stage(request, DEFAULT_REGISTRY.lookup("python")) as staged:
        Path(staged.source).unlink()

    assert list(tmp_path.iterdir()) == []
