"""Built-in tool implementations for the assistant."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from grounded_chat.agent.registry import ToolRegistry, ToolSpec
from grounded_chat.errors import SandboxViolationError

RESULTS_DIR_NAME = "results"
RESULT_EXTENSION = ".txt"


class FileWriteToolInput(BaseModel):
    fileName: str = Field(
        description=(
            "The name of the file to write to. Do not include extension, "
            "it will be automatically added (.txt)"
        ),
    )
    content: str = Field(description="The text content to write to the file")


def register_builtin_tools(registry: ToolRegistry, *, working_root: str | Path) -> None:
    """Register the default tool set.

    Tools:
    - `file_write`: write a text file under `<working_root>/results`.
    """

    def _file_write(input_data: FileWriteToolInput) -> str:
        path = write_result_file(working_root, input_data.fileName, input_data.content)
        return f"Wrote {path.name}"

    registry.register(
        ToolSpec(
            name="file_write",
            description="write a text file to user local file system with specified name and content.",
            args_schema=FileWriteToolInput,
            handler=_file_write,
            tags=["filesystem"],
        )
    )


def write_result_file(working_root: str | Path, file_name: str, content: str) -> Path:
    """Write ``content`` to ``<working_root>/results/<file_name>.txt``, overwriting."""
    results_dir = Path(working_root).resolve() / RESULTS_DIR_NAME
    target = resolve_in_sandbox(results_dir, file_name + RESULT_EXTENSION)
    results_dir.mkdir(parents=True, exist_ok=True)
    target.write_text(content.replace("\\n", "\n"), encoding="utf-8")
    return target


def resolve_in_sandbox(sandbox: Path, file_name: str) -> Path:
    # Only plain names directly inside the sandbox are accepted.
    if not file_name.strip() or file_name.strip() == RESULT_EXTENSION:
        raise SandboxViolationError("File name must not be empty.")
    if Path(file_name).name != file_name or "\\" in file_name:
        raise SandboxViolationError(f"File name must not contain a path: {file_name!r}")
    target = (sandbox / file_name).resolve()
    if target.parent != sandbox.resolve():
        raise SandboxViolationError(f"File name escapes the results directory: {file_name!r}")
    return target
