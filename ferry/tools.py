"""Tool definitions and implementations for the agent.

Every executor takes plain arguments and returns a string for the model, or
raises a ToolError subclass. Paths are resolved against base_dir (the
current directory by default); there is no sandboxing.
"""

import json
import os
from pathlib import Path, PurePosixPath

from .edit import replace_block
from .errors import InvalidParameterError, ToolIoError, ToolError, ToolNotFoundError
from .messages import Tool

TOOLS = [
    Tool(
        name="read_file",
        description=(
            "Read the contents of a given relative file path. "
            "Use this when you want to see what's inside a file. "
            "Do not use this with directory names."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The relative path of a file in the working directory.",
                },
            },
            "required": ["path"],
        },
    ),
    Tool(
        name="list_files",
        description=(
            "Recursively list files and directories at a given path. "
            "Directories end with '/'. Hidden entries and build or dependency "
            "directories (node_modules, target, venv, ...) are skipped. "
            "If no path is provided, lists the current directory."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": (
                        "Optional relative path to list files from. "
                        "Defaults to current directory if not provided."
                    ),
                },
            },
        },
    ),
    Tool(
        name="create_file",
        description=(
            "Create a new file with the given content, creating parent directories "
            "as needed. Fails if the file already exists; it never overwrites."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The relative path of the file to create.",
                },
                "content": {
                    "type": "string",
                    "description": "The full content of the new file.",
                },
            },
            "required": ["path", "content"],
        },
    ),
    Tool(
        name="delete_file",
        description="Delete an existing file. Refuses to delete directories.",
        input_schema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The relative path of the file to delete.",
                },
            },
            "required": ["path"],
        },
    ),
    Tool(
        name="replace_block_verified",
        description=(
            "Replace the text between two marker strings in an existing file. "
            "start_marker must occur exactly once in the file; the LAST occurrence of "
            "end_marker after it closes the block. Both markers are kept, only the text "
            "between them is replaced with new_content. pre_context must match the text "
            "just before start_marker and post_context the text just after end_marker "
            "(surrounding whitespace is tolerated), otherwise nothing is changed."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The relative path of the file to edit.",
                },
                "start_marker": {
                    "type": "string",
                    "description": "Literal text that opens the block. Must be unique in the file.",
                },
                "end_marker": {
                    "type": "string",
                    "description": "Literal text that closes the block.",
                },
                "pre_context": {
                    "type": "string",
                    "description": "Text expected immediately before start_marker.",
                },
                "post_context": {
                    "type": "string",
                    "description": "Text expected immediately after end_marker.",
                },
                "new_content": {
                    "type": "string",
                    "description": "Replacement for the text between the markers.",
                },
            },
            "required": [
                "path",
                "start_marker",
                "end_marker",
                "pre_context",
                "post_context",
                "new_content",
            ],
        },
    ),
]

TOOLS_BY_NAME = {tool.name: tool for tool in TOOLS}

# Directory and file names never reported by list_files.
SKIP_NAMES = frozenset(
    {"target", "node_modules", "venv", "__pycache__", "dist", "build"}
)
# Dot-directories that stay visible even though they start with '.'.
ALLOWED_DOT_NAMES = frozenset({".github", ".gitlab", ".circleci", ".devcontainer"})


def _resolve(path: str, base_dir: str) -> Path:
    if "\x00" in path:
        raise InvalidParameterError(f"'path' must not contain NUL bytes: {path!r}")
    p = Path(path)
    if p.is_absolute():
        return p
    return Path(base_dir) / p


def _exists(resolved: Path, path: str) -> bool:
    try:
        return resolved.exists()
    except OSError as exc:
        raise ToolIoError(f"Failed to access {path}: {exc.strerror or exc}")


def _require_str(args: dict, key: str) -> str:
    value = args.get(key)
    if value is None:
        raise InvalidParameterError(f"Missing '{key}' parameter")
    if not isinstance(value, str):
        raise InvalidParameterError(
            f"'{key}' parameter must be a string, got {type(value).__name__}"
        )
    return value


def should_skip_path(rel_path) -> bool:
    """True if any component of rel_path is hidden or a build/dependency dir."""
    for part in PurePosixPath(Path(rel_path).as_posix()).parts:
        if part in (".", "..") or part in ALLOWED_DOT_NAMES:
            continue
        if part.startswith(".") or part in SKIP_NAMES:
            return True
    return False


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def _read_file(path: str, base_dir: str = ".") -> str:
    """Return the full UTF-8 text of a file."""
    resolved = _resolve(path, base_dir)
    try:
        return resolved.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ToolIoError(f"Failed to read file {path}: not valid UTF-8 ({exc})")
    except OSError as exc:
        raise ToolIoError(f"Failed to read file {path}: {exc.strerror or exc}")


def _list_files(path: str = ".", base_dir: str = ".") -> str:
    """Recursively list path as a JSON array of relative paths."""
    root = _resolve(path, base_dir)
    if not _exists(root, path):
        return f"No such path: {path}"

    if not root.is_dir():
        if should_skip_path(root.name):
            return json.dumps([])
        return json.dumps([root.name])

    entries: list[str] = []
    for dirpath, dirs, files in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root)
        kept_dirs = []
        for d in sorted(dirs):
            rel = rel_dir / d
            if should_skip_path(rel):
                continue
            kept_dirs.append(d)
            entries.append(rel.as_posix() + "/")
        dirs[:] = kept_dirs
        for f in sorted(files):
            rel = rel_dir / f
            if should_skip_path(rel):
                continue
            entries.append(rel.as_posix())

    entries.sort()
    return json.dumps(entries)


def _create_file(path: str, content: str, base_dir: str = ".") -> str:
    """Create a new file. Never overwrites."""
    resolved = _resolve(path, base_dir)
    if _exists(resolved, path):
        raise ToolError(f"File already exists: {path}")

    try:
        resolved.parent.mkdir(parents=True, exist_ok=True)
    except (FileExistsError, NotADirectoryError):
        raise ToolIoError(
            f"Failed to create directory for {path}: "
            "a path component exists and is not a directory"
        )
    except OSError as exc:
        raise ToolIoError(f"Failed to create directory for {path}: {exc}")

    try:
        with resolved.open("x", encoding="utf-8") as f:
            f.write(content)
    except FileExistsError:
        raise ToolError(f"File already exists: {path}")
    except OSError as exc:
        raise ToolIoError(f"Failed to create file {path}: {exc}")
    return f"Successfully created file {path}"


def _delete_file(path: str, base_dir: str = ".") -> str:
    """Delete a regular file."""
    resolved = _resolve(path, base_dir)
    if not _exists(resolved, path):
        raise ToolError(f"File does not exist: {path}")
    if not resolved.is_file():
        raise ToolError(f"Path is not a file: {path}")
    try:
        resolved.unlink()
    except OSError as exc:
        raise ToolIoError(f"Failed to delete file {path}: {exc}")
    return f"Successfully deleted file {path}"


def _replace_block_verified(
    path: str,
    start_marker: str,
    end_marker: str,
    pre_context: str,
    post_context: str,
    new_content: str,
    base_dir: str = ".",
) -> str:
    """Replace the text between two verified markers in an existing file."""
    if not start_marker:
        raise InvalidParameterError("'start_marker' must not be empty")
    if not end_marker:
        raise InvalidParameterError("'end_marker' must not be empty")

    resolved = _resolve(path, base_dir)
    if not _exists(resolved, path):
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ToolIoError(f"Failed to create directory for {path}: {exc}")
        raise ToolIoError(f"File does not exist: {path}")

    content = _read_file(path, base_dir)
    updated = replace_block(
        content,
        start_marker,
        end_marker,
        pre_context,
        post_context,
        new_content,
        path=path,
    )

    try:
        resolved.write_text(updated, encoding="utf-8")
    except OSError as exc:
        raise ToolIoError(f"Failed to write file {path}: {exc}")
    return f"Successfully replaced verified block in {path}"


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def dispatch(name: str, args, base_dir: str = ".") -> str:
    """Route a tool call to the matching executor.

    Args:
        name: The tool name to invoke.
        args: Decoded tool input; must be a JSON object.
        base_dir: Directory relative paths are resolved against.

    Returns:
        String result from the tool.

    Raises:
        ToolNotFoundError: If the tool name is not registered.
        ToolError: For any failure inside the tool.
    """
    if name not in TOOLS_BY_NAME:
        raise ToolNotFoundError(f"Tool not found: {name}")
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise InvalidParameterError(
            f"tool input must be a JSON object, got {type(args).__name__}"
        )

    if name == "read_file":
        return _read_file(_require_str(args, "path"), base_dir)
    elif name == "list_files":
        path = args.get("path") or "."
        if not isinstance(path, str):
            raise InvalidParameterError("'path' parameter must be a string")
        return _list_files(path, base_dir)
    elif name == "create_file":
        return _create_file(
            _require_str(args, "path"), _require_str(args, "content"), base_dir
        )
    elif name == "delete_file":
        return _delete_file(_require_str(args, "path"), base_dir)
    elif name == "replace_block_verified":
        try:
            return _replace_block_verified(
                path=_require_str(args, "path"),
                start_marker=_require_str(args, "start_marker"),
                end_marker=_require_str(args, "end_marker"),
                pre_context=_require_str(args, "pre_context"),
                post_context=_require_str(args, "post_context"),
                new_content=_require_str(args, "new_content"),
                base_dir=base_dir,
            )
        except ValueError as exc:
            raise InvalidParameterError(str(exc))
    raise ToolNotFoundError(f"Tool not found: {name}")
