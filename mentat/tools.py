"""Tool definitions and implementations exposed to the model."""

import copy
import json
import logging

from .sandbox import PathValidationError, PathValidator

logger = logging.getLogger(__name__)

READ_FILE_TOOL = {
    "name": "read_file",
    "description": (
        "Read the contents of a file at the specified path. "
        "Use this to examine source code, configuration files, or any text file."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "Path to the file to read, relative to the workspace root.",
            },
        },
        "required": ["file_path"],
    },
}

WRITE_FILE_TOOL = {
    "name": "write_file",
    "description": (
        "Write content to a file at the specified path. "
        "Creates parent directories if they don't exist. "
        "Use this to create or overwrite files."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "Path to the file to write, relative to the workspace root.",
            },
            "content": {
                "type": "string",
                "description": "The content to write to the file.",
            },
        },
        "required": ["file_path", "content"],
    },
}


def _payload(**fields) -> str:
    return json.dumps(fields, ensure_ascii=False)


def _require_str(args, key: str) -> str:
    """Fetch a required string argument or raise ValueError describing the problem."""
    if not isinstance(args, dict):
        raise ValueError(f"expected an object, got {type(args).__name__}")
    if key not in args:
        raise ValueError(f"missing field {key!r}")
    value = args[key]
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


class Tool:
    """A capability the model can invoke by name.

    Subclasses set ``name`` and ``definition_`` and implement ``run``.
    ``execute`` never raises: every failure comes back as a JSON payload
    with ``success: false`` so the model can react to it.
    """

    name: str = ""
    definition_: dict | None = None

    def definition(self) -> dict | None:
        """A fresh copy of the advertisement; callers may mutate it freely."""
        return copy.deepcopy(self.definition_)

    def execute(self, args) -> str:
        try:
            return self.run(args)
        except Exception as exc:
            logger.exception("tool %s raised", self.name)
            return _payload(success=False, error=f"{self.name} failed: {exc}")

    def run(self, args) -> str:
        raise NotImplementedError


class ReadFileTool(Tool):
    name = "read_file"
    definition_ = READ_FILE_TOOL

    def __init__(self, validator: PathValidator):
        self.validator = validator

    def run(self, args) -> str:
        try:
            file_path = _require_str(args, "file_path")
        except ValueError as exc:
            return _payload(success=False, content=None, error=f"Invalid input: {exc}")

        try:
            resolved = self.validator.validate_for_read(file_path)
        except PathValidationError as exc:
            return _payload(success=False, content=None, error=str(exc))

        try:
            # Bytes in, bytes out: no newline translation.
            text = resolved.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return _payload(
                success=False, content=None, error=f"Failed to read file: {exc}"
            )

        logger.debug("read %d chars from %s", len(text), resolved)
        return _payload(success=True, content=text, error=None)


class WriteFileTool(Tool):
    name = "write_file"
    definition_ = WRITE_FILE_TOOL

    def __init__(self, validator: PathValidator):
        self.validator = validator

    def run(self, args) -> str:
        try:
            file_path = _require_str(args, "file_path")
            content = _require_str(args, "content")
        except ValueError as exc:
            return _payload(success=False, message=None, error=f"Invalid input: {exc}")

        try:
            resolved = self.validator.validate_for_write(file_path)
        except PathValidationError as exc:
            return _payload(success=False, message=None, error=str(exc))

        data = content.encode("utf-8")
        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return _payload(
                success=False, message=None, error=f"Failed to create directory: {exc}"
            )
        try:
            resolved.write_bytes(data)
        except OSError as exc:
            return _payload(
                success=False, message=None, error=f"Failed to write file: {exc}"
            )

        logger.debug("wrote %d bytes to %s", len(data), resolved)
        return _payload(
            success=True,
            message=f"Successfully wrote {len(data)} bytes to {file_path}",
            error=None,
        )


class ToolRegistry:
    """Name -> Tool mapping used to advertise and dispatch tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    @classmethod
    def with_builtins(cls, validator: PathValidator | None = None) -> "ToolRegistry":
        """Registry holding read_file and write_file, sharing one validator."""
        if validator is None:
            validator = PathValidator()
        registry = cls()
        registry.register(ReadFileTool(validator))
        registry.register(WriteFileTool(validator))
        return registry

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def definitions(self) -> list[dict]:
        return [tool.definition() for tool in self._tools.values()]

    def tool_names(self) -> list[str]:
        return list(self._tools)

    def execute(self, name: str, args) -> str:
        """Run the named tool. Unknown names yield an error payload, never an exception."""
        tool = self._tools.get(name)
        if tool is None:
            logger.debug("unknown tool requested: %r", name)
            return _payload(success=False, error=f"Unknown tool: {name}")
        return tool.execute(args)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name) -> bool:
        return name in self._tools
