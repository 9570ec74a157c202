"""Tests for tools.py: read_file, write_file and the tool registry."""

import json

import pytest

from mentat.sandbox import PathValidator
from mentat.tools import (
    READ_FILE_TOOL,
    WRITE_FILE_TOOL,
    ReadFileTool,
    Tool,
    ToolRegistry,
    WriteFileTool,
)


@pytest.fixture
def registry(tmp_path):
    return ToolRegistry.with_builtins(PathValidator(tmp_path))


def _call(registry, name, args):
    return json.loads(registry.execute(name, args))


# =========================================================================
# read_file
# =========================================================================


class TestReadFile:
    def test_reads_content(self, tmp_path, registry):
        (tmp_path / "hello.txt").write_text("line1\nline2\n", encoding="utf-8")
        out = _call(registry, "read_file", {"file_path": "hello.txt"})
        assert out == {"success": True, "content": "line1\nline2\n", "error": None}

    def test_missing_file(self, registry):
        out = _call(registry, "read_file", {"file_path": "nope.txt"})
        assert out["success"] is False
        assert out["content"] is None
        assert out["error"] == "Path not found: nope.txt"

    def test_absolute_path(self, registry):
        out = _call(registry, "read_file", {"file_path": "/etc/passwd"})
        assert out["success"] is False
        assert out["error"] == "Absolute paths are not allowed"

    def test_traversal(self, registry):
        out = _call(registry, "read_file", {"file_path": "../../etc/passwd"})
        assert out["success"] is False
        assert out["error"] == "Path traversal not allowed"

    def test_directory_is_read_failure(self, tmp_path, registry):
        (tmp_path / "sub").mkdir()
        out = _call(registry, "read_file", {"file_path": "sub"})
        assert out["success"] is False
        assert out["error"].startswith("Failed to read file: ")

    def test_invalid_utf8(self, tmp_path, registry):
        (tmp_path / "bin.dat").write_bytes(b"\xff\xfe\x00\x81")
        out = _call(registry, "read_file", {"file_path": "bin.dat"})
        assert out["success"] is False
        assert out["error"].startswith("Failed to read file: ")

    def test_crlf_preserved(self, tmp_path, registry):
        (tmp_path / "win.txt").write_bytes(b"a\r\nb\r\n")
        out = _call(registry, "read_file", {"file_path": "win.txt"})
        assert out["content"] == "a\r\nb\r\n"

    def test_missing_field(self, registry):
        out = _call(registry, "read_file", {})
        assert out["success"] is False
        assert out["error"] == "Invalid input: missing field 'file_path'"

    def test_wrong_type(self, registry):
        out = _call(registry, "read_file", {"file_path": 3})
        assert out["success"] is False
        assert out["error"].startswith("Invalid input: ")

    def test_args_not_an_object(self, registry):
        out = _call(registry, "read_file", "hello.txt")
        assert out["success"] is False
        assert out["error"].startswith("Invalid input: ")


# =========================================================================
# write_file
# =========================================================================


class TestWriteFile:
    def test_creates_file_and_parents(self, tmp_path, registry):
        out = _call(registry, "write_file", {"file_path": "a/b/c.txt", "content": "hi"})
        assert out == {
            "success": True,
            "message": "Successfully wrote 2 bytes to a/b/c.txt",
            "error": None,
        }
        assert (tmp_path / "a" / "b" / "c.txt").read_text(encoding="utf-8") == "hi"

    def test_overwrites(self, tmp_path, registry):
        (tmp_path / "f.txt").write_text("old content", encoding="utf-8")
        _call(registry, "write_file", {"file_path": "f.txt", "content": "new"})
        assert (tmp_path / "f.txt").read_text(encoding="utf-8") == "new"

    def test_byte_count_is_utf8_length(self, tmp_path, registry):
        out = _call(registry, "write_file", {"file_path": "u.txt", "content": "héllo ✓"})
        assert out["message"] == f"Successfully wrote {len('héllo ✓'.encode())} bytes to u.txt"

    def test_empty_content(self, tmp_path, registry):
        out = _call(registry, "write_file", {"file_path": "empty.txt", "content": ""})
        assert out["success"] is True
        assert out["message"] == "Successfully wrote 0 bytes to empty.txt"
        assert (tmp_path / "empty.txt").read_bytes() == b""

    def test_absolute_path_writes_nothing(self, tmp_path, registry):
        target = tmp_path / "abs.txt"
        out = _call(registry, "write_file", {"file_path": str(target), "content": "x"})
        assert out["success"] is False
        assert out["message"] is None
        assert out["error"] == "Absolute paths are not allowed"
        assert not target.exists()

    def test_traversal_writes_nothing(self, tmp_path):
        ws = tmp_path / "ws"
        ws.mkdir()
        registry = ToolRegistry.with_builtins(PathValidator(ws))
        out = _call(registry, "write_file", {"file_path": "../escape.txt", "content": "x"})
        assert out["error"] == "Path traversal not allowed"
        assert not (tmp_path / "escape.txt").exists()

    def test_symlink_escape_writes_nothing(self, tmp_path):
        ws = tmp_path / "ws"
        ws.mkdir()
        outside = tmp_path / "outside"
        outside.mkdir()
        (ws / "out").symlink_to(outside, target_is_directory=True)

        registry = ToolRegistry.with_builtins(PathValidator(ws))
        out = _call(registry, "write_file", {"file_path": "out/new.txt", "content": "x"})
        assert out["error"] == "Path traversal not allowed"
        assert not (outside / "new.txt").exists()

    def test_parent_is_a_file(self, tmp_path, registry):
        (tmp_path / "blocker").write_text("x", encoding="utf-8")
        out = _call(registry, "write_file", {"file_path": "blocker/f.txt", "content": "x"})
        assert out["success"] is False
        assert out["error"].startswith("Failed to create directory: ")

    def test_target_is_a_directory(self, tmp_path, registry):
        (tmp_path / "d").mkdir()
        out = _call(registry, "write_file", {"file_path": "d", "content": "x"})
        assert out["success"] is False
        assert out["error"].startswith("Failed to write file: ")

    def test_missing_content(self, registry):
        out = _call(registry, "write_file", {"file_path": "f.txt"})
        assert out["success"] is False
        assert out["error"] == "Invalid input: missing field 'content'"

    def test_null_content(self, registry):
        out = _call(registry, "write_file", {"file_path": "f.txt", "content": None})
        assert out["success"] is False
        assert out["error"].startswith("Invalid input: ")


class TestRoundTrip:
    @pytest.mark.parametrize(
        "content",
        ["", "plain", "multi\nline\n", "crlf\r\nline", "日本語 ✓ émoji 🎉", "no trailing newline"],
    )
    def test_write_then_read(self, registry, content):
        assert _call(registry, "write_file", {"file_path": "rt.txt", "content": content})["success"]
        out = _call(registry, "read_file", {"file_path": "rt.txt"})
        assert out["success"] is True
        assert out["content"] == content

    def test_payload_keeps_non_ascii(self, tmp_path, registry):
        (tmp_path / "u.txt").write_text("café", encoding="utf-8")
        raw = registry.execute("read_file", {"file_path": "u.txt"})
        assert "café" in raw


# =========================================================================
# Registry
# =========================================================================


class TestRegistry:
    def test_builtins(self, registry):
        assert registry.tool_names() == ["read_file", "write_file"]
        assert len(registry) == 2
        assert "read_file" in registry
        assert "delete_file" not in registry

    def test_definitions(self, registry):
        defs = registry.definitions()
        assert defs == [READ_FILE_TOOL, WRITE_FILE_TOOL]
        for d in defs:
            assert set(d) == {"name", "description", "input_schema"}
            assert d["input_schema"]["type"] == "object"
        assert WRITE_FILE_TOOL["input_schema"]["required"] == ["file_path", "content"]

    def test_definitions_are_copies(self, registry):
        defs = registry.definitions()
        defs[0]["name"] = "renamed"
        defs[1]["input_schema"]["required"].append("mode")

        assert registry.definitions() == [READ_FILE_TOOL, WRITE_FILE_TOOL]
        assert READ_FILE_TOOL["name"] == "read_file"
        assert WRITE_FILE_TOOL["input_schema"]["required"] == ["file_path", "content"]

    def test_base_tool_has_no_definition(self):
        assert Tool().definition() is None
        assert Tool.definition_ is None

    def test_unknown_tool(self, registry):
        out = _call(registry, "delete_file", {"file_path": "x"})
        assert out == {"success": False, "error": "Unknown tool: delete_file"}

    def test_tools_share_validator(self, tmp_path):
        validator = PathValidator(tmp_path)
        registry = ToolRegistry.with_builtins(validator)
        assert registry._tools["read_file"].validator is validator
        assert registry._tools["write_file"].validator is validator

    def test_default_validator_uses_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        registry = ToolRegistry.with_builtins()
        _call(registry, "write_file", {"file_path": "here.txt", "content": "x"})
        assert (tmp_path / "here.txt").exists()

    def test_register_custom_tool(self):
        class Echo(Tool):
            name = "echo"
            definition_ = {"name": "echo", "description": "Echo.", "input_schema": {"type": "object"}}

            def run(self, args):
                return json.dumps({"success": True, "echo": args})

        registry = ToolRegistry()
        registry.register(Echo())
        assert registry.tool_names() == ["echo"]
        assert _call(registry, "echo", {"a": 1}) == {"success": True, "echo": {"a": 1}}

    def test_register_replaces_same_name(self, tmp_path):
        registry = ToolRegistry.with_builtins(PathValidator(tmp_path))
        registry.register(ReadFileTool(PathValidator(tmp_path)))
        assert len(registry) == 2

    def test_raising_tool_becomes_error_payload(self):
        class Broken(Tool):
            name = "broken"

            def run(self, args):
                raise RuntimeError("boom")

        registry = ToolRegistry()
        registry.register(Broken())
        out = _call(registry, "broken", {})
        assert out == {"success": False, "error": "broken failed: boom"}

    def test_write_tool_standalone(self, tmp_path):
        tool = WriteFileTool(PathValidator(tmp_path))
        out = json.loads(tool.execute({"file_path": "x.txt", "content": "y"}))
        assert out["success"] is True
