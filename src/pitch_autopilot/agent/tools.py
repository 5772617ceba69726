"""Sandboxed file tools exposed to the agentic loop.

Tools never raise into the loop: a rejected call comes back to the agent as
an error string so it can correct itself on the next turn.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pitch_autopilot.agent.patterns import PATTERN_SECTIONS, lookup_pattern
from pitch_autopilot.agent.validator import format_violations, validate_code

logger = logging.getLogger(__name__)

DONE_TOOL = "done"
MAX_LISTED_FILES = 500


class SandboxError(ValueError):
    """Tool call rejected by sandbox policy."""


class Sandbox:
    """Path policy: reads inside read roots or the write root, writes only in the write root."""

    def __init__(self, *, read_roots: list[Path], write_root: Path) -> None:
        self.write_root = write_root.resolve()
        self.read_roots = [root.resolve() for root in read_roots]

    def resolve_read(self, raw_path: str) -> Path:
        for root in [self.write_root, *self.read_roots]:
            candidate = _resolve_under(root, raw_path)
            if candidate is not None and candidate.exists():
                return candidate
        raise SandboxError(f"Path is not readable inside the sandbox: {raw_path}")

    def resolve_write(self, raw_path: str) -> Path:
        candidate = _resolve_under(self.write_root, raw_path)
        if candidate is None:
            raise SandboxError(f"Path escapes the write root: {raw_path}")
        return candidate


def _resolve_under(root: Path, raw_path: str) -> Path | None:
    path = Path(raw_path)
    candidate = (path if path.is_absolute() else root / path).resolve()
    if candidate == root or root in candidate.parents:
        return candidate
    return None


@dataclass(slots=True)
class ToolOutcome:
    content: str
    is_error: bool = False
    done_summary: str | None = None


ToolFn = Callable[[dict[str, Any]], ToolOutcome]


@dataclass(slots=True)
class Toolset:
    """Tool definitions sent to the content service plus their local handlers."""

    definitions: list[dict[str, Any]] = field(default_factory=list)
    handlers: dict[str, ToolFn] = field(default_factory=dict)
    files_written: list[str] = field(default_factory=list)

    def register(self, definition: dict[str, Any], handler: ToolFn) -> None:
        self.definitions.append(definition)
        self.handlers[definition["name"]] = handler

    def dispatch(self, name: str, arguments: dict[str, Any]) -> ToolOutcome:
        handler = self.handlers.get(name)
        if handler is None:
            return ToolOutcome(content=f"Unknown tool: {name}", is_error=True)
        try:
            return handler(arguments)
        except SandboxError as error:
            logger.info("Sandbox rejected %s: %s", name, error)
            return ToolOutcome(content=f"Error: {error}", is_error=True)
        except (OSError, KeyError, TypeError, ValueError) as error:
            return ToolOutcome(content=f"Error running {name}: {error}", is_error=True)


def build_file_toolset(sandbox: Sandbox, *, asset_max_bytes: int = 5 * 1024 * 1024) -> Toolset:
    """Core tools: read, write, list, copy asset, done."""

    toolset = Toolset()

    def read_file(arguments: dict[str, Any]) -> ToolOutcome:
        path = sandbox.resolve_read(str(arguments["path"]))
        if not path.is_file():
            raise SandboxError(f"Not a file: {arguments['path']}")
        return ToolOutcome(content=path.read_text("utf-8", errors="replace"))

    def write_file(arguments: dict[str, Any]) -> ToolOutcome:
        path = sandbox.resolve_write(str(arguments["path"]))
        content = str(arguments.get("content", ""))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, "utf-8")
        relative = path.relative_to(sandbox.write_root).as_posix()
        if relative not in toolset.files_written:
            toolset.files_written.append(relative)
        return ToolOutcome(content=f"Wrote {len(content)} chars to {relative}")

    def list_files(arguments: dict[str, Any]) -> ToolOutcome:
        path = sandbox.resolve_read(str(arguments.get("path") or "."))
        if not path.is_dir():
            raise SandboxError(f"Not a directory: {arguments.get('path')}")
        entries = sorted(
            item.relative_to(path).as_posix() + ("/" if item.is_dir() else "")
            for item in path.rglob("*")
        )
        if len(entries) > MAX_LISTED_FILES:
            entries = [*entries[:MAX_LISTED_FILES], f"... {len(entries) - MAX_LISTED_FILES} more"]
        return ToolOutcome(content="\n".join(entries) or "(empty)")

    def copy_asset(arguments: dict[str, Any]) -> ToolOutcome:
        source = sandbox.resolve_read(str(arguments["source"]))
        if not source.is_file():
            raise SandboxError(f"Not a file: {arguments['source']}")
        size = source.stat().st_size
        if size > asset_max_bytes:
            raise SandboxError(
                f"Asset {arguments['source']} is {size} bytes; limit is {asset_max_bytes}",
            )
        target = sandbox.resolve_write(str(arguments["destination"]))
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        relative = target.relative_to(sandbox.write_root).as_posix()
        if relative not in toolset.files_written:
            toolset.files_written.append(relative)
        return ToolOutcome(content=f"Copied {size} bytes to {relative}")

    def done(arguments: dict[str, Any]) -> ToolOutcome:
        summary = str(arguments.get("summary", "")).strip() or "Done."
        return ToolOutcome(content="Acknowledged.", done_summary=summary)

    toolset.register(
        {
            "name": "read_file",
            "description": "Read a UTF-8 text file from the task materials or the app directory.",
            "input_schema": {
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": ["path"],
            },
        },
        read_file,
    )
    toolset.register(
        {
            "name": "write_file",
            "description": "Create or overwrite a file inside the app directory.",
            "input_schema": {
                "type": "object",
                "properties": {"path": {"type": "string"}, "content": {"type": "string"}},
                "required": ["path", "content"],
            },
        },
        write_file,
    )
    toolset.register(
        {
            "name": "list_files",
            "description": "List files under a directory in the materials or app directory.",
            "input_schema": {
                "type": "object",
                "properties": {"path": {"type": "string"}},
            },
        },
        list_files,
    )
    toolset.register(
        {
            "name": "copy_asset",
            "description": "Copy an image or media file from the materials into the app directory.",
            "input_schema": {
                "type": "object",
                "properties": {
                    "source": {"type": "string"},
                    "destination": {"type": "string"},
                },
                "required": ["source", "destination"],
            },
        },
        copy_asset,
    )
    toolset.register(
        {
            "name": DONE_TOOL,
            "description": "Signal that the work is finished, with a short summary.",
            "input_schema": {
                "type": "object",
                "properties": {"summary": {"type": "string"}},
                "required": ["summary"],
            },
        },
        done,
    )
    return toolset


def add_animation_tools(toolset: Toolset, *, conventions_path: Path | None) -> Toolset:
    """Extra tools for the animation-revision variant."""

    def lookup(arguments: dict[str, Any]) -> ToolOutcome:
        return ToolOutcome(
            content=lookup_pattern(str(arguments["pattern"]), conventions_path=conventions_path),
        )

    def validate(arguments: dict[str, Any]) -> ToolOutcome:
        violations = validate_code(
            js=str(arguments.get("js", "")),
            css=str(arguments.get("css", "")),
        )
        return ToolOutcome(content=format_violations(violations))

    toolset.register(
        {
            "name": "lookup_pattern",
            "description": "Fetch the reference section for a named animation pattern.",
            "input_schema": {
                "type": "object",
                "properties": {"pattern": {"type": "string", "enum": sorted(PATTERN_SECTIONS)}},
                "required": ["pattern"],
            },
        },
        lookup,
    )
    toolset.register(
        {
            "name": "validate_code",
            "description": "Check animation JS/CSS for known scroll-animation bugs.",
            "input_schema": {
                "type": "object",
                "properties": {"js": {"type": "string"}, "css": {"type": "string"}},
            },
        },
        validate,
    )
    return toolset
