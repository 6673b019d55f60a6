"""Line-oriented Markdown to Notion block conversion.

This is deliberately mechanical: one Markdown construct per line, no inline
formatting, no nesting. Notion caps a single rich_text item at 2000
characters, so longer text is truncated.
"""

from __future__ import annotations

import re
from typing import Any

RICH_TEXT_LIMIT = 2000

NOTION_LANGUAGES = frozenset(
    {
        "abap", "arduino", "bash", "basic", "c", "clojure", "coffeescript", "c++", "c#", "css", "dart",
        "diff", "docker", "elixir", "elm", "erlang", "flow", "fortran", "f#", "gherkin", "glsl", "go",
        "graphql", "groovy", "haskell", "html", "java", "javascript", "json", "julia", "kotlin", "latex",
        "less", "lisp", "livescript", "lua", "makefile", "markdown", "markup", "matlab", "mermaid", "nix",
        "objective-c", "ocaml", "pascal", "perl", "php", "plain text", "powershell", "prolog", "protobuf",
        "python", "r", "reason", "ruby", "rust", "sass", "scala", "scheme", "scss", "shell", "sql",
        "swift", "typescript", "vb.net", "verilog", "vhdl", "visual basic", "webassembly", "xml", "yaml",
    }
)  # fmt: skip

LANGUAGE_ALIASES = {
    "js": "javascript",
    "ts": "typescript",
    "py": "python",
    "rb": "ruby",
    "sh": "bash",
    "zsh": "shell",
    "yml": "yaml",
    "dockerfile": "docker",
    "md": "markdown",
    "cpp": "c++",
    "csharp": "c#",
    "golang": "go",
    "text": "plain text",
}

_ORDERED_ITEM = re.compile(r"^\d+\.\s")
_IMAGE_LINE = re.compile(r"^!\[([^\]]*)\]\((\S+?)(?:\s+\"[^\"]*\")?\)$")
_DIVIDERS = ("---", "***", "___")


def map_language(lang: str) -> str:
    """Notion code language for a fence info string; unknown ones become ``plain text``."""
    lang = lang.strip().lower()
    lang = LANGUAGE_ALIASES.get(lang, lang)
    return lang if lang in NOTION_LANGUAGES else "plain text"


def _rich_text(content: str) -> list[dict[str, Any]]:
    return [{"type": "text", "text": {"content": content[:RICH_TEXT_LIMIT]}}]


def _text_block(block_type: str, content: str) -> dict[str, Any]:
    return {"object": "block", "type": block_type, block_type: {"rich_text": _rich_text(content)}}


def markdown_to_blocks(text: str) -> list[dict[str, Any]]:
    """Convert a Markdown body into a list of Notion block payloads."""
    blocks: list[dict[str, Any]] = []
    lines = text.splitlines()
    i = 0

    while i < len(lines):
        line = lines[i]

        if line.startswith("```"):
            language = map_language(line[3:] or "plain text")
            code_lines = []
            i += 1
            while i < len(lines) and not lines[i].startswith("```"):
                code_lines.append(lines[i])
                i += 1
            i += 1  # closing fence
            blocks.append(
                {
                    "object": "block",
                    "type": "code",
                    "code": {"rich_text": _rich_text("\n".join(code_lines)), "language": language},
                }
            )
            continue

        stripped = line.strip()
        i += 1

        if line.startswith("### "):
            blocks.append(_text_block("heading_3", line[4:]))
        elif line.startswith("## "):
            blocks.append(_text_block("heading_2", line[3:]))
        elif line.startswith("# "):
            blocks.append(_text_block("heading_1", line[2:]))
        elif line.startswith("> "):
            blocks.append(_text_block("quote", line[2:]))
        elif line.startswith(("- ", "* ")):
            blocks.append(_text_block("bulleted_list_item", line[2:]))
        elif match := _ORDERED_ITEM.match(line):
            blocks.append(_text_block("numbered_list_item", line[match.end() :]))
        elif stripped in _DIVIDERS:
            blocks.append({"object": "block", "type": "divider", "divider": {}})
        elif image := _IMAGE_LINE.match(stripped):
            block = {"type": "external", "external": {"url": image.group(2)}}
            if image.group(1):
                block["caption"] = _rich_text(image.group(1))
            blocks.append({"object": "block", "type": "image", "image": block})
        elif stripped:
            blocks.append(_text_block("paragraph", line))

    return blocks


def chunked(blocks: list[dict[str, Any]], size: int = 100) -> list[list[dict[str, Any]]]:
    """Split *blocks* into Notion-sized append batches."""
    return [blocks[i : i + size] for i in range(0, len(blocks), size)]
