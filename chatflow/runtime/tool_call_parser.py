"""
Tool call parsing.

Model output can carry tool calls in three encodings:

- native ``function_call`` parts
- XML blocks inside text::

    <tool_use>
      <tool_name>read_file</tool_name>
      <parameters>{"path": "a.py"}</parameters>
    </tool_use>

  ``<parameters>`` holds either a JSON object or one child tag per argument.
- JSON blocks between bracket markers::

    <<<TOOL_CALL>>>{"tool": "read_file", "parameters": {"path": "a.py"}}<<<END_TOOL_CALL>>>

Textual encodings never carry ids; fresh ids are assigned on parse.
"""

import json
import re
from typing import Any

from chatflow.domain import Content, ContentPart, FunctionCall, generate_tool_call_id
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)

XML_START = "<tool_use>"
XML_END = "</tool_use>"
JSON_START = "<<<TOOL_CALL>>>"
JSON_END = "<<<END_TOOL_CALL>>>"

_XML_NAME_RE = re.compile(r"<(tool_name|name)>\s*(.*?)\s*</\1>", re.DOTALL)
_XML_PARAMS_RE = re.compile(r"<(parameters|args|arguments)>(.*?)</\1>", re.DOTALL)
_XML_CHILD_RE = re.compile(r"<([A-Za-z_][\w\-.]*)>(.*?)</\1>", re.DOTALL)


def _parse_xml_value(raw: str) -> Any:
    text = raw.strip()
    try:
        return json.loads(text)
    except ValueError:
        return text


def _parse_xml_block(block: str) -> FunctionCall | None:
    name_match = _XML_NAME_RE.search(block)
    if not name_match or not name_match.group(2):
        return None

    args: dict[str, Any] = {}
    params_match = _XML_PARAMS_RE.search(block)
    if params_match:
        body = params_match.group(2).strip()
        if body.startswith("{"):
            try:
                parsed = json.loads(body)
            except ValueError:
                return None
            if not isinstance(parsed, dict):
                return None
            args = parsed
        else:
            for child in _XML_CHILD_RE.finditer(body):
                args[child.group(1)] = _parse_xml_value(child.group(2))

    return FunctionCall(id=generate_tool_call_id(), name=name_match.group(2), args=args)


def _parse_json_block(block: str) -> FunctionCall | None:
    try:
        payload = json.loads(block.strip())
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    name = payload.get("tool") or payload.get("name")
    params = payload.get("parameters", payload.get("args", {}))
    if not isinstance(name, str) or not name or not isinstance(params, dict):
        return None
    return FunctionCall(id=generate_tool_call_id(), name=name, args=params)


_ENCODINGS = (
    (XML_START, XML_END, _parse_xml_block),
    (JSON_START, JSON_END, _parse_json_block),
)


def _split_text(text: str) -> list[ContentPart] | None:
    """
    Split a text blob into narration and function call parts.

    Returns None when the text holds no markers or when any detected
    marker pair fails to parse.
    """
    for start_marker, end_marker, parse_block in _ENCODINGS:
        if start_marker not in text:
            continue

        parts: list[ContentPart] = []
        remaining = text
        while True:
            start = remaining.find(start_marker)
            if start == -1:
                break
            end = remaining.find(end_marker, start + len(start_marker))
            if end == -1:
                return None

            call = parse_block(remaining[start + len(start_marker):end])
            if call is None:
                return None

            before = remaining[:start].strip()
            if before:
                parts.append(ContentPart(text=before))
            parts.append(ContentPart(function_call=call))
            remaining = remaining[end + len(end_marker):]

        tail = remaining.strip()
        if tail:
            parts.append(ContentPart(text=tail))
        return parts

    return None


class ToolCallParser:
    """Extracts and normalizes tool calls across encodings."""

    def extract(self, content: Content) -> list[FunctionCall]:
        """
        Extract function calls in part order.

        Native calls keep their id (one is generated when missing, without
        mutating the message). Textual calls always get fresh ids.
        """
        calls: list[FunctionCall] = []
        for part in content.parts:
            if part.function_call is not None:
                call = part.function_call
                calls.append(
                    FunctionCall(
                        id=call.id or generate_tool_call_id(),
                        name=call.name,
                        args=dict(call.args),
                    )
                )
            elif part.text and not part.thought:
                split = _split_text(part.text)
                if split:
                    calls.extend(p.function_call for p in split if p.function_call)
        return calls

    def normalize(self, content: Content) -> None:
        """
        Rewrite textual tool calls into native function call parts in place.

        Text around the markers becomes separate text parts. A part whose
        markers cannot be fully parsed is kept unchanged.
        """
        new_parts: list[ContentPart] = []
        converted = 0
        for part in content.parts:
            if part.text and not part.thought and part.function_call is None:
                split = _split_text(part.text)
                if split is not None:
                    new_parts.extend(split)
                    converted += sum(1 for p in split if p.function_call)
                    continue
                if XML_START in part.text or JSON_START in part.text:
                    logger.warning("tool_call_markup_unparsed", text_length=len(part.text))
            new_parts.append(part)

        if converted:
            logger.debug("tool_calls_normalized", count=converted)
        content.parts = new_parts

    def ensure_ids(self, content: Content) -> None:
        """Back-fill missing ids on native function calls; existing ids are kept."""
        for part in content.parts:
            if part.function_call is not None and not part.function_call.id:
                part.function_call.id = generate_tool_call_id()


__all__ = ["ToolCallParser", "XML_START", "XML_END", "JSON_START", "JSON_END"]
