"""Lexical scanner that finds ``require`` calls in JavaScript code.

The code is first masked: comment bodies and string contents are blanked out
while offsets are kept, so matches inside strings or comments are ignored and
reported positions refer to the original text. Unterminated strings or
comments and unbalanced brackets mark the analysis as failed.
"""

import bisect
import logging
import re
from typing import List, Optional, Tuple

from wtmigrate.core.exceptions import ValidationError
from wtmigrate.domain.interfaces.code_analyzer import CodeAnalysis, CodeAnalyzer, CodeEntry

logger = logging.getLogger(__name__)

_QUOTES = "'\"`"
_BRACKETS = {")": "(", "]": "[", "}": "{"}

_REQUIRE_CALL = re.compile(r"(?<![\w$.])require\s*\(")
_STATIC_ARGUMENT = re.compile(r"\s*(['\"`])([^'\"`\\\n$]*)\1\s*\)")
_EXPORT_ASSIGNMENT = re.compile(
    r"(?<![\w$.])(?:module\s*\.\s*exports|exports)\s*=\s*(?:async\s+)?"
    r"(?:function\s*[\w$]*\s*\(([^)]*)\)|\(([^)]*)\)\s*=>|([\w$]+)\s*=>)"
)


class ScanError(Exception):
    """Raised internally when the code cannot be tokenized."""


def _mask(code: str) -> str:
    masked = []
    state = "code"
    quote = ""
    i = 0
    length = len(code)
    while i < length:
        char = code[i]
        pair = code[i:i + 2]
        if state == "code":
            if pair == "//":
                state = "line_comment"
                masked.append("  ")
                i += 2
                continue
            if pair == "/*":
                state = "block_comment"
                masked.append("  ")
                i += 2
                continue
            if char in _QUOTES:
                state = "string"
                quote = char
            masked.append(char)
        elif state == "line_comment":
            if char == "\n":
                state = "code"
                masked.append(char)
            else:
                masked.append(" ")
        elif state == "block_comment":
            if pair == "*/":
                state = "code"
                masked.append("  ")
                i += 2
                continue
            masked.append("\n" if char == "\n" else " ")
        else:
            if char == "\\" and i + 1 < length:
                masked.append("  " if code[i + 1] != "\n" else " \n")
                i += 2
                continue
            if char == quote:
                state = "code"
                masked.append(char)
            elif char == "\n":
                if quote != "`":
                    raise ScanError(f"Unterminated string literal at offset {i}")
                masked.append(char)
            else:
                masked.append(" ")
        i += 1

    if state == "block_comment":
        raise ScanError("Unterminated comment")
    if state == "string":
        raise ScanError("Unterminated string literal")
    return "".join(masked)


def _check_brackets(masked: str) -> None:
    stack: List[str] = []
    for char in masked:
        if char in "([{":
            stack.append(char)
        elif char in _BRACKETS:
            if not stack or stack.pop() != _BRACKETS[char]:
                raise ScanError(f"Unexpected token '{char}'")
    if stack:
        raise ScanError("Unexpected end of input")


class RequireScanner(CodeAnalyzer):
    """Regex based ``CodeAnalyzer``. Does not report unknown globals."""

    def analyze(self, code: str) -> CodeAnalysis:
        if not isinstance(code, str):
            raise ValidationError("code(string) required")

        try:
            masked = _mask(code)
            _check_brackets(masked)
        except ScanError as e:
            logger.debug(f"Code analysis failed: {e}")
            return CodeAnalysis(status="failed", message=str(e))

        line_starts = [0] + [match.end() for match in re.finditer(r"\n", code)]
        analysis = CodeAnalysis()

        for match in _REQUIRE_CALL.finditer(masked):
            line, column = self._position(line_starts, match.start())
            static = _STATIC_ARGUMENT.match(code, match.end())
            if static:
                analysis.requires.append(CodeEntry(value=static.group(2), line=line, column=column))
            else:
                analysis.dynamic_requires.append(CodeEntry(value="", line=line, column=column))

        export = self._last_export(masked, code)
        if export is not None:
            analysis.export_function_arguments = export

        return analysis

    @staticmethod
    def _position(line_starts: List[int], offset: int) -> Tuple[int, int]:
        index = bisect.bisect_right(line_starts, offset) - 1
        return index + 1, offset - line_starts[index]

    @staticmethod
    def _last_export(masked: str, code: str) -> Optional[List[str]]:
        arguments = None
        for match in _EXPORT_ASSIGNMENT.finditer(masked):
            # Parameters are read from the original text at the same offsets.
            original = _EXPORT_ASSIGNMENT.match(code, match.start())
            source = original or match
            params = source.group(1) if source.group(1) is not None else source.group(2)
            if params is None:
                arguments = [source.group(3)]
            else:
                arguments = [p.strip().split("=")[0].strip() for p in params.split(",") if p.strip()]
        return arguments
