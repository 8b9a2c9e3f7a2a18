"""Parse Bicep parameter files (``.bicepparam``).

A ``.bicepparam`` file names the template it feeds and assigns a value to
each template parameter::

    using '../../main.bicep'

    param apimServiceName = 'apim-nucleus-dev'
    param sku = 'Developer'
    param tags = {
      environment: 'dev'
      owner: 'platform'
    }
    param adminEmail = readEnvironmentVariable('APIM_ADMIN_EMAIL', 'ops@dxc.com')

This module reads those files with a small recursive-descent scanner instead
of per-line regular expressions, so that:
- Multi-line arrays and objects are read as a whole
- Brackets, ``//`` and ``=`` inside string literals are never mistaken for syntax
- Comments may appear anywhere whitespace is allowed
- Values that need the Bicep compiler (function calls, references,
  interpolated strings, operators) are kept verbatim as ``BicepExpression``

``readEnvironmentVariable()`` is evaluated, since post-deployment tooling
needs the value a deployment would actually receive.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from knack.util import CLIError

logger = logging.getLogger(__name__)


class BicepParamError(CLIError):
    """Syntax error in a Bicep parameter or template file."""

    def __init__(self, message: str, path: str = "<string>", line: int = 0, column: int = 0):
        self.path = path
        self.line = line
        self.column = column
        super().__init__(f"{path}:{line}:{column}: {message}")


@dataclass(frozen=True)
class BicepExpression:
    """A value that cannot be evaluated without the Bicep compiler."""

    text: str

    def __str__(self) -> str:
        return self.text


@dataclass
class BicepParamFile:
    """Parsed contents of a ``.bicepparam`` file."""

    path: str = "<string>"
    using: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    param_lines: dict[str, int] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    imports: list[str] = field(default_factory=list)

    def get(self, name: str, default: Any = None) -> Any:
        return self.params.get(name, default)

    def __contains__(self, name: str) -> bool:
        return name in self.params

    def resolved_template(self) -> Path | None:
        """Return the template path the ``using`` directive points to."""
        if not self.using or self.path == "<string>":
            return None
        return (Path(self.path).parent / self.using).resolve()

    def to_dict(self) -> dict[str, Any]:
        """Plain-JSON view (expressions rendered as their source text)."""
        return {
            "path": self.path,
            "using": self.using,
            "parameters": {k: to_plain(v) for k, v in self.params.items()},
        }


def to_plain(value: Any) -> Any:
    """Recursively convert ``BicepExpression`` values into strings."""
    if isinstance(value, BicepExpression):
        return value.text
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_plain(v) for v in value]
    return value


# ------------------------------------------------------------------ #
# Scanner
# ------------------------------------------------------------------ #

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_INT_RE = re.compile(r"-?[0-9]+")
_TERMINATORS = ",]})"
_CLOSERS = {"(": ")", "[": "]", "{": "}"}
_ESCAPES = {"'": "'", "\\": "\\", "n": "\n", "r": "\r", "t": "\t", "$": "$"}


class _Scanner:
    """Character scanner over a Bicep source text."""

    def __init__(self, text: str, path: str, env: Mapping[str, str]):
        self.text = text
        self.path = path
        self.env = env
        self.pos = 0
        self.variables: dict[str, Any] = {}

    # --- position helpers ---

    def error(self, message: str, pos: int | None = None) -> BicepParamError:
        pos = self.pos if pos is None else pos
        line = self.text.count("\n", 0, pos) + 1
        column = pos - (self.text.rfind("\n", 0, pos) + 1) + 1
        return BicepParamError(message, self.path, line, column)

    def line_of(self, pos: int) -> int:
        return self.text.count("\n", 0, pos) + 1

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def peek(self, length: int = 1) -> str:
        return self.text[self.pos:self.pos + length]

    def skip_ws(self, newlines: bool = True) -> None:
        """Skip whitespace and comments (optionally stopping at newlines)."""
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch in " \t\r" or (newlines and ch == "\n"):
                self.pos += 1
            elif text.startswith("//", self.pos) or (ch == "#" and self._at_line_start()):
                # '#disable-next-line' and friends are compiler pragmas
                end = text.find("\n", self.pos)
                self.pos = len(text) if end == -1 else end
            elif text.startswith("/*", self.pos):
                end = text.find("*/", self.pos + 2)
                if end == -1:
                    raise self.error("Unterminated block comment")
                self.pos = end + 2
            else:
                break

    def _at_line_start(self) -> bool:
        line_start = self.text.rfind("\n", 0, self.pos) + 1
        return not self.text[line_start:self.pos].strip()

    def at_terminator(self) -> bool:
        """True if only a separator, closer, comment or newline follows."""
        self.skip_ws(newlines=False)
        return self.at_end or self.peek() == "\n" or self.peek() in _TERMINATORS

    def expect(self, token: str) -> None:
        if not self.text.startswith(token, self.pos):
            raise self.error(f"Expected '{token}'")
        self.pos += len(token)

    def identifier(self) -> str:
        m = _IDENT_RE.match(self.text, self.pos)
        if not m:
            raise self.error("Expected an identifier")
        self.pos = m.end()
        return m.group(0)

    # --- literals ---

    def string(self) -> str | BicepExpression:
        """Read a single-quoted string starting at the opening quote."""
        start = self.pos
        self.expect("'")
        chars: list[str] = []
        interpolated = False
        text = self.text
        while True:
            if self.pos >= len(text):
                raise self.error("Unterminated string literal", start)
            ch = text[self.pos]
            if ch == "\n":
                raise self.error("Newline in string literal", start)
            if ch == "'":
                self.pos += 1
                break
            if ch == "\\":
                nxt = text[self.pos + 1:self.pos + 2]
                if nxt in _ESCAPES:
                    chars.append(_ESCAPES[nxt])
                    self.pos += 2
                elif nxt == "u" and text.startswith("{", self.pos + 2):
                    end = text.find("}", self.pos + 3)
                    if end == -1:
                        raise self.error("Unterminated unicode escape")
                    try:
                        chars.append(chr(int(text[self.pos + 3:end], 16)))
                    except ValueError:
                        raise self.error("Invalid unicode escape") from None
                    self.pos = end + 1
                else:
                    raise self.error(f"Unknown escape sequence '\\{nxt}'")
                continue
            if text.startswith("${", self.pos):
                interpolated = True
                self.pos += 2
                self._skip_balanced("}")
                continue
            chars.append(ch)
            self.pos += 1
        if interpolated:
            return BicepExpression(text[start:self.pos])
        return "".join(chars)

    def multiline_string(self) -> str:
        start = self.pos
        self.expect("'''")
        end = self.text.find("'''", self.pos)
        if end == -1:
            raise self.error("Unterminated multi-line string", start)
        body = self.text[self.pos:end]
        self.pos = end + 3
        if body.startswith("\r\n"):
            body = body[2:]
        elif body.startswith("\n"):
            body = body[1:]
        return body

    def _skip_balanced(self, closer: str) -> None:
        """Advance past the matching *closer*, honouring nested strings."""
        stack = [closer]
        text = self.text
        while stack:
            if self.pos >= len(text):
                raise self.error(f"Expected '{stack[-1]}'")
            ch = text[self.pos]
            if text.startswith("'''", self.pos):
                self.multiline_string()
            elif ch == "'":
                self.string()
            elif text.startswith("//", self.pos) or text.startswith("/*", self.pos):
                self.skip_ws(newlines=False)
            elif ch in _CLOSERS:
                stack.append(_CLOSERS[ch])
                self.pos += 1
            elif ch in ")]}":
                if ch != stack[-1]:
                    raise self.error(f"Unexpected '{ch}'")
                stack.pop()
                self.pos += 1
            else:
                self.pos += 1

    # --- values ---

    def value(self) -> Any:
        """Read one value; falls back to a raw expression when needed."""
        self.skip_ws(newlines=False)
        start = self.pos
        literal = self._literal()
        if literal is not _NOT_LITERAL and self.at_terminator():
            return literal
        self.pos = start
        return self.raw_expression()

    def _literal(self) -> Any:
        if self.at_end:
            raise self.error("Expected a value")
        if self.text.startswith("'''", self.pos):
            return self.multiline_string()
        ch = self.peek()
        if ch == "'":
            return self.string()
        if ch == "[":
            return self.array()
        if ch == "{":
            return self.object()
        m = _INT_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            return int(m.group(0))
        m = _IDENT_RE.match(self.text, self.pos)
        if not m:
            return _NOT_LITERAL
        word = m.group(0)
        self.pos = m.end()
        if word == "true":
            return True
        if word == "false":
            return False
        if word == "null":
            return None
        if word == "readEnvironmentVariable" and self.peek() == "(":
            return self._read_environment_variable()
        if word in self.variables:
            return self.variables[word]
        return _NOT_LITERAL

    def _read_environment_variable(self) -> Any:
        call_start = self.pos - len("readEnvironmentVariable")
        self.expect("(")
        args: list[Any] = []
        while True:
            self.skip_ws()
            if self.peek() == ")":
                self.pos += 1
                break
            args.append(self.value())
            self.skip_ws()
            if self.peek() == ",":
                self.pos += 1
        if not args or not all(isinstance(a, str) for a in args):
            return _NOT_LITERAL
        name = args[0]
        if name in self.env:
            return self.env[name]
        if len(args) > 1:
            return args[1]
        raise self.error(f"Environment variable '{name}' is not set and has no default", call_start)

    def array(self) -> list[Any]:
        self.expect("[")
        items: list[Any] = []
        while True:
            self.skip_ws()
            if self.at_end:
                raise self.error("Expected ']'")
            if self.peek() == "]":
                self.pos += 1
                return items
            items.append(self.value())
            self.skip_ws()
            if self.peek() == ",":
                self.pos += 1

    def object(self) -> dict[str, Any]:
        self.expect("{")
        result: dict[str, Any] = {}
        while True:
            self.skip_ws()
            if self.at_end:
                raise self.error("Expected '}'")
            if self.peek() == "}":
                self.pos += 1
                return result
            key_pos = self.pos
            if self.peek() == "'":
                key = self.string()
                if isinstance(key, BicepExpression):
                    raise self.error("Object keys cannot be interpolated", key_pos)
            else:
                key = self.identifier()
            self.skip_ws(newlines=False)
            self.expect(":")
            result[key] = self.value()
            self.skip_ws()
            if self.peek() == ",":
                self.pos += 1

    def raw_expression(self) -> BicepExpression:
        """Capture an expression up to the end of its logical line."""
        start = self.pos
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == "\n" or ch in _TERMINATORS:
                break
            if text.startswith("//", self.pos) or text.startswith("/*", self.pos):
                break
            if text.startswith("'''", self.pos):
                self.multiline_string()
            elif ch == "'":
                self.string()
            elif ch in _CLOSERS:
                self.pos += 1
                self._skip_balanced(_CLOSERS[ch])
            else:
                self.pos += 1
        expr = text[start:self.pos].strip()
        if not expr:
            raise self.error("Expected a value", start)
        return BicepExpression(expr)

    def rest_of_statement(self) -> str:
        """Return the raw text of a statement we do not interpret."""
        start = self.pos
        self.raw_expression()
        return self.text[start:self.pos].strip()


_NOT_LITERAL = object()


# ------------------------------------------------------------------ #
# Public API
# ------------------------------------------------------------------ #


def parse_bicepparam(
    text: str,
    path: str = "<string>",
    env: Mapping[str, str] | None = None,
) -> BicepParamFile:
    """Parse the source of a ``.bicepparam`` file.

    Raises ``BicepParamError`` on syntax errors, duplicate parameters, a
    repeated ``using`` directive, or an unset environment variable read
    without a default.
    """
    scanner = _Scanner(text, path, os.environ if env is None else env)
    result = BicepParamFile(path=path, variables=scanner.variables)

    while True:
        scanner.skip_ws()
        if scanner.at_end:
            break
        stmt_pos = scanner.pos
        keyword = scanner.identifier()
        scanner.skip_ws(newlines=False)

        if keyword == "using":
            if result.using is not None:
                raise scanner.error("Duplicate 'using' directive", stmt_pos)
            if scanner.peek() == "'":
                target = scanner.string()
                if isinstance(target, BicepExpression):
                    raise scanner.error("'using' path cannot be interpolated", stmt_pos)
                result.using = target
            else:
                # using none
                scanner.identifier()
                result.using = ""
        elif keyword == "param":
            name = scanner.identifier()
            if name in result.params:
                raise scanner.error(f"Duplicate parameter '{name}'", stmt_pos)
            scanner.skip_ws(newlines=False)
            scanner.expect("=")
            result.params[name] = scanner.value()
            result.param_lines[name] = scanner.line_of(stmt_pos)
        elif keyword == "var":
            name = scanner.identifier()
            scanner.skip_ws(newlines=False)
            scanner.expect("=")
            scanner.variables[name] = scanner.value()
        elif keyword in ("import", "type", "metadata"):
            result.imports.append(f"{keyword} {scanner.rest_of_statement()}")
        else:
            raise scanner.error(f"Unexpected statement '{keyword}'", stmt_pos)

        if not scanner.at_terminator() or (not scanner.at_end and scanner.peek() in _TERMINATORS):
            raise scanner.error("Expected end of line")

    logger.debug("Parsed %d parameter(s) from %s", len(result.params), path)
    return result


def load_bicepparam(path: str | Path, env: Mapping[str, str] | None = None) -> BicepParamFile:
    """Read and parse a ``.bicepparam`` file from disk."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise CLIError(f"Cannot read parameter file {path}: {exc}") from exc
    return parse_bicepparam(text, str(path), env)


_PARAM_DECL_RE = re.compile(
    r"^[ \t]*param[ \t]+(?P<name>[A-Za-z_]\w*)[ \t]+(?P<type>[^=\n]+?)[ \t]*=(?!=)",
    re.MULTILINE,
)


def parse_bicep_defaults(text: str, path: str = "<string>") -> dict[str, Any]:
    """Return ``{name: default}`` for template params that declare a default.

    Only ``param`` declarations are inspected; the rest of the template is
    skipped.  Defaults referencing other symbols (``resourceGroup().location``)
    come back as ``BicepExpression``.
    """
    scanner = _Scanner(text, path, {})
    defaults: dict[str, Any] = {}
    for m in _PARAM_DECL_RE.finditer(text):
        scanner.pos = m.end()
        defaults[m.group("name")] = scanner.value()
    return defaults
