"""Lightweight proto parser.

Splits a ``.proto`` source into top-level statements and brace-balanced
declaration blocks, then extracts what service scaffolding needs: syntax,
package, imports, file options, message/enum names and services with their
RPCs.  It is not a full protobuf grammar; syntactic validity of message
bodies is left to ``protoc``.
"""

from __future__ import annotations

import re
from pathlib import Path

from protoscaffold.errors import ParseError
from protoscaffold.proto.models import Declaration, DeclKind, ProtoFragment, Rpc, Service, ServiceDescriptor

# ---------------------------------------------------------------------------
# Statement patterns
# ---------------------------------------------------------------------------

_SYNTAX_RE = re.compile(r'^syntax\s*=\s*["\'](proto2|proto3)["\']\s*;$')
_EDITION_RE = re.compile(r'^edition\s*=\s*["\']([^"\']+)["\']\s*;$')
_PACKAGE_RE = re.compile(r"^package\s+([A-Za-z_][\w.]*)\s*;$")
_IMPORT_RE = re.compile(r'^import\s+(?:(?:public|weak)\s+)?["\']([^"\']+)["\']\s*;$')
_OPTION_RE = re.compile(r"^option\s+([\w.()]+)\s*=\s*(.+?)\s*;$", re.DOTALL)
_DECL_RE = re.compile(r"^(message|enum|service|extend)\s+([A-Za-z_][\w.]*)\s*\{", re.DOTALL)

_STRING_RE = re.compile(r'"(?:[^"\\\n]|\\.)*"|\'(?:[^\'\\\n]|\\.)*\'')
_RPC_HEAD_RE = re.compile(r"\brpc\s+([A-Za-z_]\w*)")
_RPC_RE = re.compile(
    r"\brpc\s+([A-Za-z_]\w*)\s*"
    r"\(\s*(stream\s+)?([A-Za-z_.][\w.]*)\s*\)\s*"
    r"returns\s*\(\s*(stream\s+)?([A-Za-z_.][\w.]*)\s*\)"
)


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

def _skip_string(text: str, i: int) -> int:
    """Return the index just past the string literal starting at *i*."""
    quote = text[i]
    i += 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == quote:
            return i + 1
        if text[i] == "\n":
            break
        i += 1
    raise ValueError("unterminated string literal")


def _skip_comment(text: str, i: int) -> int:
    """Return the index just past the comment starting at *i*."""
    if text.startswith("//", i):
        end = text.find("\n", i)
        return len(text) if end == -1 else end
    end = text.find("*/", i + 2)
    if end == -1:
        raise ValueError("unterminated block comment")
    return end + 2


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments, leaving string literals intact."""
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch in "\"'":
            end = _skip_string(text, i)
            out.append(text[i:end])
            i = end
        elif text.startswith("//", i) or text.startswith("/*", i):
            i = _skip_comment(text, i)
            out.append(" ")
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def split_statements(text: str) -> list[tuple[str, str]]:
    """Split proto source into top-level ``(leading_comments, statement)`` pairs.

    A statement is either a ``;``-terminated line such as ``import "a.proto";``
    or a complete brace-balanced block.  ``leading_comments`` holds the comment
    lines sitting directly above the statement (no blank line in between).

    Raises:
        ValueError: On unbalanced braces, unterminated comments/strings or
            trailing text without a terminator.
    """
    statements: list[tuple[str, str]] = []
    i = 0
    n = len(text)
    prev_end = 0
    start = -1
    depth = 0

    while i < n:
        ch = text[i]
        if ch in "\"'":
            if start < 0:
                start = i
            i = _skip_string(text, i)
            continue
        if text.startswith("//", i) or text.startswith("/*", i):
            i = _skip_comment(text, i)
            continue
        if ch.isspace():
            i += 1
            continue

        if start < 0:
            start = i
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth < 0:
                raise ValueError(f"unbalanced '}}' at offset {i}")
            # Aggregate option values end with ';', not with their brace.
            if depth == 0 and not text.startswith("option", start):
                statements.append(_close(text, prev_end, start, i + 1))
                prev_end, start = i + 1, -1
        elif ch == ";" and depth == 0:
            statement = _close(text, prev_end, start, i + 1)
            # A stray ';' after a block is an empty statement.
            if statement[1] != ";":
                statements.append(statement)
            prev_end, start = i + 1, -1
        i += 1

    if depth > 0:
        raise ValueError("unterminated block (missing '}')")
    if start >= 0:
        raise ValueError(f"statement without terminator: {text[start:start + 40]!r}")
    return statements


def _close(text: str, prev_end: int, start: int, end: int) -> tuple[str, str]:
    return _leading_comments(text[prev_end:start]), text[start:end]


def _leading_comments(gap: str) -> str:
    """Comment lines at the bottom of *gap* that touch the next statement."""
    lines = gap.split("\n")
    # The last element is the indentation in front of the statement itself.
    lines = lines[:-1]
    kept: list[str] = []
    for line in reversed(lines):
        stripped = line.strip()
        if stripped.startswith(("//", "/*", "*")) or stripped.endswith("*/"):
            kept.append(line.rstrip())
            continue
        break
    return "\n".join(reversed(kept))


# ---------------------------------------------------------------------------
# Fragment reading
# ---------------------------------------------------------------------------

def scan_source(text: str, path: Path) -> ProtoFragment:
    """Classify the top-level statements of a proto source.

    Raises:
        ParseError: If the source cannot be split or contains an unknown
            top-level statement.
    """
    try:
        statements = split_statements(text)
    except ValueError as exc:
        raise ParseError(f"{path}: {exc}") from exc

    fragment = ProtoFragment(path=path, contents=text)
    for comments, statement in statements:
        flat = " ".join(strip_comments(statement).split())
        if m := _SYNTAX_RE.match(flat):
            fragment.syntax = m.group(1)
        elif m := _EDITION_RE.match(flat):
            fragment.syntax = f"editions-{m.group(1)}"
        elif m := _PACKAGE_RE.match(flat):
            fragment.package = m.group(1)
        elif m := _IMPORT_RE.match(flat):
            fragment.imports.append(m.group(1))
        elif m := _OPTION_RE.match(flat):
            fragment.options.append((m.group(1), m.group(2)))
        elif m := _DECL_RE.match(flat):
            body = f"{comments}\n{statement}" if comments else statement
            fragment.declarations.append(
                Declaration(kind=DeclKind(m.group(1)), name=m.group(2), text=body)
            )
        else:
            raise ParseError(f"{path}: unexpected top-level statement {flat[:60]!r}")
    return fragment


def parse_rpcs(service_text: str, where: str = "") -> list[Rpc]:
    """Extract the RPCs declared in a ``service`` block.

    Raises:
        ParseError: If an ``rpc`` declaration is malformed, e.g. has an empty
            request or response type.
    """
    # Option strings may mention "rpc"; only code counts.
    body = _STRING_RE.sub('""', strip_comments(service_text))
    rpcs = [
        Rpc(
            name=m.group(1),
            request_type=m.group(3),
            response_type=m.group(5),
            client_streaming=bool(m.group(2)),
            server_streaming=bool(m.group(4)),
        )
        for m in _RPC_RE.finditer(body)
    ]
    declared = _RPC_HEAD_RE.findall(body)
    if len(declared) != len(rpcs):
        parsed = {r.name for r in rpcs}
        broken = [name for name in declared if name not in parsed]
        raise ParseError(f"{where}malformed rpc declaration: {', '.join(broken) or '?'}")
    return rpcs


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class ProtoParser:
    """Turns a proto file into a ``ServiceDescriptor``."""

    def parse(self, src: str | Path, multiple: bool = False) -> ServiceDescriptor:
        """Parse *src*.

        Args:
            src: Path of the proto file.
            multiple: Whether more than one service may be declared.

        Raises:
            ParseError: If the file is unreadable, malformed, declares no
                service, or declares several services without *multiple*.
        """
        path = Path(src).expanduser().resolve()
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ParseError(f"cannot read {path}: {exc}") from exc

        fragment = scan_source(text, path)

        seen: set[str] = set()
        for decl in fragment.declarations:
            if decl.kind is not DeclKind.EXTEND and decl.name in seen:
                raise ParseError(f"{path.name}: duplicate declaration {decl.name!r}")
            seen.add(decl.name)

        services = tuple(
            Service(
                name=decl.name,
                rpcs=tuple(parse_rpcs(decl.text, where=f"{path.name}: service {decl.name}: ")),
            )
            for decl in fragment.declarations
            if decl.kind is DeclKind.SERVICE
        )
        if not services:
            raise ParseError(f"{path.name}: no service declared")
        if len(services) > 1 and not multiple:
            raise ParseError(
                f"{path.name}: only one service expected, found "
                f"{', '.join(s.name for s in services)} (use multiple mode)"
            )

        return ServiceDescriptor(
            src=path,
            syntax=fragment.syntax or "proto3",
            package=fragment.package,
            imports=tuple(fragment.imports),
            options=tuple(fragment.options),
            services=services,
            messages=tuple(
                d.name for d in fragment.declarations if d.kind is DeclKind.MESSAGE
            ),
            enums=tuple(d.name for d in fragment.declarations if d.kind is DeclKind.ENUM),
            declarations=tuple(fragment.declarations),
        )
