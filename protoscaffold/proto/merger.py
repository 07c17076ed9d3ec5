"""Merge split proto fragments into one canonical proto file.

A service may keep its proto description split across several files in a
``desc/`` directory (``base.proto``, ``user.proto``, ``role.proto``...), each
contributing messages and RPCs to the same service.  ``merge_proto`` folds
them back into the single file the parser and ``protoc`` consume.

Merging is deterministic: fragments are processed in file-name order and the
output depends only on fragment contents, so merging the same set twice
yields byte-identical files.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from pathlib import Path

from protoscaffold.errors import MergeError, ParseError
from protoscaffold.utils import write_text_atomic
from protoscaffold.proto.models import Declaration, DeclKind, ProtoFragment
from protoscaffold.proto.parser import parse_rpcs, scan_source


@dataclass(frozen=True)
class ProtoContext:
    """Where to find fragments and where to write the merged proto."""

    proto_dir: Path
    output_path: Path


def discover_fragments(proto_dir: Path, exclude: Path | None = None) -> list[Path]:
    """Return the ``*.proto`` files directly under *proto_dir*, sorted by name."""
    if not proto_dir.is_dir():
        return []
    excluded = exclude.resolve() if exclude is not None else None
    return sorted(
        (
            p
            for p in proto_dir.iterdir()
            if p.suffix == ".proto" and p.is_file() and p.resolve() != excluded
        ),
        key=lambda p: p.name,
    )


def read_fragment(path: Path) -> ProtoFragment:
    """Read and scan one fragment.

    Raises:
        MergeError: If the fragment cannot be read or split.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise MergeError(f"cannot read fragment: {exc}", fragment=path) from exc
    try:
        return scan_source(text, path)
    except ParseError as exc:
        raise MergeError(f"cannot split fragment: {exc}", fragment=path) from exc


def normalize_import(path: str) -> str:
    """Normalise an import path so equivalent spellings compare equal."""
    normalized = posixpath.normpath(path.replace("\\", "/"))
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def merge_fragments(fragments: list[ProtoFragment], proto_dir_name: str = "desc") -> str:
    """Merge already-scanned *fragments* (in the given order) into proto text.

    Raises:
        MergeError: On conflicting syntax, package or option values, on a
            message/enum declared twice, or on an RPC declared twice in the
            same service.
    """
    syntax = ""
    syntax_from: Path | None = None
    package = ""
    package_from: Path | None = None
    options: dict[str, str] = {}
    option_from: dict[str, Path] = {}
    imports: set[str] = set()
    types: list[Declaration] = []
    type_from: dict[str, Path] = {}
    services: dict[str, list[tuple[ProtoFragment, Declaration]]] = {}

    fragment_names = {f.path.name for f in fragments}
    local_imports = fragment_names | {f"{proto_dir_name}/{name}" for name in fragment_names}

    for fragment in fragments:
        if fragment.syntax:
            if syntax and fragment.syntax != syntax:
                raise MergeError(
                    f"syntax {fragment.syntax!r} conflicts with {syntax!r} "
                    f"declared in {syntax_from.name}",
                    fragment=fragment.path,
                )
            if not syntax:
                syntax, syntax_from = fragment.syntax, fragment.path

        if fragment.package:
            if package and fragment.package != package:
                raise MergeError(
                    f"package {fragment.package!r} conflicts with {package!r} "
                    f"declared in {package_from.name}",
                    fragment=fragment.path,
                )
            if not package:
                package, package_from = fragment.package, fragment.path

        for name, value in fragment.options:
            if name in options and options[name] != value:
                raise MergeError(
                    f"option {name} = {value} conflicts with {options[name]} "
                    f"declared in {option_from[name].name}",
                    fragment=fragment.path,
                )
            if name not in options:
                options[name] = value
                option_from[name] = fragment.path

        for raw in fragment.imports:
            normalized = normalize_import(raw)
            if normalized not in local_imports:
                imports.add(normalized)

        for decl in fragment.declarations:
            if decl.kind is DeclKind.SERVICE:
                services.setdefault(decl.name, []).append((fragment, decl))
                continue
            if decl.kind is not DeclKind.EXTEND:
                if decl.name in type_from:
                    raise MergeError(
                        f"duplicate {decl.kind.value} {decl.name!r}, "
                        f"already declared in {type_from[decl.name].name}",
                        fragment=fragment.path,
                    )
                type_from[decl.name] = fragment.path
            types.append(decl)

    sections: list[str] = [f'syntax = "{syntax or "proto3"}";']
    if package:
        sections.append(f"package {package};")
    if imports:
        sections.append("\n".join(f'import "{path}";' for path in sorted(imports)))
    if options:
        sections.append("\n".join(f"option {name} = {value};" for name, value in options.items()))
    sections.extend(decl.text.strip("\n") for decl in types)
    sections.extend(_merge_service(name, parts) for name, parts in services.items())

    return "\n\n".join(sections) + "\n"


def _merge_service(name: str, parts: list[tuple[ProtoFragment, Declaration]]) -> str:
    """Fold every fragment's block for service *name* into one block."""
    seen: dict[str, Path] = {}
    for fragment, decl in parts:
        try:
            rpcs = parse_rpcs(decl.text)
        except ParseError as exc:
            raise MergeError(f"service {name}: {exc}", fragment=fragment.path) from exc
        for rpc in rpcs:
            if rpc.name in seen:
                raise MergeError(
                    f"duplicate rpc {name}.{rpc.name}, already declared in "
                    f"{seen[rpc.name].name}",
                    fragment=fragment.path,
                )
            seen[rpc.name] = fragment.path

    if len(parts) == 1:
        return parts[0][1].text.strip("\n")

    comments, _ = _split_block(parts[0][1].text, name)
    bodies: list[str] = []
    for fragment, decl in parts:
        _, body = _split_block(decl.text, name)
        body = body.strip("\n")
        if body.strip():
            bodies.append(f"  // {fragment.path.stem}\n{body}")
    header = f"{comments}\n" if comments else ""
    return f"{header}service {name} {{\n" + "\n\n".join(bodies) + "\n}"


def _split_block(text: str, name: str) -> tuple[str, str]:
    """Split a ``service`` declaration into ``(leading_comments, body_between_braces)``."""
    head = re.search(rf"(?:^|\n)[ \t]*service\s+{re.escape(name)}\s*\{{", text)
    if head is None:
        raise MergeError(f"cannot locate the block of service {name}")
    comments = text[: head.start()].rstrip()
    return comments, text[head.end() : text.rindex("}")]


def merge_proto(ctx: ProtoContext) -> Path | None:
    """Merge the fragments under ``ctx.proto_dir`` into ``ctx.output_path``.

    Returns:
        The written path, or ``None`` when the directory holds no fragments
        (nothing is written and the existing source proto is used as is).

    Raises:
        MergeError: If a fragment is unreadable or fragments conflict.
    """
    paths = discover_fragments(ctx.proto_dir, exclude=ctx.output_path)
    if not paths:
        return None

    fragments = [read_fragment(path) for path in paths]
    merged = merge_fragments(fragments, proto_dir_name=ctx.proto_dir.name)
    try:
        return write_text_atomic(ctx.output_path, merged)
    except OSError as exc:
        raise MergeError(f"cannot write merged proto to {ctx.output_path}: {exc}") from exc
