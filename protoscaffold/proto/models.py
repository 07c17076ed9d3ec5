"""Pydantic v2 models for parsed proto sources.

``ServiceDescriptor`` is what the parser hands to every downstream stage;
``ProtoFragment`` only lives for the duration of a merge.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class DeclKind(str, Enum):
    """Kinds of top-level proto declarations."""
    MESSAGE = "message"
    ENUM = "enum"
    SERVICE = "service"
    EXTEND = "extend"


# ---------------------------------------------------------------------------
# Raw blocks
# ---------------------------------------------------------------------------

class Declaration(BaseModel):
    """A top-level ``message``/``enum``/``service``/``extend`` block.

    ``text`` holds the block verbatim, including any comment lines directly
    above it.
    """
    model_config = ConfigDict(frozen=True)

    kind: DeclKind
    name: str
    text: str


# ---------------------------------------------------------------------------
# Service models
# ---------------------------------------------------------------------------

class Rpc(BaseModel):
    """A single RPC method."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Method name, e.g. 'SayHello'")
    request_type: str = Field(..., description="Request message type")
    response_type: str = Field(..., description="Response message type")
    client_streaming: bool = Field(default=False)
    server_streaming: bool = Field(default=False)


class Service(BaseModel):
    """A proto ``service`` with its RPCs."""
    model_config = ConfigDict(frozen=True)

    name: str
    rpcs: tuple[Rpc, ...] = Field(default=())


class ServiceDescriptor(BaseModel):
    """Structured, read-only representation of a parsed proto file."""
    model_config = ConfigDict(frozen=True)

    src: Path = Field(..., description="Absolute path of the parsed proto")
    syntax: str = Field(default="proto3")
    package: str = Field(default="")
    imports: tuple[str, ...] = Field(default=())
    options: tuple[tuple[str, str], ...] = Field(
        default=(), description="File options as (name, value) pairs in file order"
    )
    services: tuple[Service, ...] = Field(default=())
    messages: tuple[str, ...] = Field(default=())
    enums: tuple[str, ...] = Field(default=())
    declarations: tuple[Declaration, ...] = Field(default=())

    @property
    def service(self) -> Service:
        """The first (in single-service mode, the only) service."""
        return self.services[0]

    @property
    def proto_name(self) -> str:
        """File stem of the source proto, e.g. ``greeter``."""
        return self.src.stem

    def has_type(self, name: str) -> bool:
        """Whether a top-level message or enum called *name* is declared."""
        return name in self.messages or name in self.enums


# ---------------------------------------------------------------------------
# Merge input
# ---------------------------------------------------------------------------

class ProtoFragment(BaseModel):
    """One proto source contributing declarations to a merged descriptor."""

    path: Path
    contents: str
    syntax: str = ""
    package: str = ""
    imports: list[str] = Field(default_factory=list)
    options: list[tuple[str, str]] = Field(default_factory=list)
    declarations: list[Declaration] = Field(default_factory=list)
