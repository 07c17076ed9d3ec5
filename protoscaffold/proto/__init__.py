"""Proto handling: fragment merging and service-descriptor parsing.

Quick usage::

    from protoscaffold.proto import ProtoContext, ProtoParser, merge_proto

    merge_proto(ProtoContext(proto_dir=Path("svc/desc"), output_path=Path("svc/svc.proto")))
    descriptor = ProtoParser().parse("svc/svc.proto", multiple=False)
"""

from protoscaffold.proto.merger import ProtoContext, merge_fragments, merge_proto
from protoscaffold.proto.models import (
    Declaration,
    DeclKind,
    ProtoFragment,
    Rpc,
    Service,
    ServiceDescriptor,
)
from protoscaffold.proto.parser import ProtoParser

__all__ = [
    "Declaration",
    "DeclKind",
    "ProtoContext",
    "ProtoFragment",
    "ProtoParser",
    "Rpc",
    "Service",
    "ServiceDescriptor",
    "merge_fragments",
    "merge_proto",
]
