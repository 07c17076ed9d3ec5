"""Tests for proto fragment merging (protoscaffold.proto.merger).

Covers:
- Exact output layout for a simple fragment set
- Determinism under fragment permutation and repeated merges
- Skip when the fragment directory is absent or empty
- Conflict detection (package, syntax, option, duplicate types and rpcs)
- Import normalisation and de-duplication
- Same-name service blocks folded into one
"""

from __future__ import annotations

import random
import textwrap
from pathlib import Path

import pytest

from protoscaffold.errors import MergeError
from protoscaffold.proto import ProtoContext, ProtoParser, merge_fragments, merge_proto
from protoscaffold.proto.merger import discover_fragments, normalize_import, read_fragment


pytestmark = pytest.mark.unit


BASE = """\
syntax = "proto3";

package user;
option go_package = "./user";

message Empty {}

message IDReq {
  uint64 id = 1;
}

service User {
  rpc InitDatabase (Empty) returns (Empty);
}
"""

USER = """\
syntax = "proto3";

package user;
import "base.proto";
import "google/protobuf/timestamp.proto";

// A user record.
message UserInfo {
  uint64 id = 1;
  google.protobuf.Timestamp created_at = 2;
}

service User {
  rpc GetUser (IDReq) returns (UserInfo);
}
"""

ROLE = """\
syntax = "proto3";

package user;
import "./google/protobuf/timestamp.proto";
option go_package = "./user";

enum RoleStatus {
  ROLE_STATUS_UNSPECIFIED = 0;
}

service User {
  rpc GetRole (IDReq) returns (Empty);
}
"""


def _write(directory: Path, name: str, text: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Output layout
# ---------------------------------------------------------------------------


class TestMergeLayout:
    def test_two_fragments_exact_output(self, write_fragments, tmp_path: Path):
        desc = write_fragments({
            "a.proto": """\
                syntax = "proto3";
                package demo;

                message A {
                  string x = 1;
                }
                """,
            "b.proto": """\
                syntax = "proto3";
                package demo;
                import "a.proto";

                message B {
                  A a = 1;
                }

                service Demo {
                  rpc Get (A) returns (B);
                }
                """,
        })
        out = tmp_path / "demo.proto"

        assert merge_proto(ProtoContext(proto_dir=desc, output_path=out)) == out
        assert out.read_text(encoding="utf-8") == (
            'syntax = "proto3";\n'
            "\n"
            "package demo;\n"
            "\n"
            "message A {\n"
            "  string x = 1;\n"
            "}\n"
            "\n"
            "message B {\n"
            "  A a = 1;\n"
            "}\n"
            "\n"
            "service Demo {\n"
            "  rpc Get (A) returns (B);\n"
            "}\n"
        )

    def test_services_follow_types_and_keep_comments(self, tmp_path: Path):
        desc = tmp_path / "desc"
        for name, text in (("base.proto", BASE), ("user.proto", USER), ("role.proto", ROLE)):
            _write(desc, name, text)
        out = tmp_path / "user.proto"

        merge_proto(ProtoContext(proto_dir=desc, output_path=out))
        merged = out.read_text(encoding="utf-8")

        # file order: base, role, user
        assert merged.index("message Empty") < merged.index("enum RoleStatus")
        assert merged.index("enum RoleStatus") < merged.index("message UserInfo")
        assert merged.index("message UserInfo") < merged.index("service User")
        assert "// A user record.\nmessage UserInfo {" in merged
        assert merged.count('option go_package = "./user";') == 1

    def test_same_name_services_are_folded(self, tmp_path: Path):
        desc = tmp_path / "desc"
        for name, text in (("base.proto", BASE), ("user.proto", USER), ("role.proto", ROLE)):
            _write(desc, name, text)
        out = tmp_path / "user.proto"

        merge_proto(ProtoContext(proto_dir=desc, output_path=out))
        merged = out.read_text(encoding="utf-8")

        assert merged.count("service User {") == 1
        assert merged.index("rpc InitDatabase") < merged.index("rpc GetRole")
        assert merged.index("rpc GetRole") < merged.index("rpc GetUser")
        assert "  // role\n  rpc GetRole (IDReq) returns (Empty);" in merged

        descriptor = ProtoParser().parse(out)
        assert [r.name for r in descriptor.service.rpcs] == ["InitDatabase", "GetRole", "GetUser"]
        assert set(descriptor.messages) == {"Empty", "IDReq", "UserInfo"}
        assert descriptor.enums == ("RoleStatus",)

    def test_folded_service_name_containing_keyword(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(
            desc,
            "a.proto",
            'syntax = "proto3";\n\n// Auth {entry} point.\n'
            "service auth_service {\n  rpc GetA (A) returns (A);\n}\n\nmessage A {}\n",
        )
        _write(
            desc,
            "b.proto",
            'syntax = "proto3";\n\nservice auth_service {\n  rpc GetB (B) returns (B);\n}\n\nmessage B {}\n',
        )
        out = tmp_path / "auth.proto"

        merge_proto(ProtoContext(proto_dir=desc, output_path=out))
        merged = out.read_text(encoding="utf-8")

        assert "// Auth {entry} point.\nservice auth_service {\n  // a\n" in merged
        assert merged.count("service auth_service {") == 1
        descriptor = ProtoParser().parse(out)
        assert [r.name for r in descriptor.service.rpcs] == ["GetA", "GetB"]


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------


class TestDeterminism:
    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_creation_order_does_not_matter(self, tmp_path: Path, seed: int):
        fragments = [("base.proto", BASE), ("user.proto", USER), ("role.proto", ROLE)]

        reference_dir = tmp_path / "ref" / "desc"
        for name, text in fragments:
            _write(reference_dir, name, text)
        reference = tmp_path / "ref" / "out.proto"
        merge_proto(ProtoContext(proto_dir=reference_dir, output_path=reference))

        shuffled = fragments[:]
        random.Random(seed).shuffle(shuffled)
        permuted_dir = tmp_path / "perm" / "desc"
        for name, text in shuffled:
            _write(permuted_dir, name, text)
        permuted = tmp_path / "perm" / "out.proto"
        merge_proto(ProtoContext(proto_dir=permuted_dir, output_path=permuted))

        assert permuted.read_bytes() == reference.read_bytes()

    def test_repeated_merge_is_byte_identical(self, tmp_path: Path):
        desc = tmp_path / "desc"
        for name, text in (("base.proto", BASE), ("user.proto", USER)):
            _write(desc, name, text)
        out = tmp_path / "user.proto"
        ctx = ProtoContext(proto_dir=desc, output_path=out)

        merge_proto(ctx)
        first = out.read_bytes()
        merge_proto(ctx)
        assert out.read_bytes() == first

    def test_output_inside_fragment_dir_is_not_a_fragment(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "base.proto", BASE)
        out = desc / "all.proto"
        ctx = ProtoContext(proto_dir=desc, output_path=out)

        merge_proto(ctx)
        first = out.read_text(encoding="utf-8")
        merge_proto(ctx)

        assert out.read_text(encoding="utf-8") == first
        assert discover_fragments(desc, exclude=out) == [desc / "base.proto"]


# ---------------------------------------------------------------------------
# Skip when absent
# ---------------------------------------------------------------------------


class TestSkip:
    def test_missing_directory(self, tmp_path: Path):
        out = tmp_path / "svc.proto"
        assert merge_proto(ProtoContext(proto_dir=tmp_path / "desc", output_path=out)) is None
        assert not out.exists()

    def test_directory_without_fragments(self, tmp_path: Path):
        desc = tmp_path / "desc"
        desc.mkdir()
        (desc / "notes.txt").write_text("not a proto", encoding="utf-8")
        out = tmp_path / "svc.proto"
        out.write_text("original", encoding="utf-8")

        assert merge_proto(ProtoContext(proto_dir=desc, output_path=out)) is None
        assert out.read_text(encoding="utf-8") == "original"

    def test_subdirectories_are_not_scanned(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc / "nested", "x.proto", BASE)
        assert discover_fragments(desc) == []


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class TestConflicts:
    def test_package_conflict_names_fragment(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", 'syntax = "proto3";\npackage one;\nmessage A {}\n')
        _write(desc, "b.proto", 'syntax = "proto3";\npackage two;\nmessage B {}\n')

        with pytest.raises(MergeError) as exc_info:
            merge_proto(ProtoContext(proto_dir=desc, output_path=tmp_path / "x.proto"))

        assert exc_info.value.fragment == desc / "b.proto"
        assert "a.proto" in str(exc_info.value)
        assert not (tmp_path / "x.proto").exists()

    def test_syntax_conflict(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", 'syntax = "proto2";\nmessage A {}\n')
        _write(desc, "b.proto", 'syntax = "proto3";\nmessage B {}\n')

        with pytest.raises(MergeError, match="syntax"):
            merge_proto(ProtoContext(proto_dir=desc, output_path=tmp_path / "x.proto"))

    def test_option_value_conflict(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", 'option go_package = "./a";\nmessage A {}\n')
        _write(desc, "b.proto", 'option go_package = "./b";\nmessage B {}\n')

        with pytest.raises(MergeError, match="go_package"):
            merge_proto(ProtoContext(proto_dir=desc, output_path=tmp_path / "x.proto"))

    def test_duplicate_message(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", "message Shared {\n  string a = 1;\n}\n")
        _write(desc, "b.proto", "message Shared {\n  string b = 1;\n}\n")

        with pytest.raises(MergeError, match="duplicate message 'Shared'"):
            merge_proto(ProtoContext(proto_dir=desc, output_path=tmp_path / "x.proto"))

    def test_message_and_enum_with_same_name(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", "message Status {}\n")
        _write(desc, "b.proto", "enum Status {\n  UNKNOWN = 0;\n}\n")

        with pytest.raises(MergeError, match="Status"):
            merge_proto(ProtoContext(proto_dir=desc, output_path=tmp_path / "x.proto"))

    def test_duplicate_rpc_across_fragments(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", "service S {\n  rpc Ping (A) returns (A);\n}\nmessage A {}\n")
        _write(desc, "b.proto", "service S {\n  rpc Ping (B) returns (B);\n}\nmessage B {}\n")

        with pytest.raises(MergeError, match="S.Ping"):
            merge_proto(ProtoContext(proto_dir=desc, output_path=tmp_path / "x.proto"))

    def test_unbalanced_fragment_leaves_output_untouched(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", "message A {\n  string x = 1;\n")
        out = tmp_path / "x.proto"
        out.write_text("original", encoding="utf-8")

        with pytest.raises(MergeError):
            merge_proto(ProtoContext(proto_dir=desc, output_path=out))
        assert out.read_text(encoding="utf-8") == "original"

    def test_disjoint_fragments_merge(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", 'syntax = "proto3";\nmessage A {}\n')
        _write(desc, "b.proto", "message B {}\nservice S {\n  rpc Get (A) returns (B);\n}\n")
        out = tmp_path / "x.proto"

        merge_proto(ProtoContext(proto_dir=desc, output_path=out))

        descriptor = ProtoParser().parse(out)
        assert descriptor.messages == ("A", "B")
        assert descriptor.service.name == "S"


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


class TestImports:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("google/protobuf/empty.proto", "google/protobuf/empty.proto"),
            ("./google/protobuf/empty.proto", "google/protobuf/empty.proto"),
            ("google//protobuf/./empty.proto", "google/protobuf/empty.proto"),
            ("google\\protobuf\\empty.proto", "google/protobuf/empty.proto"),
        ],
    )
    def test_normalize_import(self, raw: str, expected: str):
        assert normalize_import(raw) == expected

    def test_imports_deduplicated_and_sorted(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "a.proto", 'import "./z/last.proto";\nimport "a/first.proto";\nmessage A {}\n')
        _write(desc, "b.proto", 'import "z/last.proto";\nmessage B {}\n')

        merged = merge_fragments([read_fragment(desc / "a.proto"), read_fragment(desc / "b.proto")])

        assert merged.count('import "z/last.proto";') == 1
        assert merged.index('import "a/first.proto";') < merged.index('import "z/last.proto";')

    def test_imports_of_sibling_fragments_are_dropped(self, tmp_path: Path):
        desc = tmp_path / "desc"
        _write(desc, "base.proto", BASE)
        _write(desc, "user.proto", USER.replace('import "base.proto";', 'import "desc/base.proto";'))

        merged = merge_fragments([read_fragment(desc / "base.proto"), read_fragment(desc / "user.proto")])

        assert "base.proto" not in merged
        assert 'import "google/protobuf/timestamp.proto";' in merged
