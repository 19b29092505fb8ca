"""
Tests for protonrt type resolution: reference sets, scopes and lookup.
"""

import logging

import pytest
from protonrt.parser import NodeType
from protonrt.resolver import (
    NamespaceSymbol,
    ReferenceLoadError,
    ResolutionEnvironment,
    SpecialType,
    SymbolTable,
    TypeKind,
    TypeSymbol,
    build_reference_table,
    default_reference_table,
    load_manifest,
)

from conftest import PROTOC_USINGS, bind, find_member, find_nodes, message_source


def field_symbol(source, name, references=None):
    root, env = bind(source, references)
    return env.type_of(find_member(root, NodeType.FIELD, name).type)


class TestSymbolTable:
    """Keys, merging and interface closure."""

    def test_keys(self):
        assert TypeSymbol("RepeatedField", "Google.Protobuf.Collections", arity=1).key == \
            "Google.Protobuf.Collections.RepeatedField`1"
        nested = TypeSymbol("Codec", "Google.Protobuf.Collections",
                            containing_type="Google.Protobuf.Collections.MapField`2")
        assert nested.key == "Google.Protobuf.Collections.MapField`2.Codec"
        assert nested.display_name == "Google.Protobuf.Collections.MapField.Codec"

    def test_partial_declarations_merge(self):
        table = SymbolTable()
        table.add(TypeSymbol("Foo", "A", interfaces=["I1"]))
        merged = table.add(TypeSymbol("Foo", "A", base_type="Base", interfaces=["I1", "I2"]))
        assert len(table) == 1
        assert merged.base_type == "Base"
        assert merged.interfaces == ["I1", "I2"]

    def test_namespaces_registered(self):
        table = SymbolTable([TypeSymbol("X", "A.B.C")])
        assert table.has_namespace("A")
        assert table.has_namespace("A.B.C")
        assert not table.has_namespace("B")

    def test_all_interfaces_transitive(self):
        table = SymbolTable([
            TypeSymbol("I", kind=TypeKind.INTERFACE),
            TypeSymbol("J", kind=TypeKind.INTERFACE, interfaces=["I"]),
            TypeSymbol("Base", interfaces=["J"]),
            TypeSymbol("Derived", base_type="Base"),
        ])
        names = sorted(s.name for s in table.all_interfaces(table.get("Derived")))
        assert names == ["I", "J"]

    def test_base_cycle_terminates(self):
        table = SymbolTable([TypeSymbol("A", base_type="B"), TypeSymbol("B", base_type="A")])
        assert [s.name for s in table.base_chain(table.get("A"))] == ["A", "B"]
        assert table.nested(table.get("A"), "Missing") is None

    def test_copy_is_independent(self):
        table = default_reference_table()
        table.add(TypeSymbol("Extra", "Test"))
        assert "Test.Extra" not in default_reference_table()


class TestManifests:
    """YAML reference manifests."""

    def test_default_references(self):
        table = default_reference_table()
        assert "Google.Protobuf.IMessage`1" in table
        assert "Google.Protobuf.Collections.MapField`2.Codec" in table
        assert table.special(SpecialType.STRING).key == "System.String"
        assert table.get("Google.Protobuf.WellKnownTypes.NullValue").kind == TypeKind.ENUM

    def test_load_manifest(self, tmp_path):
        path = tmp_path / "acme.yaml"
        path.write_text(
            "namespaces:\n"
            "  Acme.Messages:\n"
            "    - name: Widget\n"
            "      interfaces: [\"Google.Protobuf.IMessage`1\"]\n"
            "      nested:\n"
            "        - {name: Types, kind: class}\n"
            "    - {name: \"Box`1\", kind: struct}\n",
            encoding="utf-8")
        symbols = {s.key: s for s in load_manifest(path)}
        assert set(symbols) == {"Acme.Messages.Widget", "Acme.Messages.Widget.Types",
                                "Acme.Messages.Box`1"}
        assert symbols["Acme.Messages.Box`1"].arity == 1
        assert symbols["Acme.Messages.Widget"].origin == "reference:acme.yaml"

    @pytest.mark.parametrize("content", [
        "types: []\n",
        "namespaces:\n  Acme: {name: Widget}\n",
        "namespaces:\n  Acme:\n    - {kind: class}\n",
        "namespaces:\n  Acme:\n    - {name: Widget, kind: module}\n",
        "namespaces: [unclosed\n",
    ])
    def test_invalid_manifest(self, tmp_path, content):
        path = tmp_path / "bad.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ReferenceLoadError):
            load_manifest(path)


class TestLookup:
    """Type syntax resolves through aliases, usings and nesting."""

    def test_predefined(self):
        symbol = field_symbol("class A { string s; }", "s")
        assert symbol.key == "System.String"
        assert symbol.special == SpecialType.STRING

    def test_alias_qualified(self):
        symbol = field_symbol(PROTOC_USINGS + "class A { pb::ByteString b; }", "b")
        assert symbol.key == "Google.Protobuf.ByteString"

    def test_global_qualified(self):
        source = "class A { global::Google.Protobuf.WellKnownTypes.Timestamp t; }"
        assert field_symbol(source, "t").key == "Google.Protobuf.WellKnownTypes.Timestamp"

    def test_using_namespace(self):
        source = "using Google.Protobuf.Collections;\nclass A { RepeatedField<string> r; }"
        assert field_symbol(source, "r").key == "Google.Protobuf.Collections.RepeatedField`1"

    def test_using_inside_namespace(self):
        source = "namespace N {\n  using Google.Protobuf;\n  class A { ByteString b; }\n}\n"
        assert field_symbol(source, "b").key == "Google.Protobuf.ByteString"

    def test_using_alias_to_type(self):
        source = "using Bytes = Google.Protobuf.ByteString;\nclass A { Bytes b; }"
        assert field_symbol(source, "b").key == "Google.Protobuf.ByteString"

    def test_static_using_imports_nested_types(self):
        source = "using static Google.Protobuf.Collections.MapField<string, int>;\nclass A { Codec c; }"
        assert field_symbol(source, "c").key == "Google.Protobuf.Collections.MapField`2.Codec"

    def test_arity_must_match(self):
        source = "using Google.Protobuf.Collections;\nclass A { RepeatedField r; }"
        assert field_symbol(source, "r") is None

    def test_nested_generic_member(self):
        source = PROTOC_USINGS + "class A { pbc::MapField<string, int>.Codec c; }"
        assert field_symbol(source, "c").key == "Google.Protobuf.Collections.MapField`2.Codec"

    def test_unresolved(self):
        source = "using grpc = global::Grpc.Core;\nclass A { grpc::Channel c; Missing m; }"
        assert field_symbol(source, "c") is None
        assert field_symbol(source, "m") is None

    def test_array_and_nullable(self):
        source = "class A { string[] names; A? maybe; int? count; }"
        assert field_symbol(source, "names").key == "System.Array"
        assert field_symbol(source, "maybe").key == "A"
        assert field_symbol(source, "count").key == "System.Int32"

    def test_tuple_is_unresolved(self):
        assert field_symbol("class A { (int, string) pair; }", "pair") is None

    def test_type_parameter_shadows_type(self):
        source = "class T { }\nclass Box<T> { T value; }"
        assert field_symbol(source, "value") is None

    def test_method_type_parameter(self):
        root, env = bind("class T { }\nclass A { void F<T>(T x) { } void G(T y) { } }")
        params = find_nodes(root, NodeType.PARAMETER)
        assert env.type_of(params[0].type) is None
        assert env.type_of(params[1].type).key == "T"

    def test_nodes_of_other_trees_are_unknown(self):
        root, env = bind("class A { string s; }")
        other, _ = bind("class A { string s; }")
        assert env.type_of(find_member(other, NodeType.FIELD, "s").type) is None


class TestDeclaredTypes:
    """Types declared by the unit itself."""

    def test_message_implements_imessage(self):
        root, env = bind(message_source(""))
        symbol = env.symbol_of(find_member(root, NodeType.CLASS, "Foo"))
        assert symbol.key == "Test.Foo"
        assert symbol.interfaces == ["Google.Protobuf.IMessage`1"]
        assert env.implements(symbol, "Google.Protobuf", "IMessage")
        assert not env.implements(symbol, "Google.Protobuf", "IBufferMessage")

    def test_partial_declarations(self):
        source = PROTOC_USINGS + (
            "namespace N {\n"
            "  public partial class Foo { }\n"
            "  public partial class Foo : pb::IMessage<Foo>, pb::IBufferMessage { }\n"
            "  class User { Foo f; }\n"
            "}\n")
        root, env = bind(source)
        assert [s.key for s in env.declared_types()] == ["N.Foo", "N.User"]
        symbol = env.type_of(find_member(root, NodeType.FIELD, "f").type)
        assert symbol.interfaces == ["Google.Protobuf.IMessage`1", "Google.Protobuf.IBufferMessage"]
        assert env.implements(symbol, "Google.Protobuf", "IMessage")

    def test_nested_types(self):
        source = (
            "namespace N {\n"
            "  class Outer {\n"
            "    public static partial class Types {\n"
            "      public sealed class Inner { }\n"
            "      class Sibling { Inner i; }\n"
            "    }\n"
            "    Types.Inner qualified;\n"
            "    global::N.Outer.Types.Inner global_;\n"
            "  }\n"
            "}\n")
        assert field_symbol(source, "i").key == "N.Outer.Types.Inner"
        assert field_symbol(source, "qualified").key == "N.Outer.Types.Inner"
        assert field_symbol(source, "global_").key == "N.Outer.Types.Inner"

    def test_nested_type_via_base_class(self):
        source = "class Base { public class Nested { } }\nclass Derived : Base { Nested n; }"
        root, env = bind(source)
        assert field_symbol(source, "n").key == "Base.Nested"
        assert env.symbol_of(find_member(root, NodeType.CLASS, "Derived")).base_type == "Base"

    def test_enclosing_namespaces(self):
        source = "namespace A { class X { } }\nnamespace A.B { class Y { X x; } }"
        assert field_symbol(source, "x").key == "A.X"

    def test_file_scoped_namespace(self):
        source = "namespace A.B;\nclass X { }\nclass Y { X x; }\n"
        assert field_symbol(source, "x").key == "A.B.X"

    def test_enum_is_not_message(self):
        root, env = bind(message_source("  public enum Kind { A = 0 }\n  Kind kind;\n"))
        symbol = env.type_of(find_member(root, NodeType.FIELD, "kind").type)
        assert symbol.kind == TypeKind.ENUM
        assert not env.implements(symbol, "Google.Protobuf", "IMessage")

    def test_interface_itself_is_not_implementation(self):
        root, env = bind(PROTOC_USINGS + "class A { pb::IMessage m; }")
        symbol = env.type_of(find_member(root, NodeType.FIELD, "m").type)
        assert not env.implements(symbol, "Google.Protobuf", "IMessage")

    def test_environment_does_not_touch_references(self):
        references = default_reference_table()
        bind(message_source(""), references)
        assert "Test.Foo" not in references


class TestQualifiers:
    """Expression qualifiers resolved where a declaration sits."""

    SOURCE = PROTOC_USINGS + "namespace N {\n  class A { string s; }\n}\n"

    def resolve(self, names, alias=None):
        root, env = bind(self.SOURCE)
        return env.resolve_qualifier(names, find_member(root, NodeType.FIELD, "s"), alias)

    def test_alias_type(self):
        assert self.resolve(["ProtoPreconditions"], "pb").key == "Google.Protobuf.ProtoPreconditions"

    def test_dotted_type(self):
        target = self.resolve(["Google", "Protobuf", "ProtoPreconditions"])
        assert target.key == "Google.Protobuf.ProtoPreconditions"

    def test_namespace(self):
        assert self.resolve(["Google", "Protobuf"]) == NamespaceSymbol("Google.Protobuf")

    def test_unknown(self):
        assert self.resolve(["Nowhere"]) is None


class TestExtraReferences:
    """Caller-supplied references: manifests, C# sources, directories."""

    SOURCE = "using Acme;\nclass A { Widget w; }\n"

    def test_manifest(self, tmp_path):
        path = tmp_path / "acme.yml"
        path.write_text("namespaces:\n  Acme:\n    - {name: Widget, interfaces: [\"Google.Protobuf.IMessage`1\"]}\n",
                        encoding="utf-8")
        references = build_reference_table([path])
        root, env = bind(self.SOURCE, references)
        symbol = env.type_of(find_member(root, NodeType.FIELD, "w").type)
        assert symbol.key == "Acme.Widget"
        assert env.implements(symbol, "Google.Protobuf", "IMessage")

    def test_source_file(self, tmp_path):
        path = tmp_path / "Widget.cs"
        path.write_text("namespace Acme {\n"
                        "  public sealed partial class Widget : Google.Protobuf.IMessage<Widget> { }\n"
                        "}\n", encoding="utf-8")
        references = build_reference_table([str(path)])
        assert references.get("Acme.Widget").origin == "source:Widget.cs"
        root, env = bind(self.SOURCE, references)
        symbol = env.type_of(find_member(root, NodeType.FIELD, "w").type)
        assert env.implements(symbol, "Google.Protobuf", "IMessage")

    def test_directory(self, tmp_path):
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "widget.yaml").write_text(
            "namespaces:\n  Acme:\n    - {name: Widget}\n", encoding="utf-8")
        (tmp_path / "Gadget.cs").write_text("namespace Acme { class Gadget { } }\n", encoding="utf-8")
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")
        references = build_reference_table([tmp_path])
        assert "Acme.Widget" in references
        assert "Acme.Gadget" in references

    def test_edited_reference_reloaded(self, tmp_path):
        path = tmp_path / "Widget.cs"
        path.write_text("namespace Acme { class Widget { } }\n", encoding="utf-8")
        root, env = bind(self.SOURCE, build_reference_table([path]))
        symbol = env.type_of(find_member(root, NodeType.FIELD, "w").type)
        assert not env.implements(symbol, "Google.Protobuf", "IMessage")

        path.write_text("namespace Acme { class Widget : Google.Protobuf.IMessage { } }\n", encoding="utf-8")
        root, env = bind(self.SOURCE, build_reference_table([path]))
        symbol = env.type_of(find_member(root, NodeType.FIELD, "w").type)
        assert env.implements(symbol, "Google.Protobuf", "IMessage")

    def test_unchanged_reference_reused(self, tmp_path):
        path = tmp_path / "acme.yaml"
        path.write_text("namespaces:\n  Acme:\n    - {name: Widget}\n", encoding="utf-8")
        first = build_reference_table([path])
        second = build_reference_table([path])
        assert first is not second
        assert first.get("Acme.Widget") is second.get("Acme.Widget")

    def test_missing_path_skipped(self, tmp_path):
        references = build_reference_table([tmp_path / "missing.yaml"])
        assert len(references) == len(default_reference_table())

    def test_unparsable_source_skipped(self, tmp_path, caplog):
        path = tmp_path / "Broken.cs"
        path.write_text("namespace Acme { class Broken {\n", encoding="utf-8")
        with caplog.at_level(logging.WARNING, logger="protonrt.resolver.environment"):
            references = build_reference_table([path])
        assert "Acme.Broken" not in references
        assert "Ignoring unparsable reference" in caplog.text

    def test_invalid_manifest_raises(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("namespaces: 5\n", encoding="utf-8")
        with pytest.raises(ReferenceLoadError):
            build_reference_table([path])

    def test_tables_are_copies(self, tmp_path):
        path = tmp_path / "acme.yaml"
        path.write_text("namespaces:\n  Acme:\n    - {name: Widget}\n", encoding="utf-8")
        first = build_reference_table([path])
        first.add(TypeSymbol("Extra", "Acme"))
        assert "Acme.Extra" not in build_reference_table([path])

    def test_environment_builds_default_table(self):
        env = ResolutionEnvironment(bind("class A { }")[0])
        assert "Google.Protobuf.ByteString" in env.table
