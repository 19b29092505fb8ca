"""
Tests for the nullability decision engine: rule tables and guard detection.
"""

import pytest
from protonrt.annotate import (
    PROTOBUF,
    DeclarationKind,
    FrameworkProfile,
    Rule,
    analyze_tree,
    iter_decisions,
    load_source_unit,
)
from protonrt.annotate.decisions import evaluate, iter_sites, is_message
from protonrt.parser import NodeType

from conftest import PROTOC_USINGS, find_member, message_source


def decide(source, profile=PROTOBUF):
    unit = load_source_unit(source)
    return list(iter_decisions(unit.root, unit.environment, profile))


def decide_members(body, **kwargs):
    return decide(message_source(body, **kwargs))


def pick(decisions, kind, name):
    matches = [d for d in decisions if d.kind == kind and d.name == name]
    assert len(matches) == 1, matches
    return matches[0]


def prop(body, name):
    return pick(decide_members(body), DeclarationKind.PROPERTY, name)


def field(body, name):
    return pick(decide_members(body), DeclarationKind.FIELD, name)


def guarded(setter):
    return "    public string Name {\n      get { return name_; }\n      set {\n        " \
           + setter + "\n      }\n    }\n"


class TestPropertyRules:
    """Ordered property rules, first match wins."""

    def test_string_without_guard(self):
        decision = prop("    public string Name { get; set; }\n", "Name")
        assert decision.optional
        assert decision.rule == "string"

    def test_string_with_guard(self):
        decision = prop(guarded('name_ = pb::ProtoPreconditions.CheckNotNull(value, "value");'), "Name")
        assert not decision.optional
        assert decision.rule == "string"

    def test_getter_only_string(self):
        assert prop("    public string Name { get; }\n", "Name").optional

    def test_byte_string(self):
        body = ("    public pb::ByteString Data {\n"
                "      get { return data_; }\n"
                '      set { data_ = pb::ProtoPreconditions.CheckNotNull(value, "value"); }\n'
                "    }\n"
                "    public pb::ByteString Raw { get; set; }\n")
        decisions = decide_members(body)
        data = pick(decisions, DeclarationKind.PROPERTY, "Data")
        raw = pick(decisions, DeclarationKind.PROPERTY, "Raw")
        assert (data.optional, data.rule) == (False, "byte-string")
        assert (raw.optional, raw.rule) == (True, "byte-string")

    def test_static_wins(self):
        decision = prop("    public static string Name { get; set; }\n", "Name")
        assert (decision.optional, decision.rule) == (False, "static")

    def test_static_message_parser(self):
        body = "    public static pb::MessageParser<Foo> Parser { get { return _parser; } }\n"
        assert not prop(body, "Parser").optional

    def test_collections(self):
        body = ("    public pbc::RepeatedField<string> Items { get { return items_; } }\n"
                "    public pbc::MapField<string, Foo> Map { get { return map_; } }\n")
        decisions = decide_members(body)
        for name in ("Items", "Map"):
            decision = pick(decisions, DeclarationKind.PROPERTY, name)
            assert (decision.optional, decision.rule) == (False, "collection")

    LOOKALIKES = PROTOC_USINGS + (
        "namespace Lookalike {\n"
        "  public sealed class ByteString { }\n"
        "  public sealed class RepeatedField<T> : global::Google.Protobuf.IMessage { }\n"
        "}\n"
        "namespace Test {\n"
        "  public sealed partial class Foo : pb::IMessage<Foo> {\n"
        "    public global::Lookalike.ByteString Data { get; set; }\n"
        "    public global::Lookalike.RepeatedField<string> Items { get; set; }\n"
        "  }\n"
        "}\n")

    def test_byte_string_needs_runtime_namespace(self):
        decision = pick(decide(self.LOOKALIKES), DeclarationKind.PROPERTY, "Data")
        assert (decision.optional, decision.rule) == (False, None)

    def test_collection_needs_runtime_namespace(self):
        decision = pick(decide(self.LOOKALIKES), DeclarationKind.PROPERTY, "Items")
        assert (decision.optional, decision.rule) == (True, "message")

    def test_message(self):
        body = ("    public global::Test.Foo Child {\n"
                "      get { return child_; }\n"
                "      set { child_ = value; }\n"
                "    }\n")
        decision = prop(body, "Child")
        assert (decision.optional, decision.rule) == (True, "message")

    def test_well_known_message(self):
        body = "    public global::Google.Protobuf.WellKnownTypes.Timestamp At { get; set; }\n"
        assert prop(body, "At").optional

    def test_value_types_default(self):
        body = ("    public int Id { get; set; }\n"
                "    public bool HasId { get { return true; } }\n"
                "    public Kind Mode { get; set; }\n"
                "    public enum Kind { A = 0 }\n")
        decisions = decide_members(body)
        for name in ("Id", "HasId", "Mode"):
            decision = pick(decisions, DeclarationKind.PROPERTY, name)
            assert (decision.optional, decision.rule) == (False, None)

    def test_unresolved_type_default(self):
        decision = prop("    public Unknown.Thing Thing { get; set; }\n", "Thing")
        assert not decision.optional

    def test_already_nullable(self):
        decision = prop("    public string? Name { get; set; }\n", "Name")
        assert decision.optional


class TestGuardDetection:
    """A setter guard is a CheckNotNull call that targets the preconditions type."""

    @pytest.mark.parametrize("setter", [
        'name_ = pb::ProtoPreconditions.CheckNotNull(value, "value");',
        'name_ = global::Google.Protobuf.ProtoPreconditions.CheckNotNull(value, "value");',
        'name_ = CheckNotNull(value, "value");',
        'name_ = pb::ProtoPreconditions.CheckNotNull<string>(value, "value");',
        'name_ = this.CheckNotNull(value);',
        'name_ = Unknown.Helper.CheckNotNull(value);',
        'if (x) { name_ = ProtoPreconditions.CheckNotNull(value, "value"); }',
    ])
    def test_guard(self, setter):
        assert not prop(guarded(setter), "Name").optional

    @pytest.mark.parametrize("setter", [
        "name_ = value;",
        "// CheckNotNull(value)\n        name_ = value;",
        "/* pb::ProtoPreconditions.CheckNotNull(value) */ name_ = value;",
        'name_ = value ?? "CheckNotNull(value)";',
        "var check = CheckNotNull; name_ = value;",
        'name_ = pb::CheckNotNull(value);',
        'name_ = pb::ByteString.CheckNotNull(value);',
        'name_ = pb::ProtoPreconditions.CheckNotNullOrEmpty(value);',
    ])
    def test_not_guard(self, setter):
        assert prop(guarded(setter), "Name").optional

    def test_other_type_in_unit(self):
        source = PROTOC_USINGS + (
            "namespace Test {\n"
            "  static class Checks { public static string CheckNotNull(string s) => s; }\n"
            "  public sealed partial class Foo : pb::IMessage<Foo> {\n"
            + guarded("name_ = Checks.CheckNotNull(value);") +
            "  }\n"
            "}\n")
        assert pick(decide(source), DeclarationKind.PROPERTY, "Name").optional

    def test_guard_in_getter_does_not_count(self):
        body = ("    public string Name {\n"
                "      get { return pb::ProtoPreconditions.CheckNotNull(name_, \"name\"); }\n"
                "      set { name_ = value; }\n"
                "    }\n")
        assert prop(body, "Name").optional

    def test_expression_bodied_setter(self):
        body = ("    public string Name {\n"
                "      get => name_;\n"
                '      set => name_ = pb::ProtoPreconditions.CheckNotNull(value, "value");\n'
                "    }\n")
        assert not prop(body, "Name").optional


class TestFieldRules:
    """Ordered field rules, first match wins."""

    def test_unknown_fields(self):
        decision = field("    private pb::UnknownFieldSet _unknownFields;\n", "_unknownFields")
        assert (decision.optional, decision.rule) == (True, "unknown-fields")

    def test_string_and_bytes(self):
        body = ('    private string name_ = "";\n'
                "    private pb::ByteString data_ = pb::ByteString.Empty;\n")
        decisions = decide_members(body)
        assert pick(decisions, DeclarationKind.FIELD, "name_").rule == "string-or-byte-string"
        assert pick(decisions, DeclarationKind.FIELD, "data_").optional

    def test_message(self):
        decision = field("    private global::Test.Foo child_;\n", "child_")
        assert (decision.optional, decision.rule) == (True, "message")

    def test_static_and_const(self):
        body = ("    private static readonly pb::MessageParser<Foo> _parser = null;\n"
                "    public const string Default = \"x\";\n"
                "    private static global::Test.Foo instance;\n")
        decisions = decide_members(body)
        for name in ("_parser", "Default", "instance"):
            decision = pick(decisions, DeclarationKind.FIELD, name)
            assert (decision.optional, decision.rule) == (False, "static")

    def test_defaults(self):
        body = ("    private readonly pbc::RepeatedField<string> items_ = new pbc::RepeatedField<string>();\n"
                "    private int id_;\n"
                "    private object choice_;\n")
        decisions = decide_members(body)
        for name in ("items_", "id_", "choice_"):
            assert not pick(decisions, DeclarationKind.FIELD, name).optional

    def test_multiple_declarators(self):
        decision = field("    private string a_, b_;\n", "a_, b_")
        assert decision.optional

    def test_event_field_not_analysed(self):
        decisions = decide_members("    public event global::System.EventHandler Changed;\n")
        assert [d for d in decisions if d.name == "Changed"] == []


class TestParameterRules:
    """Parameters of Equals and MergeFrom."""

    BODY = (
        "    public override bool Equals(object other) { return Equals(other as Foo); }\n"
        "    public bool Equals(Foo other) { return true; }\n"
        "    public void MergeFrom(Foo source) { }\n"
        "    public void MergeFrom(pb::CodedInputStream input) { }\n"
        "    public void WriteTo(pb::CodedOutputStream output) { }\n"
        "    public Foo(Foo copy) : this() { }\n"
        "    public string this[string key] { get { return key; } }\n"
        "    public delegate void Handler(Foo sender);\n"
    )

    @pytest.fixture
    def decisions(self):
        return [d for d in decide_members(self.BODY) if d.kind == DeclarationKind.PARAMETER]

    def test_equals(self, decisions):
        equals = [d for d in decisions if d.name == "other"]
        assert [(d.optional, d.rule) for d in equals] == [(True, "equality"), (True, "equality")]

    def test_merge_from_message(self, decisions):
        decision = pick(decisions, DeclarationKind.PARAMETER, "source")
        assert (decision.optional, decision.rule) == (True, "merge-from")

    def test_merge_from_stream(self, decisions):
        decision = pick(decisions, DeclarationKind.PARAMETER, "input")
        assert (decision.optional, decision.rule) == (False, "merge-from-stream")

    @pytest.mark.parametrize("name", ["output", "copy", "key", "sender"])
    def test_other_parameters(self, decisions, name):
        decision = pick(decisions, DeclarationKind.PARAMETER, name)
        assert (decision.optional, decision.rule) == (False, None)


class TestEngine:
    """Verdict tables, custom rules and profiles."""

    def test_verdicts_keyed_by_span_start(self):
        source = message_source("    public string Name { get; set; }\n    private int id_;\n")
        unit = load_source_unit(source)
        verdicts = analyze_tree(unit.root, unit.environment)
        name = find_member(unit.root, NodeType.PROPERTY, "Name")
        id_ = find_member(unit.root, NodeType.FIELD, "id_")
        assert verdicts == {name.span_start: True, id_.span_start: False}
        assert source[name.span_start:].startswith("public string Name")

    def test_sites_in_source_order(self):
        body = ("    public bool Equals(Foo other) { return true; }\n"
                "    public string Name { get; set; }\n"
                "    private string name_;\n")
        unit = load_source_unit(message_source(body))
        sites = list(iter_sites(unit.root, unit.environment))
        assert [(s.kind, s.name) for s in sites] == [
            (DeclarationKind.PARAMETER, "other"),
            (DeclarationKind.PROPERTY, "Name"),
            (DeclarationKind.FIELD, "name_"),
        ]
        assert sites[0].method.name == "Equals"
        assert sites[1].line == 8

    def test_custom_rules(self):
        unit = load_source_unit(message_source("    private int id_;\n"))
        [site] = list(iter_sites(unit.root, unit.environment))
        rules = (Rule("everything", lambda s: True, lambda s: s.name == "id_"),)
        decision = evaluate(site, rules)
        assert (decision.optional, decision.rule) == (True, "everything")
        assert evaluate(site, ()).rule is None

    def test_custom_profile(self):
        profile = FrameworkProfile(unknown_fields_name="_extra", equality_method="SameAs")
        body = ("    private pb::UnknownFieldSet _extra;\n"
                "    private pb::UnknownFieldSet _unknownFields;\n"
                "    public bool SameAs(Foo other) { return true; }\n"
                "    public bool Equals(Foo other) { return true; }\n")
        decisions = decide(message_source(body), profile)
        assert pick(decisions, DeclarationKind.FIELD, "_extra").rule == "unknown-fields"
        assert pick(decisions, DeclarationKind.FIELD, "_unknownFields").rule is None
        params = [d for d in decisions if d.kind == DeclarationKind.PARAMETER]
        assert [d.optional for d in params] == [True, False]

    def test_is_message_uses_profile_namespace(self):
        unit = load_source_unit(message_source("    private global::Test.Foo child_;\n"))
        [site] = list(iter_sites(unit.root, unit.environment))
        assert is_message(site)
        site.profile = FrameworkProfile(namespace="Other.Runtime")
        assert not is_message(site)

    def test_fixture(self, simple_message_source):
        decisions = decide(simple_message_source)
        optional = sorted({(d.kind.value, d.name) for d in decisions if d.optional})
        assert optional == [
            ("field", "_unknownFields"),
            ("field", "address_"),
            ("field", "createdAt_"),
            ("field", "name_"),
            ("field", "nickname_"),
            ("field", "payload_"),
            ("field", "street_"),
            ("parameter", "other"),
            ("property", "Address"),
            ("property", "CreatedAt"),
            ("property", "Nickname"),
            ("property", "Other"),
        ]
