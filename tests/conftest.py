"""
Pytest configuration and shared fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Import protonrt modules
from protonrt.parser import NodeType, parse_source
from protonrt.parser.syntax import SyntaxNode
from protonrt.resolver import ResolutionEnvironment


# Usings every protoc-generated file starts with
PROTOC_USINGS = """\
using pb = global::Google.Protobuf;
using pbc = global::Google.Protobuf.Collections;
using pbr = global::Google.Protobuf.Reflection;
using scg = global::System.Collections.Generic;
"""


# =============================================================================
# PATH FIXTURES
# =============================================================================

@pytest.fixture
def fixtures_dir():
    """Path to test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def simple_message_path(fixtures_dir):
    """Path to the protoc-style message file."""
    return fixtures_dir / "SimpleMessage.cs"


@pytest.fixture
def greeter_path(fixtures_dir):
    """Path to the gRPC service file."""
    return fixtures_dir / "GreeterGrpc.cs"


# =============================================================================
# SOURCE FIXTURES
# =============================================================================

@pytest.fixture
def simple_message_source(simple_message_path):
    return simple_message_path.read_text(encoding="utf-8")


@pytest.fixture
def greeter_source(greeter_path):
    return greeter_path.read_text(encoding="utf-8")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def message_source(body: str, name: str = "Foo", namespace: str = "Test") -> str:
    """Wrap class members in a generated-style message declaration."""
    return (
        PROTOC_USINGS
        + f"namespace {namespace} {{\n"
        + f"  public sealed partial class {name} : pb::IMessage<{name}> {{\n"
        + body
        + "  }\n"
        + "}\n"
    )


def bind(source: str, references=None):
    """Parse source and build its resolution environment."""
    root = parse_source(source)
    return root, ResolutionEnvironment(root, references)


def find_nodes(root: SyntaxNode, node_type: NodeType) -> list:
    """All nodes of one type under root, in source order."""
    return [n for n in root.descendant_nodes() if n.node_type == node_type]


def find_member(root: SyntaxNode, node_type: NodeType, name: str):
    """Find a declaration by node type and declared name."""
    for node in find_nodes(root, node_type):
        if node_type in (NodeType.FIELD, NodeType.EVENT_FIELD):
            if name in node.variable_names:
                return node
        elif node.name == name:
            return node
    return None
