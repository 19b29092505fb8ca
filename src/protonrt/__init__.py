"""
protonrt - Nullable Reference Type Annotator for protobuf C#

Post-processes protoc-generated C# so that message-typed, string and bytes
members that may legitimately be null carry `?` annotations, and opts the
file into `#nullable enable annotations`.
"""

__version__ = "0.1.0"
__author__ = "protonrt contributors"

from protonrt.annotate import annotate_files, process_content
from protonrt.parser import parse_file, parse_source
