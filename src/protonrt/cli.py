"""
CLI entry point for protonrt.

Usage:
    protonrt annotate <path>...        Annotate generated .cs files in place
    protonrt analyze <file>            Show the nullability verdict for each declaration
    protonrt parse <file>              Parse a file and show a declaration summary
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, List

from . import __version__


def expand_paths(paths: Iterable[str], include: List[str]) -> List[Path]:
    """Files named directly plus files under named directories matching `include`."""
    files: List[Path] = []
    seen = set()
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            matches = sorted({m for pattern in include for m in path.glob(pattern) if m.is_file()})
        else:
            matches = [path]
        for match in matches:
            if match not in seen:
                seen.add(match)
                files.append(match)
    return files


def _load_config(args):
    from .config import get_config
    return get_config(Path(args.config) if args.config else None)


def cmd_annotate(args):
    """Annotate files in place (or check which would change)."""
    from .annotate import annotate_files
    from .resolver import ReferenceLoadError

    config = _load_config(args)
    references = [str(p) for p in config.reference_paths] + list(args.reference)
    defines = config.defined_symbols + list(args.define)
    jobs = args.jobs if args.jobs is not None else config.jobs

    files = expand_paths(args.paths, config.include)
    if not files:
        print("No files to annotate", file=sys.stderr)
        return 0

    try:
        report = annotate_files(files, references, defines, check=args.check, jobs=jobs)
    except ReferenceLoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.check:
        for path in report.changed:
            print(f"would annotate: {path}")
    print(report.summary())
    return 1 if args.check and report.changed else 0


def cmd_analyze(args):
    """Print the verdict table for a file."""
    from .annotate import iter_decisions, load_source_unit
    from .parser import LexerError, ParseError, read_source
    from .resolver import ReferenceLoadError

    config = _load_config(args)
    references = [str(p) for p in config.reference_paths] + list(args.reference)
    defines = config.defined_symbols + list(args.define)

    try:
        unit = load_source_unit(read_source(args.file), references, args.file, defines)
    except (OSError, LexerError, ParseError, ReferenceLoadError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    optional = 0
    for decision in iter_decisions(unit.root, unit.environment):
        marker = "optional" if decision.optional else "-"
        print(f"{decision.line:>6}  {decision.kind.value:<9}  {decision.name:<40}  "
              f"{marker:<8}  [{decision.rule or 'default'}]")
        optional += decision.optional
    print(f"\n{optional} declarations to annotate")
    return 0


def cmd_parse(args):
    """Parse a file and show a declaration summary."""
    from .parser import LexerError, NodeType, ParseError, parse_file

    try:
        root = parse_file(args.file, args.define)
    except (OSError, LexerError, ParseError) as e:
        print(f"Parse error: {e}", file=sys.stderr)
        return 1

    counts = {}
    for node in root.descendant_nodes():
        counts[node.node_type] = counts.get(node.node_type, 0) + 1

    print(f"Parsed: {args.file}")
    for node_type in (NodeType.NAMESPACE, NodeType.FILE_SCOPED_NAMESPACE, NodeType.CLASS,
                      NodeType.STRUCT, NodeType.INTERFACE, NodeType.ENUM, NodeType.PROPERTY,
                      NodeType.FIELD, NodeType.METHOD, NodeType.CONSTRUCTOR, NodeType.SKIPPED):
        if counts.get(node_type):
            print(f"  {node_type.name.lower():<22} {counts[node_type]}")

    if args.verbose:
        for node in root.descendant_nodes():
            if node.node_type in (NodeType.CLASS, NodeType.STRUCT, NodeType.INTERFACE,
                                  NodeType.RECORD, NodeType.ENUM):
                line = node.first_token().line
                print(f"  - {node.node_type.name.lower()} {node.name} (line {line})")

    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="protonrt",
        description="Nullable reference type annotator for protobuf-generated C#",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    protonrt annotate obj/Generated/Protos
    protonrt annotate Messages.cs -r refs/common.yaml --check
    protonrt analyze Messages.cs
"""
    )
    parser.add_argument('--version', action='version', version=f'protonrt {__version__}')
    parser.add_argument('-v', '--verbose', dest='verbosity', action='count', default=0,
                        help='More logging (-vv for debug)')
    parser.add_argument('--config', help='Config file (default: ./protonrt.yaml, ~/.protonrt/config.yaml)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    def add_resolution_args(p):
        p.add_argument('-r', '--reference', action='append', default=[],
                       help='Extra reference (YAML manifest, .cs file or directory)')
        p.add_argument('-D', '--define', action='append', default=[],
                       help='Preprocessor symbol to define')

    # annotate
    annotate_p = subparsers.add_parser('annotate', help='Annotate files in place')
    annotate_p.add_argument('paths', nargs='+', help='Files or directories')
    add_resolution_args(annotate_p)
    annotate_p.add_argument('--check', action='store_true',
                            help='Report files that would change, do not write')
    annotate_p.add_argument('-j', '--jobs', type=int, help='Worker processes')
    annotate_p.set_defaults(func=cmd_annotate)

    # analyze
    analyze_p = subparsers.add_parser('analyze', help='Show nullability verdicts')
    analyze_p.add_argument('file', help='File to analyze')
    add_resolution_args(analyze_p)
    analyze_p.set_defaults(func=cmd_analyze)

    # parse
    parse_p = subparsers.add_parser('parse', help='Parse a C# file')
    parse_p.add_argument('file', help='File to parse')
    parse_p.add_argument('-D', '--define', action='append', default=[],
                         help='Preprocessor symbol to define')
    parse_p.add_argument('-v', '--verbose', action='store_true')
    parse_p.set_defaults(func=cmd_parse)

    args = parser.parse_args(argv)

    level = logging.WARNING if args.verbosity == 0 and args.command != 'annotate' else logging.INFO
    if args.verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format='%(message)s')

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
