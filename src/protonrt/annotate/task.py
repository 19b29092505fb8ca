"""
Build task: annotate generated files in place.

Runs after protoc has written its .cs output. Each file is read, passed
through process_content, and written back when the annotated text
differs. Files that cannot be processed are logged and left alone; a
missing file is skipped without a message, as build systems routinely
hand over outputs that were never generated.

With jobs > 1 files are spread over worker processes. Every file is
processed independently, so the outcome matches a sequential run.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from protonrt.annotate.runner import process_content
from protonrt.parser.lexer import read_source

logger = logging.getLogger(__name__)


class FileStatus(Enum):
    UNCHANGED = "unchanged"     # processed, already annotated
    CHANGED = "changed"         # processed, annotations added (written unless checking)
    SKIPPED = "skipped"         # unreadable or not processable
    MISSING = "missing"


@dataclass
class FileResult:
    path: str
    status: FileStatus
    message: Optional[str] = None


@dataclass
class AnnotateReport:
    """Outcome of one annotate_files run."""
    check: bool = False
    results: List[FileResult] = field(default_factory=list)

    def _paths(self, *statuses: FileStatus) -> List[str]:
        return [r.path for r in self.results if r.status in statuses]

    @property
    def processed(self) -> List[str]:
        return self._paths(FileStatus.UNCHANGED, FileStatus.CHANGED)

    @property
    def changed(self) -> List[str]:
        return self._paths(FileStatus.CHANGED)

    @property
    def skipped(self) -> List[str]:
        return self._paths(FileStatus.SKIPPED)

    @property
    def missing(self) -> List[str]:
        return self._paths(FileStatus.MISSING)

    def summary(self) -> str:
        verb = "would change" if self.check else "changed"
        return (f"{len(self.processed)} processed, {len(self.changed)} {verb}, "
                f"{len(self.skipped)} skipped, {len(self.missing)} missing")


def annotate_file(path: str, reference_paths: Sequence[str] = (),
                  defined_symbols: Sequence[str] = (), check: bool = False) -> FileResult:
    """Annotate a single file. Safe to run in a worker process."""
    file_path = Path(path)
    if not file_path.is_file():
        return FileResult(path, FileStatus.MISSING)

    try:
        code = read_source(str(file_path))
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return FileResult(path, FileStatus.SKIPPED, str(e))

    new_code = process_content(code, reference_paths, str(file_path), defined_symbols)
    if new_code is None:
        logger.info(f"Skipping {path} (not a processable protobuf file)")
        return FileResult(path, FileStatus.SKIPPED, "not a processable protobuf file")

    logger.info(f"Processing {path}...")
    if new_code == code:
        return FileResult(path, FileStatus.UNCHANGED)
    if not check:
        try:
            with open(file_path, "w", encoding="utf-8", newline="") as f:
                f.write(new_code)
        except OSError as e:
            logger.warning(f"Cannot write {path}: {e}")
            return FileResult(path, FileStatus.SKIPPED, str(e))
    return FileResult(path, FileStatus.CHANGED)


def annotate_files(paths: Iterable, reference_paths: Iterable = (),
                   defined_symbols: Iterable[str] = (), check: bool = False,
                   jobs: int = 1) -> AnnotateReport:
    """
    Annotate every file in `paths`.

    Args:
        paths: Files to annotate in place
        reference_paths: Extra references for symbol resolution
        defined_symbols: Preprocessor symbols defined for #if evaluation
        check: Report files that would change without writing them
        jobs: Worker processes (1 = run in this process)

    Returns:
        AnnotateReport with one result per path, in input order
    """
    paths = [str(p) for p in paths]
    reference_paths = tuple(str(p) for p in reference_paths)
    defined_symbols = tuple(defined_symbols)
    report = AnnotateReport(check=check)

    if jobs <= 1 or len(paths) <= 1:
        for path in paths:
            report.results.append(annotate_file(path, reference_paths, defined_symbols, check))
        return report

    results = {}
    with ProcessPoolExecutor(max_workers=jobs) as executor:
        futures = {
            executor.submit(annotate_file, path, reference_paths, defined_symbols, check): path
            for path in paths
        }
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    report.results.extend(results[path] for path in paths)
    return report
