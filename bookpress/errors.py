"""Exceptions raised by the book build pipeline."""


class BookpressError(Exception):
    """Base class for every error the pipeline reports."""

    exit_code = 1


class ManifestError(BookpressError):
    """The book manifest or the chapter list is invalid."""

    exit_code = 2


class BuildError(BookpressError):
    """The book could not be built; no output tree is left behind."""

    exit_code = 3


class ChunkExecutionError(BuildError):
    """An embedded code chunk raised an error it was not allowed to raise."""

    def __init__(self, chapter, chunk, ename, evalue, traceback=""):
        self.chapter = chapter
        self.chunk = chunk
        self.ename = ename
        self.evalue = evalue
        self.traceback = traceback
        super().__init__(f"Chunk {chunk} in {chapter} failed: {ename}: {evalue}")


class LinkCheckError(BuildError):
    """Post-build validation found broken links."""

    exit_code = 4

    def __init__(self, report):
        self.report = report
        lines = [f"{len(report.problems)} broken link(s) in {report.root}:"]
        lines.extend(f"  {problem}" for problem in report.problems[:50])
        super().__init__("\n".join(lines))


class PublishError(BookpressError):
    """Publishing failed; the previously published site is untouched."""

    exit_code = 5
