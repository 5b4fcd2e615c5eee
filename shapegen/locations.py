from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SourcePos:
    path: str
    offset: int
    line: int
    column: int


@dataclass(frozen=True)
class SourceSpan:
    start: SourcePos
    end: SourcePos

    @property
    def path(self) -> str:
        return self.start.path

    def describe(self) -> str:
        return f"{self.start.path}:{self.start.line}:{self.start.column}"


def span_at(path: str, line: int, column: int = 1) -> SourceSpan:
    pos = SourcePos(path=path, offset=0, line=line, column=column)
    return SourceSpan(start=pos, end=pos)


def describe_span(span: SourceSpan | None) -> str:
    if span is None:
        return "<unknown>"
    return span.describe()
