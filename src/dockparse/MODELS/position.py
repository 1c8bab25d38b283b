"""
Source locations used by tokens, instructions and diagnostics.
"""
from typing import Optional
from pydantic import BaseModel


class Position(BaseModel):
    """
    A point in the Dockerfile source. Lines and columns are 1-based,
    ``offset`` is the 0-based character offset.
    """
    line: int = 0
    column: int = 0
    offset: int = 0
    file_path: Optional[str] = None

    def __str__(self) -> str:
        location = f"{self.line}:{self.column}"
        if self.file_path:
            return f"{self.file_path}:{location}"
        return location


class Range(BaseModel):
    """
    A span between two positions.
    """
    start: Position = Position()
    end: Position = Position()

    def contains_line(self, line: int) -> bool:
        return self.start.line <= line <= self.end.line
