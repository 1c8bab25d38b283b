# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Diagnostics raised and collected while parsing a Dockerfile.

Every diagnostic is a :class:`DockerfileError` carrying a categorical
:class:`ErrorCode`, a source position and a list of remediation hints looked
up from the error code.
"""
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .position import Position

DOCS_URL = "https://docs.docker.com/engine/reference/builder/"

MSG_EMPTY_DOCKERFILE = "dockerfile is empty"
MSG_NO_FROM = "dockerfile has no FROM instruction"
MSG_BEFORE_FROM = "only ARG instructions may appear before the first FROM"
MSG_DUPLICATE_STAGE = "duplicate stage name"
MSG_MISSING_STAGE = "referenced stage not found"
MSG_CIRCULAR_STAGE = "stage cannot copy from itself"
MSG_LINE_START = "line must start with an instruction"


class ErrorCode(str, Enum):
    """
    Categories of parse diagnostics.
    """
    SYNTAX = "SyntaxError"
    VALIDATION = "ValidationError"
    REFERENCE = "ReferenceError"
    INSTRUCTION = "InstructionError"
    STAGE = "StageError"
    VARIABLE = "VariableError"
    IO = "IOError"
    INTERNAL = "InternalError"


GENERIC_HINT = f"Check the Dockerfile reference: {DOCS_URL}"

HINTS: Mapping[ErrorCode, Tuple[str, ...]] = MappingProxyType({
    ErrorCode.SYNTAX: (
        "Close every quote, ${...} reference and JSON array on the line where it starts.",
        "A line continuation character must be the last character on its line.",
    ),
    ErrorCode.VALIDATION: (
        "A Dockerfile needs at least one FROM instruction.",
    ),
    ErrorCode.REFERENCE: (
        "--from must name an earlier stage, an earlier stage index or an external image.",
    ),
    ErrorCode.INSTRUCTION: (
        "Write instruction names in upper case (FROM, RUN, COPY) and check their required arguments.",
    ),
    ErrorCode.STAGE: (
        "Each build stage starts with FROM and stage names must be unique; only ARG may precede the first FROM.",
    ),
    ErrorCode.VARIABLE: (
        "Variable names may only contain letters, digits and underscores.",
    ),
})


def hints_for(code: ErrorCode) -> List[str]:
    """
    Returns the remediation hints for an error code, falling back to a link
    to the Dockerfile reference.
    """
    return list(HINTS.get(code, ())) or [GENERIC_HINT]


class DockerfileError(Exception):
    """
    A positioned, categorized parse diagnostic.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        position: Optional[Position] = None,
        stage: Optional[str] = None,
        details: Optional[str] = None,
        snippet: Optional[str] = None,
        hints: Optional[List[str]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.position = position or Position()
        self.stage = stage
        self.details = details
        self.snippet = snippet
        self.hints = list(hints) if hints is not None else hints_for(code)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = []
        header = ""
        if self.stage:
            header = f"Stage '{self.stage}': "
        parts.append(f"{header}Line {self.position.line}:{self.position.column} - {self.message}")

        if self.snippet:
            parts.append("")
            parts.append("Problematic code:")
            parts.append(self.snippet)
            if self.position.column > 0 and "\n" not in self.snippet:
                parts.append(" " * (self.position.column - 1) + "^")

        if self.details:
            parts.append("")
            parts.append(f"Details: {self.details}")

        if self.hints:
            parts.append("")
            parts.append("Suggestions:")
            parts.extend(f"- {hint}" for hint in self.hints)

        return "\n".join(parts)

    def __repr__(self) -> str:
        return f"DockerfileError({self.code.value}, {self.message!r}, line={self.position.line})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "stage": self.stage,
            "position": self.position.model_dump(),
            "details": self.details,
            "snippet": self.snippet,
            "hints": list(self.hints),
        }


class ScanError(DockerfileError):
    """
    Raised by the scanner for malformed token-level grammar.
    """

    def __init__(self, message: str, position: Position, snippet: Optional[str] = None):
        super().__init__(ErrorCode.SYNTAX, message, position=position, snippet=snippet)


class ErrorCollector:
    """
    Accumulates diagnostics in source order without aborting the parse.

    Foreign exceptions are wrapped as internal errors; the current stage name
    is stamped on errors that do not carry one.
    """

    def __init__(self):
        self._errors: List[DockerfileError] = []
        self.stage: Optional[str] = None

    def add(self, err: Optional[BaseException]) -> None:
        if err is None:
            return
        if not isinstance(err, DockerfileError):
            err = DockerfileError(ErrorCode.INTERNAL, str(err), cause=err)
        if self.stage and not err.stage:
            err.stage = self.stage
        self._errors.append(err)

    def extend(self, errors) -> None:
        for err in errors:
            self.add(err)

    def has_errors(self) -> bool:
        return bool(self._errors)

    @property
    def errors(self) -> List[DockerfileError]:
        return list(self._errors)

    def __len__(self) -> int:
        return len(self._errors)


def new_syntax_error(position: Position, message: str, snippet: Optional[str] = None) -> DockerfileError:
    return DockerfileError(ErrorCode.SYNTAX, message, position=position, snippet=snippet)


def new_instruction_error(position: Position, instruction: str, message: str) -> DockerfileError:
    return DockerfileError(
        ErrorCode.INSTRUCTION,
        f"Invalid {instruction} instruction: {message}",
        position=position,
    )


def new_stage_error(stage_name: Optional[str], position: Position, message: str) -> DockerfileError:
    return DockerfileError(ErrorCode.STAGE, message, position=position, stage=stage_name)


def new_reference_error(stage_name: Optional[str], position: Position, message: str) -> DockerfileError:
    return DockerfileError(ErrorCode.REFERENCE, message, position=position, stage=stage_name)
