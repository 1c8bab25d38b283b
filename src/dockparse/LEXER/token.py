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
Token model and the static keyword/impact tables shared by the scanner and lexer.
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, NamedTuple


class TokenType(str, Enum):
    """Kinds of lexical units found in a Dockerfile."""

    ILLEGAL = "ILLEGAL"
    EOF = "EOF"
    NEWLINE = "NEWLINE"
    WHITESPACE = "WHITESPACE"

    INSTRUCTION = "INSTRUCTION"

    COMMENT = "COMMENT"
    CONTINUATION = "CONTINUATION"
    ESCAPED_CHAR = "ESCAPED_CHAR"
    HEREDOC_START = "HEREDOC_START"
    HEREDOC_CONTENT = "HEREDOC_CONTENT"
    HEREDOC_END = "HEREDOC_END"

    STRING = "STRING"
    QUOTED_STRING = "QUOTED_STRING"
    NUMBER = "NUMBER"
    EQUALS = "EQUALS"
    COLON = "COLON"
    COMMA = "COMMA"
    LBRACKET = "LBRACKET"
    RBRACKET = "RBRACKET"
    VARIABLE = "VARIABLE"
    JSON_ARRAY = "JSON_ARRAY"

    AS = "AS"


@dataclass(frozen=True)
class Token:
    """
    A lexical token with its source location.

    ``value`` is the processed text (a variable's bare name, a quoted string
    without its quotes, a heredoc identifier), ``raw`` is the text as written.
    Lines and columns are 1-based.
    """

    type: TokenType
    value: str
    raw: str
    line: int
    column: int
    length: int

    def is_instruction(self) -> bool:
        return self.type == TokenType.INSTRUCTION

    def is_argument(self) -> bool:
        return self.type in ARGUMENT_TYPES

    def ends_at(self, line: int, column: int) -> bool:
        """True when this token finishes right before ``line:column``."""
        return self.line == line and self.column + self.length == column

    def __str__(self) -> str:
        if self.value:
            return f"{self.type.value}({self.value}) at line {self.line}:{self.column}"
        return f"{self.type.value} at line {self.line}:{self.column}"


ARGUMENT_TYPES = frozenset({
    TokenType.STRING,
    TokenType.QUOTED_STRING,
    TokenType.NUMBER,
    TokenType.VARIABLE,
})

# MAINTAINER is still recognised lexically so the parser can reject it by name.
KEYWORDS: Mapping[str, TokenType] = MappingProxyType({
    keyword: TokenType.INSTRUCTION
    for keyword in (
        "FROM", "RUN", "CMD", "LABEL", "MAINTAINER", "EXPOSE", "ENV", "ADD",
        "COPY", "ENTRYPOINT", "VOLUME", "USER", "WORKDIR", "ARG", "ONBUILD",
        "STOPSIGNAL", "HEALTHCHECK", "SHELL",
    )
})

OPTIONAL_INSTRUCTIONS = frozenset({"LABEL", "MAINTAINER", "HEALTHCHECK", "SHELL"})


class TokenImpact(NamedTuple):
    """Build-optimisation impact of an instruction."""

    layer_creating: bool = False
    cache_breaking: bool = False
    size_impact: int = 0


class TokenMetadata(NamedTuple):
    is_keyword: bool
    is_optional: bool
    category: str
    impact: TokenImpact


INSTRUCTION_IMPACT: Mapping[str, TokenImpact] = MappingProxyType({
    "FROM": TokenImpact(layer_creating=True, cache_breaking=True, size_impact=10),
    "RUN": TokenImpact(layer_creating=True, cache_breaking=True, size_impact=8),
    "COPY": TokenImpact(layer_creating=True, cache_breaking=True, size_impact=7),
    "ADD": TokenImpact(layer_creating=True, cache_breaking=True, size_impact=7),
})


def instruction_impact(command: str) -> TokenImpact:
    return INSTRUCTION_IMPACT.get(command, TokenImpact())


def token_category(token: Token) -> str:
    if token.type == TokenType.INSTRUCTION:
        return "instruction"
    if token.type == TokenType.VARIABLE:
        return "variable"
    if token.type == TokenType.COMMENT:
        return "metadata"
    return "syntax"


def token_metadata(token: Token) -> TokenMetadata:
    """
    Describe a token for optimisation tooling.

    Variable references always break the build cache, since their value is
    only known at build time.
    """
    impact = instruction_impact(token.value) if token.is_instruction() else TokenImpact()
    if token.type == TokenType.VARIABLE:
        impact = impact._replace(cache_breaking=True)
    return TokenMetadata(
        is_keyword=token.is_instruction(),
        is_optional=token.is_instruction() and token.value in OPTIONAL_INSTRUCTIONS,
        category=token_category(token),
        impact=impact,
    )
