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
Token-stream lexer grouping scanner tokens into logical instruction lines.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Set, TextIO, Tuple, Union

from .scanner import Scanner
from .token import KEYWORDS, Token, TokenType
from ..MODELS.errors import MSG_LINE_START, DockerfileError, ScanError, new_syntax_error
from ..MODELS.position import Position

logger = logging.getLogger("dockparse.lexer")

# Tokens dropped when partitioning a logical line into arguments
LINE_MARKERS = frozenset({TokenType.NEWLINE, TokenType.CONTINUATION, TokenType.COMMENT})

# Heredoc bodies are attached separately and never part of the argument text
HEREDOC_BODY = frozenset({TokenType.HEREDOC_CONTENT, TokenType.HEREDOC_END})


class Word(NamedTuple):
    """
    A run of adjacent argument tokens, e.g. ``--from=builder`` or ``8080/tcp``.
    """
    text: str
    tokens: Tuple[Token, ...]

    @property
    def first(self) -> Token:
        return self.tokens[0]

    def has_variable(self) -> bool:
        return any(t.type == TokenType.VARIABLE for t in self.tokens)


@dataclass
class InstructionTokens:
    """
    The tokens of one logical line: the instruction keyword, its arguments
    and any comments attached to it.
    """
    instruction: Token
    arguments: List[Token] = field(default_factory=list)
    comments: List[Token] = field(default_factory=list)
    raw: List[Token] = field(default_factory=list)
    json_form: bool = False

    @property
    def command(self) -> str:
        if self.instruction is None:
            return ""
        return self.instruction.value

    @property
    def line(self) -> int:
        return self.instruction.line

    def words(self) -> List[Word]:
        """
        Groups adjacent argument tokens into words. Tokens separated by
        whitespace or a line continuation start a new word.
        """
        words: List[Word] = []
        current: List[Token] = []
        for token in self.arguments:
            if token.type in HEREDOC_BODY:
                continue
            if current and not current[-1].ends_at(token.line, token.column):
                words.append(Word("".join(t.raw for t in current), tuple(current)))
                current = []
            current.append(token)
        if current:
            words.append(Word("".join(t.raw for t in current), tuple(current)))
        return words

    def arguments_as_string(self) -> str:
        """
        Returns the argument text with whitespace runs and continuations
        collapsed to single spaces.
        """
        return " ".join(word.text for word in self.words())

    def heredoc_tokens(self) -> List[Token]:
        return [t for t in self.arguments
                if t.type in (TokenType.HEREDOC_START, TokenType.HEREDOC_CONTENT, TokenType.HEREDOC_END)]


class Lexer:
    """
    Pull-based lexer over a :class:`Scanner` with two tokens of lookahead.

    Scan errors never stop the lexer: the offending physical line is skipped
    by the scanner, an ILLEGAL token marks the spot, and the logical line
    holding it is rejected when it is processed.
    """

    def __init__(self, source: Union[str, TextIO], escape_char: str = "\\"):
        self.scanner = Scanner(source, escape_char)
        self.current_token: Optional[Token] = None
        self._peek_token: Optional[Token] = None
        self.tokens: List[Token] = []
        self.errors: List[DockerfileError] = []
        self._scan_errors: Dict[Token, DockerfileError] = {}
        self._pending_comments: List[Token] = []

        # Fill current and peek
        self._advance()
        self._advance()

    @property
    def variables(self) -> Set[str]:
        return self.scanner.variables

    # ------------------------------------------------------------------
    # Token pulling
    # ------------------------------------------------------------------

    def _advance(self) -> None:
        self.current_token = self._peek_token
        while True:
            try:
                token = self.scanner.scan()
            except ScanError as err:
                logger.debug("scan error at %s: %s", err.position, err.message)
                self.scanner.recover()
                self.errors.append(err)
                token = Token(
                    TokenType.ILLEGAL, err.message, err.snippet or "",
                    err.position.line, err.position.column, 0,
                )
                self._scan_errors[token] = err
            if token.type != TokenType.WHITESPACE:
                break
        self.tokens.append(token)
        self._peek_token = token

    def next_token(self) -> Token:
        """Returns the current token and advances."""
        token = self.current_token
        self._advance()
        return token

    def peek_token(self) -> Token:
        return self._peek_token

    def tokenize_all(self) -> Tuple[List[Token], List[DockerfileError]]:
        while self.current_token.type != TokenType.EOF:
            self.next_token()
        return self.tokens, self.errors

    # ------------------------------------------------------------------
    # Logical lines
    # ------------------------------------------------------------------

    def tokenize_line(self) -> List[Token]:
        """
        Collects the tokens of one logical line, following continuations.
        Comment lines inside a continued instruction keep it open.
        """
        line_tokens: List[Token] = []
        continued = False

        while True:
            token = self.next_token()
            if token.type == TokenType.EOF:
                break

            line_tokens.append(token)

            if token.type == TokenType.CONTINUATION:
                continued = True
                continue

            if token.type == TokenType.NEWLINE:
                if not continued:
                    break
                continued = self.current_token.type == TokenType.COMMENT

        return line_tokens

    def is_json_form(self, tokens: List[Token]) -> bool:
        """
        True when the first token after the instruction keyword opens a
        bracketed array. Only looks at the token, never at its content.
        """
        for token in tokens[1:]:
            if token.type in (TokenType.WHITESPACE, TokenType.CONTINUATION,
                              TokenType.NEWLINE, TokenType.COMMENT):
                continue
            return token.raw.startswith("[")
        return False

    def process_instruction_line(self) -> Optional[InstructionTokens]:
        """
        Tokenizes the next logical line into :class:`InstructionTokens`.

        Returns None for blank and comment-only lines; comment lines are
        held back and attached to the instruction that directly follows them.

        :raises DockerfileError: when the line holds a scan error or does not
            start with an instruction keyword.
        """
        tokens = self.tokenize_line()
        significant = [t for t in tokens if t.type != TokenType.NEWLINE]

        if not significant:
            self._pending_comments = []
            return None

        if all(t.type == TokenType.COMMENT for t in significant):
            self._pending_comments.extend(significant)
            return None

        for token in significant:
            if token.type == TokenType.ILLEGAL:
                self._pending_comments = []
                if token in self._scan_errors:
                    raise self._scan_errors[token]
                raise new_syntax_error(
                    Position(line=token.line, column=token.column),
                    f"illegal character {token.value!r}",
                    snippet=token.raw,
                )

        first = significant[0]
        if not first.is_instruction():
            self._pending_comments = []
            err = new_syntax_error(
                Position(line=first.line, column=first.column),
                MSG_LINE_START,
                snippet=first.raw,
            )
            if first.value.upper() in KEYWORDS:
                err.details = f"instruction keywords are case-sensitive, use {first.value.upper()}"
            raise err

        comments = self._pending_comments + [t for t in tokens[1:] if t.type == TokenType.COMMENT]
        self._pending_comments = []

        start = tokens.index(first)
        return InstructionTokens(
            instruction=first,
            arguments=[t for t in tokens[start + 1:] if t.type not in LINE_MARKERS],
            comments=comments,
            raw=tokens,
            json_form=self.is_json_form(tokens[start:]),
        )

    def process_all_instructions(self) -> Tuple[List[InstructionTokens], List[DockerfileError]]:
        """
        Processes every logical line. A bad line is recorded and skipped;
        since the whole logical line was consumed, the next call starts on
        the following line.
        """
        instructions: List[InstructionTokens] = []

        while self.current_token.type != TokenType.EOF:
            try:
                inst = self.process_instruction_line()
            except DockerfileError as err:
                if err not in self.errors:
                    self.errors.append(err)
                continue

            if inst is not None:
                instructions.append(inst)

        logger.debug("lexed %d instructions, %d errors", len(instructions), len(self.errors))
        return instructions, self.errors
