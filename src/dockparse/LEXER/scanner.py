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
Character-level scanner producing one Dockerfile token at a time.

The scanner knows just enough about logical lines to recognise the
instruction keyword, the first argument (where a JSON array may start) and
heredoc bodies. It never recovers from an error on its own: callers catch
:class:`ScanError` and call :meth:`Scanner.recover` to skip the rest of the
physical line.
"""
import re
from collections import deque
from typing import Deque, List, NamedTuple, Optional, Set, TextIO, Union

from .token import KEYWORDS, Token, TokenType
from ..MODELS.errors import ScanError
from ..MODELS.position import Position

PUNCTUATION = {
    "=": TokenType.EQUALS,
    ":": TokenType.COLON,
    ",": TokenType.COMMA,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
}

# Tokens that leave the logical-line state untouched
LAYOUT_TYPES = frozenset({
    TokenType.WHITESPACE,
    TokenType.NEWLINE,
    TokenType.COMMENT,
    TokenType.CONTINUATION,
    TokenType.HEREDOC_CONTENT,
    TokenType.HEREDOC_END,
    TokenType.EOF,
})

BLANKS = " \t"
QUOTES = "\"'"

HEREDOC_PATTERN = re.compile(r"<<([-~]?)([\"']?)([A-Za-z_][A-Za-z0-9_.-]*)\2")
NUMBER_PATTERN = re.compile(r"\d+(\.\d+)?")


def is_variable_char(ch: str) -> bool:
    return ch.isalpha() or ch.isdigit() or ch == "_"


def is_illegal_char(ch: str) -> bool:
    return (ord(ch) < 32 and ch not in "\t\n") or ch == "\x7f"


class PendingHeredoc(NamedTuple):
    identifier: str
    strip_leading_tabs: bool
    line: int
    column: int


class Scanner:
    """
    Lexical scanner for Dockerfile syntax.
    """

    def __init__(self, source: Union[str, TextIO], escape_char: str = "\\"):
        """
        :param source: Dockerfile text, or a text stream to read it from.
        :param escape_char: The escape/continuation character (``\\`` or a backtick).
        """
        if hasattr(source, "read"):
            source = source.read()
        self._text = source.replace("\r\n", "\n")
        self.escape_char = escape_char

        self._pos = 0
        self._line = 1
        self._column = 1

        # Logical-line state
        self._line_start = True
        self._physical_start = True
        self._instruction: Optional[str] = None
        self._expect_first_arg = False
        self._after_healthcheck_cmd = False
        self._continued = False

        self._pending_heredocs: List[PendingHeredoc] = []
        self._queue: Deque[Token] = deque()

        # Every variable name referenced in the source
        self.variables: Set[str] = set()

    # ------------------------------------------------------------------
    # Character access
    # ------------------------------------------------------------------

    def _peek(self, ahead: int = 0) -> str:
        index = self._pos + ahead
        if index < len(self._text):
            return self._text[index]
        return ""

    def _advance(self) -> str:
        ch = self._text[self._pos]
        self._pos += 1
        if ch == "\n":
            self._line += 1
            self._column = 1
        else:
            self._column += 1
        return ch

    def _position(self, line: Optional[int] = None, column: Optional[int] = None) -> Position:
        return Position(
            line=self._line if line is None else line,
            column=self._column if column is None else column,
        )

    @property
    def line(self) -> int:
        return self._line

    @property
    def column(self) -> int:
        return self._column

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def scan(self) -> Token:
        """
        Returns the next token, or an EOF token once the input is exhausted.

        :raises ScanError: on malformed variables, quotes, continuations or heredocs.
        """
        if self._queue:
            return self._queue.popleft()

        token = self._scan_token()

        if token.type not in LAYOUT_TYPES:
            self._physical_start = False
            self._line_start = False
            if token.type != TokenType.INSTRUCTION:
                self._expect_first_arg = False
                self._after_healthcheck_cmd = (
                    self._instruction == "HEALTHCHECK" and token.raw == "CMD"
                )
        return token

    def recover(self) -> None:
        """
        Discards the rest of the current physical line after a scan error.
        Pending heredoc bodies are still consumed when the newline is reached.
        """
        while self._peek() not in ("", "\n"):
            self._advance()
        self._continued = False

    # ------------------------------------------------------------------
    # Token dispatch
    # ------------------------------------------------------------------

    def _scan_token(self) -> Token:
        ch = self._peek()
        line, column = self._line, self._column

        if ch == "":
            if self._pending_heredocs:
                heredoc, self._pending_heredocs = self._pending_heredocs[0], []
                raise ScanError(
                    f"unterminated heredoc: missing terminator {heredoc.identifier}",
                    self._position(heredoc.line, heredoc.column),
                    snippet="<<" + heredoc.identifier,
                )
            return Token(TokenType.EOF, "", "", line, column, 0)

        if ch == "\n":
            return self._scan_newline()

        if ch in BLANKS:
            text = self._consume_while(lambda c: c in BLANKS)
            return Token(TokenType.WHITESPACE, text, text, line, column, len(text))

        if ch == "#" and self._physical_start:
            text = self._consume_while(lambda c: c != "\n")
            return Token(TokenType.COMMENT, text, text, line, column, len(text))

        if ch == self.escape_char:
            return self._scan_escape()

        if ch in QUOTES:
            return self._scan_quoted_string()

        if ch == "$" and (self._peek(1) == "{" or is_variable_char(self._peek(1))):
            return self._scan_variable()

        if ch == "[" and (self._expect_first_arg or self._after_healthcheck_cmd):
            return self._scan_json_array()

        if ch == "<" and self._instruction:
            match = HEREDOC_PATTERN.match(self._text, self._pos)
            if match:
                return self._scan_heredoc_start(match)

        if ch in PUNCTUATION:
            self._advance()
            return Token(PUNCTUATION[ch], ch, ch, line, column, 1)

        if is_illegal_char(ch):
            self._advance()
            return Token(TokenType.ILLEGAL, ch, ch, line, column, 1)

        return self._scan_word()

    def _consume_while(self, predicate) -> str:
        chars = []
        while self._peek() and predicate(self._peek()):
            chars.append(self._advance())
        return "".join(chars)

    # ------------------------------------------------------------------
    # Newlines and heredoc bodies
    # ------------------------------------------------------------------

    def _scan_newline(self) -> Token:
        line, column = self._line, self._column
        self._advance()
        newline = Token(TokenType.NEWLINE, "\n", "\n", line, column, 1)

        if self._pending_heredocs:
            newline = self._scan_heredoc_bodies(newline)

        self._physical_start = True
        if self._continued:
            self._continued = False
        else:
            self._end_logical_line()
        return newline

    def _end_logical_line(self) -> None:
        self._line_start = True
        self._instruction = None
        self._expect_first_arg = False
        self._after_healthcheck_cmd = False

    def _scan_heredoc_bodies(self, newline: Token) -> Token:
        """
        Reads every pending heredoc body. Body tokens are queued ahead of the
        line's NEWLINE, which is re-positioned after the last terminator line.
        """
        pending, self._pending_heredocs = self._pending_heredocs, []
        last_newline: Optional[Token] = newline

        for heredoc in pending:
            content_line = self._line
            lines = []
            while True:
                if self._peek() == "":
                    raise ScanError(
                        f"unterminated heredoc: missing terminator {heredoc.identifier}",
                        self._position(heredoc.line, heredoc.column),
                        snippet="<<" + heredoc.identifier,
                    )
                line_no = self._line
                text = self._consume_while(lambda c: c != "\n")
                ended_with_newline = self._peek() == "\n"
                if ended_with_newline:
                    self._advance()

                if text.strip() == heredoc.identifier:
                    self._queue.append(Token(
                        TokenType.HEREDOC_CONTENT, "".join(lines), "".join(lines),
                        content_line, 1, len("".join(lines)),
                    ))
                    end_column = text.index(heredoc.identifier) + 1
                    self._queue.append(Token(
                        TokenType.HEREDOC_END, heredoc.identifier, text,
                        line_no, end_column, len(heredoc.identifier),
                    ))
                    last_newline = None
                    if ended_with_newline:
                        last_newline = Token(TokenType.NEWLINE, "\n", "\n", line_no, len(text) + 1, 1)
                    break

                if heredoc.strip_leading_tabs:
                    text = text.lstrip("\t")
                lines.append(text + "\n")

        if last_newline is None:
            # Terminator was the last line of the file
            return self._queue.popleft()
        self._queue.append(last_newline)
        return self._queue.popleft()

    def _scan_heredoc_start(self, match) -> Token:
        line, column = self._line, self._column
        raw = match.group(0)
        for _ in raw:
            self._advance()
        identifier = match.group(3)
        self._pending_heredocs.append(PendingHeredoc(
            identifier=identifier,
            strip_leading_tabs=bool(match.group(1)),
            line=line,
            column=column,
        ))
        return Token(TokenType.HEREDOC_START, identifier, raw, line, column, len(raw))

    # ------------------------------------------------------------------
    # Escapes and continuations
    # ------------------------------------------------------------------

    def _scan_escape(self) -> Token:
        line, column = self._line, self._column
        escape = self._advance()
        following = self._peek()

        if following == "\n":
            self._continued = True
            return Token(TokenType.CONTINUATION, escape, escape, line, column, 1)

        rest = self._text[self._pos:].split("\n", 1)[0]
        if following == "" or (following in BLANKS and rest.strip(BLANKS) == ""):
            raise ScanError(
                "line continuation character must be followed by newline",
                self._position(line, column),
                snippet=escape + rest,
            )

        self._advance()
        return Token(TokenType.ESCAPED_CHAR, following, escape + following, line, column, 2)

    # ------------------------------------------------------------------
    # Quoted strings
    # ------------------------------------------------------------------

    def _scan_quoted_string(self) -> Token:
        line, column = self._line, self._column
        quote = self._advance()
        raw = [quote]
        value = []

        while True:
            ch = self._peek()
            if ch in ("", "\n"):
                raise ScanError(
                    "unterminated quoted string",
                    self._position(line, column),
                    snippet="".join(raw),
                )
            if ch == self.escape_char:
                following = self._peek(1)
                if following == "\n":
                    # Continuation inside quotes joins the physical lines
                    self._advance()
                    self._advance()
                    continue
                if following == "":
                    raise ScanError(
                        "unterminated quoted string",
                        self._position(line, column),
                        snippet="".join(raw),
                    )
                self._advance()
                self._advance()
                raw.append(ch + following)
                value.append(ch + following)
                continue

            self._advance()
            raw.append(ch)
            if ch == quote:
                break
            value.append(ch)

        text = "".join(raw)
        return Token(TokenType.QUOTED_STRING, "".join(value), text, line, column, len(text))

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def _scan_variable(self) -> Token:
        line, column = self._line, self._column
        raw = [self._advance()]

        if self._peek() == "{":
            raw.append(self._advance())
            name = self._consume_while(is_variable_char)
            raw.append(name)
            ch = self._peek()

            if ch == ":" and self._peek(1) in ("-", "+"):
                raw.append(self._advance())
                raw.append(self._advance())
                word = self._consume_while(lambda c: c not in "}\n")
                raw.append(word)
                ch = self._peek()

            if ch in ("", "\n"):
                raise ScanError(
                    "unterminated variable reference",
                    self._position(line, column),
                    snippet="".join(raw),
                )
            if ch != "}":
                raise ScanError(
                    "invalid character in variable name",
                    self._position(),
                    snippet="".join(raw) + ch,
                )
            raw.append(self._advance())
            if not name:
                raise ScanError(
                    "empty variable name",
                    self._position(line, column),
                    snippet="".join(raw),
                )
        else:
            name = self._consume_while(is_variable_char)
            raw.append(name)

        self.variables.add(name)
        text = "".join(raw)
        return Token(TokenType.VARIABLE, name, text, line, column, len(text))

    # ------------------------------------------------------------------
    # JSON arrays
    # ------------------------------------------------------------------

    def _scan_json_array(self) -> Token:
        """
        Scans a bracketed array, tracking nesting and quoted strings so a
        bracket inside a string does not close the array. A newline before the
        closing bracket ends the token and leaves the text to be rejected by
        the parser.
        """
        line, column = self._line, self._column
        buf = []
        depth = 0

        while True:
            ch = self._peek()
            if ch in ("", "\n"):
                break
            if ch == self.escape_char and self._peek(1) == "\n":
                self._advance()
                self._advance()
                continue
            if ch in QUOTES:
                if not self._scan_json_string(buf):
                    break
                continue

            buf.append(self._advance())
            if ch == "[":
                depth += 1
            elif ch == "]":
                depth -= 1
                if depth == 0:
                    break

        text = "".join(buf)
        return Token(TokenType.JSON_ARRAY, text, text, line, column, len(text))

    def _scan_json_string(self, buf: List[str]) -> bool:
        quote = self._advance()
        buf.append(quote)
        while True:
            ch = self._peek()
            if ch in ("", "\n"):
                return False
            if ch == "\\":
                following = self._peek(1)
                if following == "\n":
                    self._advance()
                    self._advance()
                    continue
                if following == "":
                    return False
                buf.append(self._advance())
                buf.append(self._advance())
                continue
            buf.append(self._advance())
            if ch == quote:
                return True

    # ------------------------------------------------------------------
    # Words
    # ------------------------------------------------------------------

    def _is_word_char(self, ch: str) -> bool:
        return not (
            ch in BLANKS
            or ch == "\n"
            or ch in QUOTES
            or ch == "$"
            or ch == self.escape_char
            or ch in PUNCTUATION
            or is_illegal_char(ch)
        )

    def _scan_word(self) -> Token:
        line, column = self._line, self._column
        word = self._advance()
        word += self._consume_while(self._is_word_char)

        if self._line_start:
            self._line_start = False
            if word in KEYWORDS:
                self._instruction = word
                self._expect_first_arg = True
                return Token(KEYWORDS[word], word, word, line, column, len(word))
            return Token(TokenType.STRING, word, word, line, column, len(word))

        if self._instruction == "FROM" and word.upper() == "AS":
            return Token(TokenType.AS, word, word, line, column, len(word))

        if NUMBER_PATTERN.fullmatch(word):
            return Token(TokenType.NUMBER, word, word, line, column, len(word))

        return Token(TokenType.STRING, word, word, line, column, len(word))
