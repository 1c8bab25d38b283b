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
Per-instruction validation turning a logical line of tokens into an
:class:`Instruction`.

Each of the seventeen Dockerfile instructions has its own rule; commands the
parser does not know are rejected. The handler table is checked against
:class:`InstructionKind` when this module is imported, so a kind can not be
added without a rule.
"""
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional

from ..LEXER.lexer import InstructionTokens, Word
from ..LEXER.token import KEYWORDS, TokenType
from ..MODELS.dockerfile_ast import FLAG_SEPARATOR, Heredoc, Instruction, arg_default_flag
from ..MODELS.errors import DockerfileError, ErrorCode, new_instruction_error
from ..MODELS.position import Position, Range
from ..UTILS.key_value import parse_env_declarations, parse_key_value_pairs

PORT_PATTERN = re.compile(r"[0-9]+")
ARG_NAME_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

PORT_PROTOCOLS = ("tcp", "udp")

RUN_FLAGS = frozenset({"mount", "network", "security"})
COPY_FLAGS = frozenset({"chown", "chmod", "from", "link", "parents", "exclude"})
ADD_FLAGS = frozenset({"chown", "chmod", "from", "link", "checksum", "keep-git-dir"})
HEALTHCHECK_FLAGS = frozenset({"interval", "timeout", "start-period", "start-interval", "retries"})

# Instructions ONBUILD may never trigger
FORBIDDEN_TRIGGERS = ("FROM", "MAINTAINER")


class InstructionKind(str, Enum):
    """
    The closed set of instruction kinds, plus a catch-all for unknown commands.
    """
    FROM = "FROM"
    RUN = "RUN"
    CMD = "CMD"
    LABEL = "LABEL"
    EXPOSE = "EXPOSE"
    ENV = "ENV"
    ADD = "ADD"
    COPY = "COPY"
    ENTRYPOINT = "ENTRYPOINT"
    VOLUME = "VOLUME"
    USER = "USER"
    WORKDIR = "WORKDIR"
    ARG = "ARG"
    ONBUILD = "ONBUILD"
    STOPSIGNAL = "STOPSIGNAL"
    HEALTHCHECK = "HEALTHCHECK"
    SHELL = "SHELL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_command(cls, command: str) -> "InstructionKind":
        try:
            kind = cls(command)
        except ValueError:
            return cls.UNKNOWN
        return kind


@dataclass
class _Draft:
    """Mutable scratch state for one instruction; frozen into an Instruction at the end."""
    tokens: InstructionTokens
    start: Position
    args: List[str] = field(default_factory=list)
    flags: Dict[str, str] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)
    heredocs: List[Heredoc] = field(default_factory=list)
    json_form: bool = False

    @property
    def command(self) -> str:
        return self.tokens.command


def _default_locate(line: int, column: int) -> Position:
    return Position(line=line, column=column)


class InstructionParser:
    """
    Validates instruction token groups.

    :param escape_char: The Dockerfile escape character.
    :param validate: When False the per-kind rules are skipped and the
        argument text (or decoded JSON array) is kept as-is.
    :param include_comments: When False ``Instruction.comment`` is empty.
    :param locate: Maps a 1-based line/column to a :class:`Position`; lets the
        caller add file paths and offsets.
    """

    def __init__(
        self,
        escape_char: str = "\\",
        validate: bool = True,
        include_comments: bool = True,
        locate: Optional[Callable[[int, int], Position]] = None,
    ):
        self.escape_char = escape_char
        self.validate = validate
        self.include_comments = include_comments
        self.locate = locate or _default_locate

    def parse_instruction(self, tokens: InstructionTokens, stage_ref: Optional[int] = None) -> Instruction:
        """
        Parses one logical line.

        :param tokens: The grouped tokens produced by the lexer.
        :param stage_ref: Index of the owning stage, None before the first FROM.
        :return: The validated instruction.
        :raises DockerfileError: SyntaxError for malformed JSON arrays,
            InstructionError for rule violations.
        """
        draft = _Draft(
            tokens=tokens,
            start=self.locate(tokens.instruction.line, tokens.instruction.column),
        )

        if self.validate:
            handler = getattr(self, HANDLERS[InstructionKind.from_command(tokens.command)])
            handler(draft)
        else:
            self._parse_unvalidated(draft)

        return Instruction(
            command=tokens.command,
            args=draft.args,
            flags=draft.flags,
            range=Range(start=draft.start, end=self._end_position(tokens)),
            raw=tokens.arguments_as_string(),
            comment=self._comment_text(tokens),
            is_json_form=draft.json_form,
            stage_ref=stage_ref,
            heredoc=draft.heredocs[0] if draft.heredocs else None,
            heredocs=draft.heredocs,
            dependencies=draft.dependencies,
        )

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _end_position(self, tokens: InstructionTokens) -> Position:
        significant = [t for t in tokens.raw if t.type != TokenType.NEWLINE]
        last = significant[-1] if significant else tokens.instruction
        return self.locate(last.line, last.column + last.length)

    def _comment_text(self, tokens: InstructionTokens) -> str:
        if not self.include_comments:
            return ""
        return "\n".join(t.value.lstrip("#").strip() for t in tokens.comments)

    def _error(self, draft: _Draft, message: str, word: Optional[Word] = None) -> DockerfileError:
        position = draft.start
        if word is not None:
            position = self.locate(word.first.line, word.first.column)
        return new_instruction_error(position, draft.command, message)

    def _require_text(self, draft: _Draft, what: str) -> str:
        text = draft.tokens.arguments_as_string()
        if not text:
            raise self._error(draft, f"requires {what}")
        return text

    def _decode_json_array(self, draft: _Draft, text: str) -> List[str]:
        """
        Decodes a JSON array of strings. Malformed literals are syntax
        errors, not instruction errors.
        """
        try:
            values = json.loads(text)
        except json.JSONDecodeError as e:
            raise DockerfileError(
                ErrorCode.SYNTAX,
                f"Invalid JSON array: {e.msg}",
                position=draft.start,
                snippet=text,
                cause=e,
            ) from e
        except RecursionError as e:
            raise DockerfileError(
                ErrorCode.SYNTAX,
                "Invalid JSON array: nested too deeply",
                position=draft.start,
                snippet=text[:80],
                cause=e,
            ) from e
        if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
            raise DockerfileError(
                ErrorCode.SYNTAX,
                "Invalid JSON array: only arrays of strings are allowed",
                position=draft.start,
                snippet=text,
            )
        return values

    def _parse_json_form(self, draft: _Draft) -> None:
        draft.args = self._decode_json_array(draft, draft.tokens.arguments_as_string())
        draft.json_form = True

    def _attach_heredocs(self, draft: _Draft) -> None:
        """
        Pairs each heredoc opener with its body. Bodies follow the line in
        the order their openers appear.
        """
        heredoc_tokens = draft.tokens.heredoc_tokens()
        openers = [t for t in heredoc_tokens if t.type == TokenType.HEREDOC_START]
        contents = [t for t in heredoc_tokens if t.type == TokenType.HEREDOC_CONTENT]
        terminators = [t for t in heredoc_tokens if t.type == TokenType.HEREDOC_END]

        for i, opener in enumerate(openers):
            content = contents[i] if i < len(contents) else None
            terminator = terminators[i] if i < len(terminators) else None

            end = self.locate(opener.line, opener.column + opener.length)
            if terminator is not None:
                end = self.locate(terminator.line, terminator.column + terminator.length)

            draft.heredocs.append(Heredoc(
                identifier=opener.value,
                delimiter=opener.value,
                content=content.value if content is not None else "",
                range=Range(start=self.locate(opener.line, opener.column), end=end),
                strip_leading_tabs=opener.raw[2:3] in ("-", "~"),
            ))

    def _take_flag(self, draft: _Draft, word: Word, allowed_flags: frozenset) -> str:
        """
        Records a leading ``--name[=value]`` word; repeated flags keep every value.
        """
        name, _, value = word.text[2:].partition("=")
        if name not in allowed_flags:
            raise self._error(draft, f"unknown flag --{name}", word)
        if name in draft.flags:
            draft.flags[name] = f"{draft.flags[name]}{FLAG_SEPARATOR}{value}"
        else:
            draft.flags[name] = value
        return name

    def _parse_unvalidated(self, draft: _Draft) -> None:
        text = draft.tokens.arguments_as_string()
        draft.args = [text] if text else []
        if draft.tokens.json_form:
            try:
                draft.args = self._decode_json_array(draft, text)
                draft.json_form = True
            except DockerfileError:
                draft.json_form = False
        self._attach_heredocs(draft)

    # ------------------------------------------------------------------
    # Instruction rules
    # ------------------------------------------------------------------

    def _parse_from(self, draft: _Draft) -> None:
        words = draft.tokens.words()
        if not words:
            raise self._error(draft, "requires a base image")

        base_image = ""
        i = 0
        while i < len(words):
            word = words[i]
            if word.first.type == TokenType.AS:
                if i + 1 >= len(words):
                    raise self._error(draft, "AS requires a stage name", word)
                draft.flags["stage"] = words[i + 1].text
                i += 2
                continue
            if word.text.startswith("--"):
                name, _, value = word.text[2:].partition("=")
                if name != "platform":
                    raise self._error(draft, f"unknown flag --{name}", word)
                if not value:
                    raise self._error(draft, "--platform requires a value", word)
                draft.flags["platform"] = value
            elif not base_image:
                base_image = word.text
            i += 1

        if not base_image:
            raise self._error(draft, "requires a base image")
        draft.args = [base_image]

    def _parse_run(self, draft: _Draft) -> None:
        if draft.tokens.json_form:
            self._parse_json_form(draft)
            self._attach_heredocs(draft)
            return

        words = draft.tokens.words()
        i = 0
        while i < len(words) and words[i].text.startswith("--"):
            name = self._take_flag(draft, words[i], RUN_FLAGS)
            if not words[i].text.partition("=")[2]:
                raise self._error(draft, f"--{name} requires a value", words[i])
            i += 1

        command = " ".join(word.text for word in words[i:])
        if not command:
            raise self._error(draft, "requires a command")
        if command.startswith("["):
            draft.args = self._decode_json_array(draft, command)
            draft.json_form = True
        else:
            draft.args = [command]
        self._attach_heredocs(draft)

    def _parse_cmd(self, draft: _Draft) -> None:
        if draft.tokens.json_form:
            self._parse_json_form(draft)
            return
        draft.args = [self._require_text(draft, "a command")]

    def _parse_entrypoint(self, draft: _Draft) -> None:
        self._parse_cmd(draft)

    def _parse_label(self, draft: _Draft) -> None:
        text = self._require_text(draft, "at least one key=value pair")
        for key, value, has_equals in parse_key_value_pairs(text, self.escape_char):
            if not key or not has_equals:
                raise self._error(draft, f"expected key=value, got {key!r}")
            draft.args.append(f"{key}={value}")

    def _parse_env(self, draft: _Draft) -> None:
        text = self._require_text(draft, "at least one variable")
        for key, value, has_equals in parse_env_declarations(text, self.escape_char):
            if not key:
                raise self._error(draft, "variable name is empty")
            if not has_equals:
                raise self._error(draft, f"{key} requires a value")
            draft.args.append(f"{key}={value}")

    def _parse_expose(self, draft: _Draft) -> None:
        words = draft.tokens.words()
        if not words:
            raise self._error(draft, "requires at least one port")

        for word in words:
            if word.has_variable():
                draft.args.append(word.text)
                continue
            port, slash, protocol = word.text.partition("/")
            if slash and protocol.lower() not in PORT_PROTOCOLS:
                raise self._error(draft, f"invalid protocol {protocol!r}, expected tcp or udp", word)
            if not PORT_PATTERN.fullmatch(port):
                raise self._error(draft, f"invalid port number {port!r}", word)
            draft.args.append(word.text)

    def _parse_copy(self, draft: _Draft) -> None:
        self._parse_file_transfer(draft, COPY_FLAGS)

    def _parse_add(self, draft: _Draft) -> None:
        self._parse_file_transfer(draft, ADD_FLAGS)

    def _parse_file_transfer(self, draft: _Draft, allowed_flags: frozenset) -> None:
        words = draft.tokens.words()
        positional: List[Word] = []

        for word in words:
            if positional or not word.text.startswith("--"):
                positional.append(word)
                continue
            name, _, value = word.text[2:].partition("=")
            if name == "from" and name in allowed_flags:
                if draft.command == "ADD":
                    raise self._error(draft, "--from is not supported, use COPY --from", word)
                if not value:
                    raise self._error(draft, "--from requires a stage name or image", word)
                draft.dependencies.append(value)
            self._take_flag(draft, word, allowed_flags)

        rest = " ".join(word.text for word in positional)
        if rest.startswith("["):
            draft.args = self._decode_json_array(draft, rest)
            draft.json_form = True
        else:
            draft.args = [word.text for word in positional]

        if len(draft.args) < 2:
            raise self._error(draft, "requires at least one source and a destination")
        self._attach_heredocs(draft)

    def _parse_volume(self, draft: _Draft) -> None:
        if draft.tokens.json_form:
            self._parse_json_form(draft)
        else:
            draft.args = [word.text for word in draft.tokens.words()]
        if not draft.args:
            raise self._error(draft, "requires at least one mount point")

    def _parse_user(self, draft: _Draft) -> None:
        draft.args = [self._require_text(draft, "a user name")]

    def _parse_workdir(self, draft: _Draft) -> None:
        draft.args = [self._require_text(draft, "a directory")]

    def _parse_arg(self, draft: _Draft) -> None:
        text = self._require_text(draft, "a name")
        for name, default, has_default in parse_key_value_pairs(text, self.escape_char):
            if not ARG_NAME_PATTERN.fullmatch(name):
                raise DockerfileError(
                    ErrorCode.VARIABLE,
                    f"invalid ARG name {name!r}",
                    position=draft.start,
                    snippet=text,
                )
            if has_default:
                draft.flags[arg_default_flag(len(draft.args), name)] = default
            draft.args.append(name)

    def _parse_onbuild(self, draft: _Draft) -> None:
        text = self._require_text(draft, "a trigger instruction")
        trigger = draft.tokens.words()[0].text
        if trigger == "ONBUILD":
            raise self._error(draft, "chaining ONBUILD via ONBUILD ONBUILD is not allowed")
        if trigger in FORBIDDEN_TRIGGERS:
            raise self._error(draft, f"{trigger} is not allowed as an ONBUILD trigger")
        if trigger not in KEYWORDS:
            raise self._error(draft, f"unknown trigger instruction {trigger}")
        draft.args = [text]

    def _parse_stopsignal(self, draft: _Draft) -> None:
        signal = self._require_text(draft, "a signal")
        words = draft.tokens.words()
        if not (PORT_PATTERN.fullmatch(signal) or signal.startswith("SIG") or words[0].has_variable()):
            raise self._error(draft, f"invalid signal {signal!r}, expected a number or a SIG name")
        draft.args = [signal]

    def _parse_healthcheck(self, draft: _Draft) -> None:
        words = draft.tokens.words()
        if not words:
            raise self._error(draft, "requires CMD or NONE")

        if words[0].text == "NONE":
            if len(words) > 1:
                raise self._error(draft, "NONE takes no arguments", words[1])
            draft.args = ["NONE"]
            return

        i = 0
        while i < len(words):
            word = words[i]
            if word.text.startswith("--"):
                name, equals, value = word.text[2:].partition("=")
                if name not in HEALTHCHECK_FLAGS:
                    raise self._error(draft, f"unknown flag --{name}", word)
                if not equals:
                    if i + 1 >= len(words):
                        raise self._error(draft, f"--{name} requires a value", word)
                    i += 1
                    value = words[i].text
                draft.flags[name] = value
                i += 1
                continue

            if word.text == "CMD":
                command = " ".join(w.text for w in words[i + 1:])
                if not command:
                    raise self._error(draft, "CMD requires a command", word)
                draft.args = ["CMD", command]
                return

            raise self._error(draft, f"unexpected argument {word.text!r}, expected CMD", word)

        raise self._error(draft, "requires CMD or NONE")

    def _parse_shell(self, draft: _Draft) -> None:
        if not draft.tokens.json_form:
            raise self._error(draft, "requires the JSON array form")
        self._parse_json_form(draft)
        if not draft.args:
            raise self._error(draft, "requires at least one element")

    def _parse_unknown(self, draft: _Draft) -> None:
        raise DockerfileError(
            ErrorCode.INSTRUCTION,
            f"unknown instruction: {draft.command}",
            position=draft.start,
            snippet=draft.command,
        )


HANDLERS: Mapping[InstructionKind, str] = MappingProxyType({
    kind: f"_parse_{kind.value.lower()}" for kind in InstructionKind
})

_missing = [name for name in HANDLERS.values() if not hasattr(InstructionParser, name)]
if _missing:
    raise RuntimeError(f"instruction kinds without a rule: {', '.join(_missing)}")
