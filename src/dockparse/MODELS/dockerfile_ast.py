"""
Models for the parsed Dockerfile: stages, instructions, variables and diagnostics.
"""
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import DockerfileError
from .position import Position, Range


class VariableKind(str, Enum):
    """
    The instruction that declared a variable.
    """
    ARG = "ARG"
    ENV = "ENV"


class VariableScope(str, Enum):
    """
    Visibility of a declared variable.
    """
    GLOBAL = "global"   # declared before the first FROM
    STAGE = "stage"     # declared inside a stage body
    BUILD = "build"     # in-stage ARG re-importing a global build argument


class WarnLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Heredoc(BaseModel):
    """
    An inline here-document attached to an instruction.
    """
    model_config = ConfigDict(frozen=True)

    identifier: str
    delimiter: str
    content: str = ""
    range: Range = Field(default_factory=Range)
    strip_leading_tabs: bool = False


class FlatInstruction(BaseModel):
    """
    Command plus argument list, the shape consumed by the optimizer.
    Flags are folded back into ``args`` as ``--name=value``.
    """
    command: str
    args: List[str] = []
    is_json_form: bool = False
    heredoc: Optional[Heredoc] = None
    heredocs: List[Heredoc] = []

    def all_heredocs(self) -> List[Heredoc]:
        if self.heredocs:
            return list(self.heredocs)
        return [self.heredoc] if self.heredoc is not None else []

    def render_args(self) -> str:
        if self.is_json_form:
            return json.dumps(self.args)
        return " ".join(self.args)


# Joins the values of a flag given more than once (--mount, --exclude)
FLAG_SEPARATOR = "\n"

# Characters that force a key=value pair into double quotes
QUOTED_VALUE_CHARS = " \t\"'"


def _render_flag(name: str, value: str) -> str:
    if value == "":
        return f"--{name}"
    return f"--{name}={value}"


def _quote_pair(pair: str, escape_char: str = "\\") -> str:
    key, sep, value = pair.partition("=")
    if not sep:
        return pair
    if value and not any(c in value for c in QUOTED_VALUE_CHARS + escape_char):
        return pair
    value = value.replace(escape_char, escape_char * 2).replace('"', escape_char + '"')
    return f'{key}="{value}"'


def arg_default_flag(index: int, name: str) -> str:
    """
    Flag key holding the default of the ``index``-th name of an ARG line.
    The first declaration uses ``default``, later ones ``default:NAME``.
    """
    return "default" if index == 0 else f"default:{name}"


class Instruction(BaseModel):
    """
    Represents a single validated instruction in a Dockerfile.
    """
    model_config = ConfigDict(frozen=True)

    command: str
    args: List[str] = []
    flags: Dict[str, str] = {}
    range: Range = Field(default_factory=Range)
    raw: str = ""
    comment: str = ""
    is_json_form: bool = False
    stage_ref: Optional[int] = None
    heredoc: Optional[Heredoc] = None
    heredocs: List[Heredoc] = []
    dependencies: List[str] = []

    def has_flag(self, name: str) -> bool:
        return name in self.flags

    def get_flag(self, name: str) -> str:
        return self.flags.get(name, "")

    def get_flag_values(self, name: str) -> List[str]:
        """Every value of a flag, one per occurrence on the line."""
        if name not in self.flags:
            return []
        return self.flags[name].split(FLAG_SEPARATOR)

    def is_multiline(self) -> bool:
        return self.range.end.line > self.range.start.line

    def to_flat(self, escape_char: str = "\\") -> FlatInstruction:
        """
        Rebuilds the command/argument shape of this instruction, without
        re-parsing its source text.

        :param escape_char: Escape character used when a value has to be quoted.
        """
        args: List[str] = []
        if self.command == "FROM":
            if "platform" in self.flags:
                args.append(_render_flag("platform", self.flags["platform"]))
            args.extend(self.args)
            if "stage" in self.flags:
                args.extend(["AS", self.flags["stage"]])
        elif self.command == "ARG":
            for i, name in enumerate(self.args):
                key = arg_default_flag(i, name)
                if key in self.flags:
                    args.append(_quote_pair(f"{name}={self.flags[key]}", escape_char))
                else:
                    args.append(name)
        elif self.command in ("ENV", "LABEL"):
            args.extend(_quote_pair(pair, escape_char) for pair in self.args)
        else:
            for name in self.flags:
                args.extend(_render_flag(name, value) for value in self.get_flag_values(name))
            args.extend(self.args)

        if self.is_json_form and len(args) != len(self.args):
            # Flags in front of a JSON array cannot be expressed in one list
            args = [arg for arg in args if arg.startswith("--")] + [json.dumps(self.args)]
            return FlatInstruction(
                command=self.command, args=args, heredoc=self.heredoc, heredocs=self.heredocs)

        return FlatInstruction(
            command=self.command,
            args=args,
            is_json_form=self.is_json_form,
            heredoc=self.heredoc,
            heredocs=self.heredocs,
        )


class Variable(BaseModel):
    """
    An ARG or ENV declaration. ``stage_ref`` is None exactly when the
    variable is global.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    value: str = ""
    default: Optional[str] = None
    position: Position = Field(default_factory=Position)
    stage_ref: Optional[int] = None
    kind: VariableKind
    scope: VariableScope = VariableScope.GLOBAL


class Stage(BaseModel):
    """
    One FROM segment of a (multi-stage) build with its instructions.
    """
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    index: int
    base_image: str = ""
    base_stage_ref: Optional[int] = None
    instructions: List[Instruction] = []
    range: Range = Field(default_factory=Range)
    aliases: List[str] = []
    variables: Dict[str, Variable] = {}
    platform: Optional[str] = None

    def last_instruction(self) -> Optional[Instruction]:
        if not self.instructions:
            return None
        return self.instructions[-1]

    def matches(self, reference: str) -> bool:
        """True when ``reference`` names this stage or its index."""
        return reference.lower() in self.aliases


class ParseWarning(BaseModel):
    """
    A non-fatal issue found while parsing.
    """
    level: WarnLevel = WarnLevel.LOW
    message: str
    position: Position = Field(default_factory=Position)
    context: str = ""


class ParseOptions(BaseModel):
    """
    Caller-supplied switches for optional parser behaviour.
    """
    include_comments: bool = True
    validate_instructions: bool = True
    follow_symlinks: bool = True
    allow_env_var_expansion: bool = False
    default_platform: Optional[str] = None
    build_context: Optional[str] = None
    target_stage: Optional[str] = None


class Metadata(BaseModel):
    """
    Facts about the parse itself.
    """
    parse_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    filename: Optional[str] = None
    size: int = 0
    base_images: List[str] = []
    stage_count: int = 0
    directives: Dict[str, str] = {}
    referenced_variables: List[str] = []
    layer_count: int = 0


class ParsedDockerfile(BaseModel):
    """
    The complete result of parsing a Dockerfile: a best-effort document plus
    every diagnostic collected along the way.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    stages: List[Stage] = []
    global_instructions: List[Instruction] = []
    global_args: Dict[str, Variable] = {}
    global_env: Dict[str, Variable] = {}
    raw: str = ""
    metadata: Metadata = Field(default_factory=Metadata)
    errors: List[DockerfileError] = []
    warnings: List[ParseWarning] = []
    escape_char: str = "\\"
    parse_options: ParseOptions = Field(default_factory=ParseOptions)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def all_instructions(self) -> List[Instruction]:
        """
        Every parsed instruction in source order: global ARGs first, then
        each stage's instructions.
        """
        instructions = list(self.global_instructions)
        for stage in self.stages:
            instructions.extend(stage.instructions)
        return instructions

    def flat_instructions(self) -> List[FlatInstruction]:
        return [inst.to_flat(self.escape_char) for inst in self.all_instructions()]

    def get_stage(self, reference: Union[str, int]) -> Optional[Stage]:
        for stage in self.stages:
            if stage.matches(str(reference)):
                return stage
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"errors", "raw"})
        data["errors"] = [err.to_dict() for err in self.errors]
        return data
