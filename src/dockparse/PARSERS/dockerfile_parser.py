"""
Parser for Dockerfiles, assembling stages, instructions and variables.
"""
import logging
import os
import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from ..ANALYZERS.stage_analyzer import (
    GLOBAL_STAGE, StageInfo, VariableInfo, detect_stages, detect_variables, stage_index_for_line,
)
from ..LEXER.lexer import InstructionTokens, Lexer
from ..LEXER.token import instruction_impact
from ..MODELS.dockerfile_ast import (
    Instruction, Metadata, ParsedDockerfile, ParseOptions, ParseWarning, Stage, Variable,
    VariableKind, VariableScope, WarnLevel,
)
from ..MODELS.errors import (
    MSG_BEFORE_FROM, MSG_CIRCULAR_STAGE, MSG_DUPLICATE_STAGE, MSG_EMPTY_DOCKERFILE,
    MSG_MISSING_STAGE, MSG_NO_FROM, DockerfileError, ErrorCode, ErrorCollector,
    new_reference_error, new_stage_error,
)
from ..MODELS.position import Position, Range
from ..UTILS.string_interpolation import EnvironmentInterpolator
from .instruction_parser import InstructionParser

logger = logging.getLogger("dockparse.parser")

DIRECTIVE_PATTERN = re.compile(r"#\s*([A-Za-z][A-Za-z0-9_-]*)\s*=\s*(.*?)\s*$")
KNOWN_DIRECTIVES = ("syntax", "escape", "check")
ESCAPE_CHARS = ("\\", "`")

PORT_NUMBER = re.compile(r"[0-9]+")
MIN_PORT = 1
MAX_PORT = 65535

# Only the last of each of these takes effect in a stage
SINGLETON_INSTRUCTIONS = ("CMD", "ENTRYPOINT", "HEALTHCHECK")


def read_directives(content: str) -> Tuple[Dict[str, str], Set[int]]:
    """
    Reads parser directives from the leading comment block.

    The block ends at the first line that is not a known directive, and a
    directive may not repeat.

    :param content: Dockerfile text.
    :return: The directives by lower-case name and the lines holding them.
    """
    directives: Dict[str, str] = {}
    lines: Set[int] = set()
    for number, line in enumerate(content.split("\n"), start=1):
        match = DIRECTIVE_PATTERN.match(line.strip())
        if not match:
            break
        name = match.group(1).lower()
        if name not in KNOWN_DIRECTIVES or name in directives:
            break
        directives[name] = match.group(2)
        lines.add(number)
    return directives, lines


def make_locator(content: str, file_path: Optional[str] = None) -> Callable[[int, int], Position]:
    """
    Builds a function mapping 1-based line/column pairs to positions that
    carry the file path and the character offset.
    """
    line_starts = [0] + [match.end() for match in re.finditer("\n", content)]

    def locate(line: int, column: int) -> Position:
        offset = 0
        if 1 <= line <= len(line_starts):
            offset = line_starts[line - 1] + max(column - 1, 0)
        return Position(line=line, column=column, offset=offset, file_path=file_path)

    return locate


class DockerfileParser:
    """
    Parser for Dockerfiles.

    A parser only holds its options; every call builds its own lexer and
    analysis state, so one instance may parse any number of files.
    """

    def __init__(self, options: Optional[ParseOptions] = None):
        self.options = options or ParseOptions()

    def parse(self, dockerfile_path: str) -> ParsedDockerfile:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile, relative paths are
                resolved against ``build_context`` when it is set.

        Returns:
            ParsedDockerfile: The parsed document and its diagnostics.

        Raises:
            DockerfileError: With code IO when the file can not be read.
        """
        path = dockerfile_path
        if self.options.build_context and not os.path.isabs(path):
            path = os.path.join(self.options.build_context, path)

        if not self.options.follow_symlinks and os.path.islink(path):
            raise DockerfileError(
                ErrorCode.IO,
                f"refusing to follow symbolic link {path}",
                position=Position(file_path=path),
            )

        try:
            with open(path, 'r', encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise DockerfileError(
                ErrorCode.IO,
                f"cannot read {path}: {getattr(e, 'strerror', None) or e}",
                position=Position(file_path=path),
                cause=e,
            ) from e

        return self.parse_from_string(content, file_path=path)

    def parse_from_string(self, content: str, file_path: Optional[str] = None) -> ParsedDockerfile:
        """
        Parses a Dockerfile from a string content.

        Args:
            content (str): Content of the Dockerfile.
            file_path (str, optional): Source path recorded in positions and metadata.

        Returns:
            ParsedDockerfile: The best-effort document; problems are reported
            in ``errors`` and ``warnings`` rather than raised.
        """
        started = datetime.now(timezone.utc)
        content = content.replace("\r\n", "\n")
        document = _DocumentBuilder(content, file_path, self.options).build()
        document.metadata.parse_time = started
        logger.debug(
            "parsed %s: %d stages, %d instructions, %d errors, %d warnings",
            file_path or "<string>", len(document.stages), len(document.all_instructions()),
            len(document.errors), len(document.warnings),
        )
        return document


class _DocumentBuilder:
    """
    State for a single parse call.
    """

    def __init__(self, content: str, file_path: Optional[str], options: ParseOptions):
        self.content = content
        self.file_path = file_path
        self.options = options
        self.locate = make_locator(content, file_path)
        self.collector = ErrorCollector()
        self.warnings: List[ParseWarning] = []
        self.directives, self.directive_lines = read_directives(content)
        self.escape_char = self._escape_char()

    def _escape_char(self) -> str:
        escape = self.directives.get("escape", "\\")
        if escape not in ESCAPE_CHARS:
            line = min(self.directive_lines) if self.directive_lines else 1
            self.collector.add(DockerfileError(
                ErrorCode.VALIDATION,
                f"invalid escape directive {escape!r}, must be \\ or `",
                position=self.locate(line, 1),
            ))
            return "\\"
        return escape

    def _warn(self, level: WarnLevel, message: str, instruction: Instruction) -> None:
        self.warnings.append(ParseWarning(
            level=level,
            message=message,
            position=instruction.range.start,
            context=f"{instruction.command} {instruction.raw}".strip(),
        ))

    def build(self) -> ParsedDockerfile:
        lexer = Lexer(self.content, self.escape_char)
        groups, lex_errors = lexer.process_all_instructions()

        stage_infos = detect_stages(groups)
        variable_infos = detect_variables(groups, stage_infos, self.escape_char)

        for err in lex_errors:
            err.position = self.locate(err.position.line, err.position.column)
            index = stage_index_for_line(stage_infos, err.position.line)
            if index != GLOBAL_STAGE and not err.stage:
                err.stage = stage_infos[index].name or None
        self.collector.extend(lex_errors)

        inst_parser = InstructionParser(
            escape_char=self.escape_char,
            validate=self.options.validate_instructions,
            include_comments=self.options.include_comments,
            locate=self.locate,
        )

        global_instructions: List[Instruction] = []
        stage_instructions: List[List[Instruction]] = [[] for _ in stage_infos]
        parsed_lines: Set[int] = set()
        global_values: Dict[str, str] = {}
        stage_values: Dict[str, str] = {}
        stage_index = GLOBAL_STAGE

        for group in groups:
            if group.command == "FROM":
                stage_index += 1
                stage_values = {}
                self.collector.stage = stage_infos[stage_index].name or None
            group.comments = [c for c in group.comments if c.line not in self.directive_lines]

            if stage_index == GLOBAL_STAGE and group.command != "ARG":
                self.collector.add(new_stage_error(
                    None,
                    self.locate(group.instruction.line, group.instruction.column),
                    f"{MSG_BEFORE_FROM}, found {group.command}",
                ))
                continue

            stage_ref = None if stage_index == GLOBAL_STAGE else stage_index
            try:
                instruction = inst_parser.parse_instruction(group, stage_ref=stage_ref)
            except DockerfileError as err:
                self.collector.add(err)
                continue

            if self.options.allow_env_var_expansion:
                scope = global_values if group.command == "FROM" or stage_ref is None else stage_values
                instruction = self._expand(instruction, scope)

            parsed_lines.add(group.line)
            self._record_values(group, variable_infos, global_values, stage_values)

            if stage_ref is None:
                global_instructions.append(instruction)
            else:
                stage_instructions[stage_ref].append(instruction)

        self.collector.stage = None

        variables = [info for info in variable_infos if info.line in parsed_lines]
        global_args, stage_variables = self._build_variables(variables)
        stages = self._build_stages(stage_infos, stage_instructions, stage_variables)

        self._validate_document(groups, stages)
        self._collect_warnings(stages)

        return ParsedDockerfile(
            stages=stages,
            global_instructions=global_instructions,
            global_args=global_args,
            global_env={},
            raw=self.content,
            metadata=Metadata(
                filename=self.file_path,
                size=len(self.content),
                base_images=[stage.base_image for stage in stages],
                stage_count=len(stages),
                directives=dict(self.directives),
                referenced_variables=sorted(lexer.variables),
                layer_count=sum(
                    1 for stage in stages for inst in stage.instructions
                    if instruction_impact(inst.command).layer_creating
                ),
            ),
            errors=sorted(self.collector.errors, key=lambda e: (e.position.line, e.position.column)),
            warnings=self.warnings,
            escape_char=self.escape_char,
            parse_options=self.options,
        )

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def _expand(self, instruction: Instruction, scope: Dict[str, str]) -> Instruction:
        if not scope:
            return instruction
        args = [
            EnvironmentInterpolator.interpolate(arg, scope, strict=False, escape_char=self.escape_char)
            for arg in instruction.args
        ]
        return instruction.model_copy(update={"args": args})

    def _record_values(
        self,
        group: InstructionTokens,
        variable_infos: List[VariableInfo],
        global_values: Dict[str, str],
        stage_values: Dict[str, str],
    ) -> None:
        """
        Adds the values declared on ``group``'s line to the expansion scope.
        """
        if group.command not in ("ARG", "ENV"):
            return
        for info in variable_infos:
            if info.line != group.line:
                continue
            scope = global_values if info.stage_index == GLOBAL_STAGE else stage_values
            if info.has_value:
                scope[info.name] = EnvironmentInterpolator.interpolate(
                    info.value, scope, strict=False, escape_char=self.escape_char)
            elif info.kind == "ARG" and info.stage_index != GLOBAL_STAGE and info.name in global_values:
                scope[info.name] = global_values[info.name]

    def _build_variables(
        self,
        infos: List[VariableInfo],
    ) -> Tuple[Dict[str, Variable], Dict[int, Dict[str, Variable]]]:
        global_args: Dict[str, Variable] = {}
        stage_variables: Dict[int, Dict[str, Variable]] = {}

        for info in infos:
            kind = VariableKind(info.kind)
            is_global = info.stage_index == GLOBAL_STAGE
            value = info.value if info.has_value else ""
            if is_global:
                scope = VariableScope.GLOBAL
            elif kind == VariableKind.ARG and not info.has_value and info.name in global_args:
                scope = VariableScope.BUILD
                value = global_args[info.name].value
            else:
                scope = VariableScope.STAGE

            variable = Variable(
                name=info.name,
                value=value,
                default=info.value if kind == VariableKind.ARG and info.has_value else None,
                position=self.locate(info.line, info.column),
                stage_ref=None if is_global else info.stage_index,
                kind=kind,
                scope=scope,
            )
            if is_global:
                global_args[info.name] = variable
            else:
                stage_variables.setdefault(info.stage_index, {})[info.name] = variable

        return global_args, stage_variables

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _build_stages(
        self,
        stage_infos: List[StageInfo],
        stage_instructions: List[List[Instruction]],
        stage_variables: Dict[int, Dict[str, Variable]],
    ) -> List[Stage]:
        stages: List[Stage] = []
        for info, instructions in zip(stage_infos, stage_instructions):
            from_inst = instructions[0] if instructions and instructions[0].command == "FROM" else None
            base_image = info.base_image
            if from_inst is not None and self.options.validate_instructions:
                base_image = from_inst.args[0]
            platform = self.options.default_platform
            if from_inst is not None and from_inst.has_flag("platform"):
                platform = from_inst.get_flag("platform")

            start = from_inst.range.start if from_inst is not None else self.locate(info.start_line, 1)
            end = instructions[-1].range.end if instructions else start

            aliases = [str(info.index)]
            if info.name:
                aliases.insert(0, info.name.lower())

            base_stage_ref = next(
                (s.index for s in stages if s.name and s.name.lower() == base_image.lower()), None)

            stages.append(Stage(
                name=info.name or None,
                index=info.index,
                base_image=base_image,
                base_stage_ref=base_stage_ref,
                instructions=instructions,
                range=Range(start=start, end=end),
                aliases=aliases,
                variables=stage_variables.get(info.index, {}),
                platform=platform,
            ))
        return stages

    # ------------------------------------------------------------------
    # Document-level checks
    # ------------------------------------------------------------------

    def _validate_document(self, groups: List[InstructionTokens], stages: List[Stage]) -> None:
        if not self.content.strip():
            self.collector.add(DockerfileError(
                ErrorCode.VALIDATION, MSG_EMPTY_DOCKERFILE, position=self.locate(1, 1)))
            return
        if not stages:
            self.collector.add(DockerfileError(
                ErrorCode.VALIDATION, MSG_NO_FROM, position=self.locate(1, 1)))
            return

        seen: Dict[str, Stage] = {}
        for stage in stages:
            if not stage.name:
                continue
            key = stage.name.lower()
            if key in seen:
                self.collector.add(new_stage_error(
                    stage.name,
                    stage.range.start,
                    f"{MSG_DUPLICATE_STAGE} {stage.name!r}, first defined at line {seen[key].range.start.line}",
                ))
            else:
                seen[key] = stage

        for stage in stages:
            for instruction in stage.instructions:
                for dependency in instruction.dependencies:
                    self._check_reference(stage, instruction, dependency, stages)

        target = self.options.target_stage
        if target and not any(stage.matches(target) for stage in stages):
            self.collector.add(new_stage_error(
                target, self.locate(1, 1), f"{MSG_MISSING_STAGE}: target stage {target!r}"))

    def _check_reference(self, stage: Stage, instruction: Instruction, reference: str,
                         stages: List[Stage]) -> None:
        if "$" in reference:
            return
        target = next((s for s in stages if s.matches(reference)), None)
        if target is None:
            self._warn(
                WarnLevel.LOW,
                f"--from={reference} does not name a build stage, treating it as an image",
                instruction,
            )
            return
        if target.index == stage.index:
            message = MSG_CIRCULAR_STAGE
        elif target.index > stage.index:
            message = f"--from={reference} refers to a later stage"
        else:
            return
        self.collector.add(new_reference_error(stage.name, instruction.range.start, message))

    def _collect_warnings(self, stages: List[Stage]) -> None:
        for stage in stages:
            seen: Set[str] = set()
            for instruction in stage.instructions:
                if instruction.command in SINGLETON_INSTRUCTIONS:
                    if instruction.command in seen:
                        self._warn(
                            WarnLevel.MEDIUM,
                            f"multiple {instruction.command} instructions in stage, only the last takes effect",
                            instruction,
                        )
                    seen.add(instruction.command)

                if instruction.command == "EXPOSE":
                    for port in instruction.args:
                        number = port.partition("/")[0]
                        if PORT_NUMBER.fullmatch(number) and not MIN_PORT <= int(number) <= MAX_PORT:
                            self._warn(
                                WarnLevel.MEDIUM,
                                f"port {number} is outside the range {MIN_PORT}-{MAX_PORT}",
                                instruction,
                            )
