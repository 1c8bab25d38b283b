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
Build-stage boundaries and ARG/ENV declarations found in a tokenized Dockerfile.
"""
from dataclasses import dataclass
from typing import List, Optional

from ..LEXER.lexer import InstructionTokens
from ..LEXER.token import TokenType
from ..UTILS.key_value import parse_env_declarations, parse_key_value_pairs

GLOBAL_STAGE = -1


@dataclass
class StageInfo:
    """Line span of one build stage."""
    index: int
    name: str = ""
    base_image: str = ""
    start_line: int = 0
    end_line: int = 0

    def contains_line(self, line: int) -> bool:
        return line >= self.start_line and (self.end_line == 0 or line <= self.end_line)


@dataclass
class VariableInfo:
    """One ARG or ENV declaration."""
    name: str
    kind: str
    value: str
    has_value: bool
    line: int
    column: int
    stage_index: int = GLOBAL_STAGE


def _first_base_image(tokens: InstructionTokens) -> str:
    for word in tokens.words():
        if word.first.type == TokenType.AS:
            break
        if not word.text.startswith("--"):
            return word.text
    return ""


def _stage_name(tokens: InstructionTokens) -> str:
    words = tokens.words()
    for i, word in enumerate(words):
        if word.first.type == TokenType.AS and i + 1 < len(words):
            return words[i + 1].text
    return ""


def detect_stages(instructions: List[InstructionTokens]) -> List[StageInfo]:
    """
    Splits the instruction list into build stages, one per FROM.

    A stage ends on the line before the next FROM; the last stage ends on
    the line of the last instruction. No FROM means no stages.
    """
    stages: List[StageInfo] = []
    current: Optional[StageInfo] = None

    for inst in instructions:
        if inst.command != "FROM":
            continue
        if current is not None:
            current.end_line = inst.line - 1
            stages.append(current)
        current = StageInfo(
            index=len(stages),
            name=_stage_name(inst),
            base_image=_first_base_image(inst),
            start_line=inst.line,
        )

    if current is not None:
        if instructions:
            current.end_line = instructions[-1].line
        stages.append(current)

    return stages


def stage_index_for_line(stages: List[StageInfo], line: int) -> int:
    for stage in stages:
        if stage.contains_line(line):
            return stage.index
    return GLOBAL_STAGE


def detect_variables(
    instructions: List[InstructionTokens],
    stages: List[StageInfo],
    escape_char: str = "\\",
) -> List[VariableInfo]:
    """
    Extracts every ARG/ENV declaration, tagged with the index of the stage
    whose line span contains it (``-1`` before the first FROM).
    """
    variables: List[VariableInfo] = []

    for inst in instructions:
        if inst.command not in ("ARG", "ENV"):
            continue

        text = inst.arguments_as_string()
        if inst.command == "ENV":
            declarations = parse_env_declarations(text, escape_char)
        else:
            declarations = parse_key_value_pairs(text, escape_char)

        stage_index = stage_index_for_line(stages, inst.line)
        for name, value, has_value in declarations:
            if not name:
                continue
            variables.append(VariableInfo(
                name=name,
                kind=inst.command,
                value=value,
                has_value=has_value,
                line=inst.line,
                column=inst.instruction.column,
                stage_index=stage_index,
            ))

    return variables
