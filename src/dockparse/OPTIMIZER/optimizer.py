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
Layer-reducing rewrites over the flat instruction list, and the formatter
that renders the result back to Dockerfile text.
"""
import logging
from typing import Callable, List, NamedTuple, Optional, Sequence, Union

from jinja2 import Template

from ..MODELS.dockerfile_ast import FlatInstruction, ParsedDockerfile

logger = logging.getLogger("dockparse.optimizer")

DOCKERFILE_TEMPLATE = (
    "{% if directive %}# escape={{ directive }}\n\n{% endif %}"
    "{% for inst in instructions %}"
    "{{ inst.command }}{% if inst.rendered %} {{ inst.rendered }}{% endif %}\n"
    "{% for heredoc in inst.heredocs %}{{ heredoc.content }}{{ heredoc.delimiter }}\n{% endfor %}"
    "{% endfor %}"
)

_template = Template(DOCKERFILE_TEMPLATE, keep_trailing_newline=True)


class Optimization(NamedTuple):
    name: str
    description: str
    apply: Callable[[List[FlatInstruction]], List[FlatInstruction]]


def _combinable(inst: FlatInstruction) -> bool:
    # RUN flags (--mount, --network) belong to one instruction
    return (
        inst.command == "RUN"
        and not inst.is_json_form
        and not inst.all_heredocs()
        and len(inst.args) == 1
        and not inst.args[0].startswith("--")
    )


def combine_run_commands(instructions: Sequence[FlatInstruction]) -> List[FlatInstruction]:
    """
    Merges runs of consecutive shell-form RUN instructions into one,
    joining their commands with ``&&``.

    :param instructions: Flat instructions in source order.
    :return: A new list; the input is not modified.
    """
    result: List[FlatInstruction] = []
    pending: Optional[FlatInstruction] = None

    for inst in instructions:
        if not _combinable(inst):
            if pending is not None:
                result.append(pending)
                pending = None
            result.append(inst)
            continue

        if pending is None:
            pending = inst
        else:
            pending = FlatInstruction(command="RUN", args=[f"{pending.args[0]} && {inst.args[0]}"])

    if pending is not None:
        result.append(pending)
    return result


OPTIMIZATIONS = (
    Optimization(
        name="Combine RUN Commands",
        description="Merge consecutive RUN instructions to reduce layers",
        apply=combine_run_commands,
    ),
)


def format_dockerfile(instructions: Sequence[FlatInstruction], escape_char: str = "\\") -> str:
    """
    Renders one ``COMMAND arg1 arg2`` line per instruction. JSON-form
    arguments are re-encoded and heredoc bodies follow their opening line.
    A non-default escape character is written back as a parser directive.
    """
    directive = escape_char if escape_char != "\\" else ""
    return _template.render(directive=directive, instructions=[
        {"command": inst.command, "rendered": inst.render_args(), "heredocs": inst.all_heredocs()}
        for inst in instructions
    ])


def optimize(document: Union[ParsedDockerfile, Sequence[FlatInstruction]]) -> str:
    """
    Applies every optimization and returns the rewritten Dockerfile text.

    :param document: A parsed document or an already flattened instruction list.
    """
    escape_char = "\\"
    if isinstance(document, ParsedDockerfile):
        instructions = document.flat_instructions()
        escape_char = document.escape_char
    else:
        instructions = list(document)

    for optimization in OPTIMIZATIONS:
        before = len(instructions)
        instructions = optimization.apply(instructions)
        logger.debug("%s: %d -> %d instructions", optimization.name, before, len(instructions))

    return format_dockerfile(instructions, escape_char)
