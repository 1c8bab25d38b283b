from dockparse.ANALYZERS.stage_analyzer import (
    GLOBAL_STAGE, detect_stages, detect_variables, stage_index_for_line,
)
from dockparse.LEXER.lexer import Lexer

MULTI_STAGE = """\
ARG GO_VERSION=1.21
FROM golang:${GO_VERSION} AS build
ENV CGO_ENABLED=0 GOOS=linux
RUN go build -o /app
FROM --platform=linux/amd64 alpine:3.19
ARG GO_VERSION
COPY --from=build /app /app
"""


def groups_for(text):
    groups, errors = Lexer(text).process_all_instructions()
    assert errors == []
    return groups


def test_detect_stages():
    stages = detect_stages(groups_for(MULTI_STAGE))
    assert [s.index for s in stages] == [0, 1]
    assert stages[0].name == "build"
    assert stages[0].base_image == "golang:${GO_VERSION}"
    assert (stages[0].start_line, stages[0].end_line) == (2, 4)
    assert stages[1].name == ""
    assert stages[1].base_image == "alpine:3.19"
    assert (stages[1].start_line, stages[1].end_line) == (5, 7)


def test_no_from_means_no_stages():
    assert detect_stages(groups_for("ARG A=1\nRUN echo\n")) == []


def test_stage_index_for_line():
    stages = detect_stages(groups_for(MULTI_STAGE))
    assert stage_index_for_line(stages, 1) == GLOBAL_STAGE
    assert stage_index_for_line(stages, 3) == 0
    assert stage_index_for_line(stages, 6) == 1


def test_detect_variables():
    groups = groups_for(MULTI_STAGE)
    variables = detect_variables(groups, detect_stages(groups))

    assert [(v.name, v.kind, v.stage_index) for v in variables] == [
        ("GO_VERSION", "ARG", GLOBAL_STAGE),
        ("CGO_ENABLED", "ENV", 0),
        ("GOOS", "ENV", 0),
        ("GO_VERSION", "ARG", 1),
    ]
    assert variables[0].value == "1.21"
    assert variables[0].has_value is True
    assert variables[3].has_value is False
    assert variables[1].line == 3


def test_legacy_env_form():
    groups = groups_for("FROM alpine\nENV PATH /usr/local/bin:/usr/bin\n")
    variables = detect_variables(groups, detect_stages(groups))
    assert len(variables) == 1
    assert variables[0].name == "PATH"
    assert variables[0].value == "/usr/local/bin:/usr/bin"


def test_quoted_values():
    groups = groups_for('FROM alpine\nENV GREETING="hello world" EMPTY=""\n')
    variables = detect_variables(groups, detect_stages(groups))
    assert [(v.name, v.value) for v in variables] == [("GREETING", "hello world"), ("EMPTY", "")]
