from dockparse.MODELS.errors import (
    GENERIC_HINT, HINTS, DockerfileError, ErrorCode, ErrorCollector, hints_for,
    new_instruction_error, new_reference_error, new_stage_error, new_syntax_error,
)
from dockparse.MODELS.position import Position


def test_rendering():
    err = new_syntax_error(Position(line=3, column=5), "unterminated quoted string", snippet='RUN "abc')
    err.stage = "build"
    err.details = "quotes must close on the same line"
    text = str(err)
    lines = text.splitlines()
    assert lines[0] == "Stage 'build': Line 3:5 - unterminated quoted string"
    assert 'RUN "abc' in lines
    assert "    ^" in lines
    assert "Details: quotes must close on the same line" in lines
    assert "Suggestions:" in lines


def test_hints_by_code():
    assert hints_for(ErrorCode.SYNTAX) == list(HINTS[ErrorCode.SYNTAX])
    assert hints_for(ErrorCode.INTERNAL) == [GENERIC_HINT]
    err = DockerfileError(ErrorCode.IO, "cannot read")
    assert err.hints == [GENERIC_HINT]


def test_constructors():
    position = Position(line=1, column=1)
    err = new_instruction_error(position, "EXPOSE", "invalid port number 'x'")
    assert err.code == ErrorCode.INSTRUCTION
    assert err.message == "Invalid EXPOSE instruction: invalid port number 'x'"
    assert new_stage_error("a", position, "dup").code == ErrorCode.STAGE
    assert new_reference_error("a", position, "missing").stage == "a"


def test_collector_wraps_foreign_exceptions():
    collector = ErrorCollector()
    cause = ValueError("boom")
    collector.add(cause)
    collector.add(None)
    assert len(collector) == 1
    err = collector.errors[0]
    assert err.code == ErrorCode.INTERNAL
    assert err.cause is cause
    assert err.__cause__ is cause


def test_collector_stamps_stage():
    collector = ErrorCollector()
    collector.stage = "web"
    collector.extend([
        new_syntax_error(Position(line=1), "a"),
        new_stage_error("other", Position(line=2), "b"),
    ])
    assert [e.stage for e in collector.errors] == ["web", "other"]
    assert collector.has_errors()


def test_to_dict():
    err = new_syntax_error(Position(line=2, column=1, file_path="Dockerfile"), "bad")
    data = err.to_dict()
    assert data["code"] == "SyntaxError"
    assert data["position"]["file_path"] == "Dockerfile"
    assert data["hints"] == hints_for(ErrorCode.SYNTAX)
