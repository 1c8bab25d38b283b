import pytest
from pydantic import ValidationError

from dockparse.LEXER.lexer import Lexer
from dockparse.MODELS.errors import DockerfileError, ErrorCode
from dockparse.PARSERS.instruction_parser import HANDLERS, InstructionKind, InstructionParser


def parse_line(text, **kwargs):
    groups, errors = Lexer(text).process_all_instructions()
    assert errors == []
    return InstructionParser(**kwargs).parse_instruction(groups[0], stage_ref=0)


def parse_error(text, **kwargs):
    with pytest.raises(DockerfileError) as exc:
        parse_line(text, **kwargs)
    return exc.value


def test_every_kind_has_a_rule():
    assert set(HANDLERS) == set(InstructionKind)
    for name in HANDLERS.values():
        assert callable(getattr(InstructionParser, name))


def test_kind_from_command():
    assert InstructionKind.from_command("COPY") == InstructionKind.COPY
    assert InstructionKind.from_command("MAINTAINER") == InstructionKind.UNKNOWN
    assert InstructionKind.from_command("copy") == InstructionKind.UNKNOWN


class TestFrom:
    def test_stage_and_platform(self):
        inst = parse_line("FROM --platform=linux/arm64 golang:1.21 AS builder")
        assert inst.args == ["golang:1.21"]
        assert inst.flags == {"platform": "linux/arm64", "stage": "builder"}
        assert inst.stage_ref == 0

    def test_requires_base_image(self):
        err = parse_error("FROM\n")
        assert err.code == ErrorCode.INSTRUCTION
        assert err.message == "Invalid FROM instruction: requires a base image"

    def test_as_requires_name(self):
        err = parse_error("FROM golang AS")
        assert "stage name" in err.message


class TestRunCmdEntrypoint:
    def test_cmd_json_form(self):
        inst = parse_line('CMD ["a","b c","d"]')
        assert inst.args == ["a", "b c", "d"]
        assert inst.is_json_form is True

    def test_cmd_shell_form(self):
        inst = parse_line("CMD echo hi")
        assert inst.args == ["echo hi"]
        assert inst.is_json_form is False

    def test_invalid_json_is_a_syntax_error(self):
        err = parse_error("CMD [invalid json")
        assert err.code == ErrorCode.SYNTAX
        assert err.message.startswith("Invalid JSON array")
        assert err.snippet == "[invalid json"

    def test_json_array_of_non_strings(self):
        err = parse_error("ENTRYPOINT [1, 2]")
        assert err.code == ErrorCode.SYNTAX

    def test_entrypoint_uses_cmd_rule(self):
        inst = parse_line('ENTRYPOINT ["/docker-entrypoint.sh"]')
        assert inst.args == ["/docker-entrypoint.sh"]

    def test_run_requires_command(self):
        err = parse_error("RUN\n")
        assert err.code == ErrorCode.INSTRUCTION

    def test_run_heredoc(self):
        inst = parse_line("RUN <<EOF\necho one\necho two\nEOF")
        assert inst.heredoc is not None
        assert inst.heredoc.content == "echo one\necho two\n"
        assert inst.heredoc.identifier == "EOF"
        assert inst.heredoc.delimiter == "EOF"
        assert inst.heredoc.strip_leading_tabs is False
        assert inst.range.end.line == 4

    def test_run_multiline(self):
        inst = parse_line("RUN apt-get update \\\n && apt-get install -y git")
        assert inst.args == ["apt-get update && apt-get install -y git"]
        assert inst.is_multiline()

    def test_run_flags(self):
        inst = parse_line(
            "RUN --mount=type=cache,target=/root/.cache --mount=type=secret,id=pip "
            "--network=none pip install x"
        )
        assert inst.args == ["pip install x"]
        assert inst.get_flag_values("mount") == ["type=cache,target=/root/.cache", "type=secret,id=pip"]
        assert inst.get_flag("network") == "none"

    def test_run_flags_with_json_form(self):
        inst = parse_line('RUN --network=host ["make", "install"]')
        assert inst.args == ["make", "install"]
        assert inst.is_json_form
        assert inst.to_flat().args == ["--network=host", '["make", "install"]']

    def test_run_unknown_flag(self):
        err = parse_error("RUN --bogus=1 make")
        assert err.code == ErrorCode.INSTRUCTION
        assert "--bogus" in err.message

    def test_run_flag_requires_value(self):
        err = parse_error("RUN --network make")
        assert "--network requires a value" in err.message

    def test_instructions_are_immutable(self):
        inst = parse_line("RUN make")
        with pytest.raises(ValidationError):
            inst.args = ["make clean"]


class TestKeyValue:
    def test_label_pairs(self):
        inst = parse_line('LABEL version="1.0" description="a web app" maintainer=me')
        assert inst.args == ["version=1.0", "description=a web app", "maintainer=me"]

    def test_label_requires_equals(self):
        err = parse_error("LABEL version")
        assert err.code == ErrorCode.INSTRUCTION

    def test_env_pairs_and_legacy_form(self):
        assert parse_line("ENV A=1 B='two words'").args == ["A=1", "B=two words"]
        assert parse_line("ENV PATH /usr/bin:/bin").args == ["PATH=/usr/bin:/bin"]

    def test_env_requires_value(self):
        err = parse_error("ENV A=1 B")
        assert "B requires a value" in err.message

    def test_arg_default(self):
        inst = parse_line('ARG VERSION="1.2"')
        assert inst.args == ["VERSION"]
        assert inst.get_flag("default") == "1.2"

    def test_arg_without_default(self):
        inst = parse_line("ARG VERSION")
        assert not inst.has_flag("default")

    def test_arg_invalid_name(self):
        err = parse_error("ARG 1abc=2")
        assert err.code == ErrorCode.VARIABLE

    def test_arg_several_declarations(self):
        inst = parse_line('ARG A=1 B="two words" C')
        assert inst.args == ["A", "B", "C"]
        assert inst.flags == {"default": "1", "default:B": "two words"}
        assert inst.to_flat().args == ["A=1", 'B="two words"', "C"]


class TestExpose:
    def test_ports_and_protocols(self):
        inst = parse_line("EXPOSE 8080/tcp 9090/udp 70000")
        assert inst.args == ["8080/tcp", "9090/udp", "70000"]

    def test_rejects_other_protocols(self):
        err = parse_error("EXPOSE 80/sctp")
        assert "protocol" in err.message

    def test_rejects_non_numeric(self):
        err = parse_error("EXPOSE http")
        assert "invalid port number" in err.message

    def test_variable_port(self):
        assert parse_line("EXPOSE $PORT").args == ["$PORT"]


class TestCopyAdd:
    def test_copy_from(self):
        inst = parse_line("COPY --from=builder /src /dst")
        assert inst.dependencies == ["builder"]
        assert inst.flags == {"from": "builder"}
        assert inst.args == ["/src", "/dst"]

    def test_add_rejects_from(self):
        err = parse_error("ADD --from=builder /src /dst")
        assert err.code == ErrorCode.INSTRUCTION
        assert "--from" in err.message

    def test_copy_flags(self):
        inst = parse_line("COPY --chown=app:app --chmod=644 --link a b /dst/")
        assert inst.flags == {"chown": "app:app", "chmod": "644", "link": ""}
        assert inst.args == ["a", "b", "/dst/"]

    def test_add_checksum(self):
        inst = parse_line("ADD --checksum=sha256:abc https://example.com/x.tar.gz /x.tar.gz")
        assert inst.get_flag("checksum") == "sha256:abc"

    def test_unknown_flag(self):
        err = parse_error("COPY --bogus=1 a b")
        assert "--bogus" in err.message

    def test_requires_destination(self):
        err = parse_error("COPY onlyone")
        assert err.code == ErrorCode.INSTRUCTION

    def test_json_form_after_flags(self):
        inst = parse_line('COPY --chown=app ["my file", "/dst/"]')
        assert inst.args == ["my file", "/dst/"]
        assert inst.is_json_form

    def test_copy_heredoc(self):
        inst = parse_line("COPY <<EOF /etc/app.conf\nkey=value\nEOF\n")
        assert inst.args == ["<<EOF", "/etc/app.conf"]
        assert inst.heredoc.content == "key=value\n"

    def test_copy_several_heredocs(self):
        inst = parse_line("COPY <<A <<B /dst/\none\nA\ntwo\nB\n")
        assert inst.args == ["<<A", "<<B", "/dst/"]
        assert [(h.identifier, h.content) for h in inst.heredocs] == [("A", "one\n"), ("B", "two\n")]
        assert inst.heredoc == inst.heredocs[0]
        assert inst.heredocs[1].range.start.line == 1
        assert inst.heredocs[1].range.end.line == 5

    def test_repeated_exclude(self):
        inst = parse_line("COPY --exclude=*.pyc --exclude=tests . /app/")
        assert inst.get_flag_values("exclude") == ["*.pyc", "tests"]
        assert inst.to_flat().args == ["--exclude=*.pyc", "--exclude=tests", ".", "/app/"]


class TestSimpleInstructions:
    def test_volume(self):
        assert parse_line('VOLUME ["/data"]').args == ["/data"]
        assert parse_line("VOLUME /a /b").args == ["/a", "/b"]

    def test_user_and_workdir(self):
        assert parse_line("USER app:app").args == ["app:app"]
        assert parse_line("WORKDIR /srv/app").args == ["/srv/app"]
        assert parse_error("USER\n").code == ErrorCode.INSTRUCTION
        assert parse_error("WORKDIR\n").code == ErrorCode.INSTRUCTION

    def test_stopsignal(self):
        assert parse_line("STOPSIGNAL SIGTERM").args == ["SIGTERM"]
        assert parse_line("STOPSIGNAL 9").args == ["9"]
        assert parse_error("STOPSIGNAL TERM").code == ErrorCode.INSTRUCTION

    def test_shell(self):
        assert parse_line('SHELL ["/bin/bash", "-c"]').args == ["/bin/bash", "-c"]
        assert parse_error("SHELL /bin/bash -c").code == ErrorCode.INSTRUCTION

    def test_unknown_instruction(self):
        err = parse_error("MAINTAINER someone")
        assert err.message == "unknown instruction: MAINTAINER"


class TestOnbuild:
    def test_trigger(self):
        assert parse_line("ONBUILD RUN echo hi").args == ["RUN echo hi"]

    def test_no_nesting(self):
        err = parse_error("ONBUILD ONBUILD RUN x")
        assert "ONBUILD ONBUILD" in err.message

    def test_from_trigger_disallowed(self):
        err = parse_error("ONBUILD FROM scratch")
        assert "not allowed as an ONBUILD trigger" in err.message

    def test_unknown_trigger(self):
        err = parse_error("ONBUILD FETCH x")
        assert "unknown trigger" in err.message


class TestHealthcheck:
    def test_none(self):
        assert parse_line("HEALTHCHECK NONE").args == ["NONE"]

    def test_flags_and_cmd(self):
        inst = parse_line("HEALTHCHECK --interval=30s --timeout 5s CMD curl -f http://localhost/")
        assert inst.flags == {"interval": "30s", "timeout": "5s"}
        assert inst.args == ["CMD", "curl -f http://localhost/"]

    def test_requires_cmd(self):
        err = parse_error("HEALTHCHECK --interval=5s")
        assert "CMD or NONE" in err.message

    def test_unknown_flag(self):
        err = parse_error("HEALTHCHECK --every=5s CMD true")
        assert "--every" in err.message


class TestOptions:
    def test_comments(self):
        groups, _ = Lexer("# install tools\nRUN apk add git\n").process_all_instructions()
        assert InstructionParser().parse_instruction(groups[0]).comment == "install tools"
        assert InstructionParser(include_comments=False).parse_instruction(groups[0]).comment == ""

    def test_validation_can_be_skipped(self):
        inst = parse_line("EXPOSE http", validate=False)
        assert inst.args == ["http"]
        inst = parse_line('CMD ["a", "b"]', validate=False)
        assert inst.args == ["a", "b"]
        assert inst.is_json_form

    def test_range_positions(self):
        inst = parse_line("WORKDIR /app")
        assert (inst.range.start.line, inst.range.start.column) == (1, 1)
        assert inst.range.end.column == len("WORKDIR /app") + 1
