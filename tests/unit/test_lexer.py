from dockparse.LEXER.lexer import Lexer
from dockparse.LEXER.token import TokenType
from dockparse.MODELS.errors import MSG_LINE_START, ErrorCode


def test_lookahead_is_filled_on_creation():
    lexer = Lexer("FROM alpine")
    assert lexer.current_token.value == "FROM"
    assert lexer.peek_token().value == "alpine"
    assert lexer.next_token().value == "FROM"
    assert lexer.next_token().value == "alpine"
    assert lexer.next_token().type == TokenType.EOF


def test_tokenize_all_drops_whitespace():
    tokens, errors = Lexer("FROM  alpine   AS base\n").tokenize_all()
    assert errors == []
    assert TokenType.WHITESPACE not in [t.type for t in tokens]
    assert tokens[-1].type == TokenType.EOF


def test_continuation_joins_physical_lines():
    lexer = Lexer("RUN apt-get update \\\n    && apt-get install -y curl\n")
    groups, errors = lexer.process_all_instructions()
    assert errors == []
    assert len(groups) == 1
    assert groups[0].arguments_as_string() == "apt-get update && apt-get install -y curl"


def test_comment_inside_continuation_keeps_line_open():
    groups, errors = Lexer("RUN a \\\n# note\n  b\nUSER app\n").process_all_instructions()
    assert errors == []
    assert [g.command for g in groups] == ["RUN", "USER"]
    assert groups[0].arguments_as_string() == "a b"


def test_words_group_adjacent_tokens():
    groups, _ = Lexer("COPY --from=builder /src /dst").process_all_instructions()
    assert [w.text for w in groups[0].words()] == ["--from=builder", "/src", "/dst"]


def test_json_form_detection():
    groups, _ = Lexer('CMD ["a"]\nCMD a [b]\n').process_all_instructions()
    assert groups[0].json_form is True
    assert groups[1].json_form is False


def test_comments_attach_to_following_instruction():
    groups, _ = Lexer("# build stage\n# second line\nFROM alpine # not a comment\n").process_all_instructions()
    assert [c.value for c in groups[0].comments] == ["# build stage", "# second line"]


def test_blank_line_detaches_comments():
    groups, _ = Lexer("# orphan\n\nFROM alpine\n").process_all_instructions()
    assert groups[0].comments == []


def test_line_must_start_with_instruction():
    groups, errors = Lexer("from alpine\nFROM alpine\n").process_all_instructions()
    assert len(groups) == 1
    assert len(errors) == 1
    assert errors[0].message == MSG_LINE_START
    assert errors[0].code == ErrorCode.SYNTAX
    assert "FROM" in errors[0].details


def test_errors_do_not_stop_the_lexer():
    source = "RUN ${A B}\nFROM alpine\nRUN echo ${\nUSER app\n"
    groups, errors = Lexer(source).process_all_instructions()
    assert [g.command for g in groups] == ["FROM", "USER"]
    assert [e.position.line for e in errors] == [1, 3]
    assert all(e.code == ErrorCode.SYNTAX for e in errors)


def test_heredoc_stays_in_its_logical_line():
    groups, errors = Lexer("RUN <<EOF\necho hi\nEOF\nUSER app\n").process_all_instructions()
    assert errors == []
    assert [g.command for g in groups] == ["RUN", "USER"]
    assert groups[0].arguments_as_string() == "<<EOF"
    assert [t.type for t in groups[0].heredoc_tokens()] == [
        TokenType.HEREDOC_START, TokenType.HEREDOC_CONTENT, TokenType.HEREDOC_END,
    ]


def test_referenced_variables():
    lexer = Lexer("FROM alpine\nRUN echo $A ${B}\n")
    lexer.process_all_instructions()
    assert lexer.variables == {"A", "B"}
