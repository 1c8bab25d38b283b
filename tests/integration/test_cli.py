import json

import pytest
import yaml
from click.testing import CliRunner

from dockparse.CLI.main import cli

DOCKERFILE = """\
FROM golang:1.21 AS build
RUN go mod download
RUN go build -o /bin/app
FROM alpine:3.19
COPY --from=build /bin/app /bin/app
ENTRYPOINT ["/bin/app"]
"""


@pytest.fixture
def dockerfile(tmp_path):
    path = tmp_path / "Dockerfile"
    path.write_text(DOCKERFILE)
    return path


def test_cli_help():
    runner = CliRunner()
    result = runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    assert 'Dockerfile tokenizer and parser' in result.output


def test_cli_parse_missing_file(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ['parse', str(tmp_path / 'non_existent')])
    assert result.exit_code == 1
    assert 'Error: cannot read' in result.output


def test_cli_parse_text(dockerfile):
    runner = CliRunner()
    result = runner.invoke(cli, ['parse', str(dockerfile)])
    assert result.exit_code == 0
    assert 'Stage 0 (build): golang:1.21' in result.output
    assert 'Stage 1: alpine:3.19' in result.output
    assert '0 error(s), 0 warning(s)' in result.output


def test_cli_parse_json(dockerfile):
    runner = CliRunner()
    result = runner.invoke(cli, ['parse', str(dockerfile), '--format', 'json'])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert [s['name'] for s in data['stages']] == ['build', None]
    assert data['metadata']['stage_count'] == 2


def test_cli_parse_yaml_with_platform(dockerfile):
    runner = CliRunner()
    result = runner.invoke(cli, ['parse', str(dockerfile), '--format', 'yaml', '--platform', 'linux/arm64'])
    assert result.exit_code == 0
    data = yaml.safe_load(result.output)
    assert data['stages'][1]['platform'] == 'linux/arm64'


def test_cli_parse_reports_errors(tmp_path):
    path = tmp_path / "Dockerfile"
    path.write_text("FROM alpine\nEXPOSE http\n")
    runner = CliRunner()
    result = runner.invoke(cli, ['parse', str(path)])
    assert result.exit_code == 1
    assert 'Invalid EXPOSE instruction' in result.output


def test_cli_unknown_target(dockerfile):
    runner = CliRunner()
    result = runner.invoke(cli, ['parse', str(dockerfile), '--target', 'test'])
    assert result.exit_code == 1


def test_cli_env_file(dockerfile, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("DOCKPARSE_TARGET_STAGE=missing\n")
    runner = CliRunner()
    result = runner.invoke(cli, ['--env-file', str(env_file), 'parse', str(dockerfile)])
    assert result.exit_code == 1


def test_cli_stages(dockerfile):
    runner = CliRunner()
    result = runner.invoke(cli, ['stages', str(dockerfile)])
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].startswith('INDEX')
    assert lines[2].split() == ['0', 'build', 'golang:1.21', '1-3']
    assert lines[3].split() == ['1', '-', 'alpine:3.19', '4-6']


def test_cli_optimize(dockerfile, tmp_path):
    out = tmp_path / "Dockerfile.opt"
    runner = CliRunner()
    result = runner.invoke(cli, ['optimize', str(dockerfile), '-o', str(out)])
    assert result.exit_code == 0
    assert 'Optimized Dockerfile written to' in result.output
    assert "RUN go mod download && go build -o /bin/app\n" in out.read_text()


def test_cli_optimize_stdout(dockerfile):
    runner = CliRunner()
    result = runner.invoke(cli, ['optimize', str(dockerfile)])
    assert result.exit_code == 0
    assert result.output.splitlines()[0] == 'FROM golang:1.21 AS build'
