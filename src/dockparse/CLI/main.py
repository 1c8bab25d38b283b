"""
Command Line Interface for dockparse.
"""
import json
import logging
import sys

import click
import yaml
from jinja2 import Template

from ..MODELS.dockerfile_ast import ParsedDockerfile
from ..MODELS.errors import DockerfileError
from ..OPTIMIZER.optimizer import optimize as optimize_document
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..UTILS.config import load_parse_options

LOGGERS = ("dockparse.lexer", "dockparse.parser", "dockparse.optimizer")

REPORT_TEMPLATE = """\
{% for stage in document.stages -%}
Stage {{ stage.index }}{% if stage.name %} ({{ stage.name }}){% endif %}: {{ stage.base_image }}{% if stage.platform %} [{{ stage.platform }}]{% endif %}
{% for inst in stage.instructions -%}
{{ "%5d" | format(inst.range.start.line) }}  {{ inst.command }} {{ inst.args | join(' ') }}
{% endfor %}
{% endfor -%}
{% if document.global_args -%}
Global ARGs: {{ document.global_args.keys() | join(', ') }}
{% endif -%}
{% for warning in document.warnings -%}
warning [{{ warning.level.value }}] line {{ warning.position.line }}: {{ warning.message }}
{% endfor -%}
{{ document.errors | length }} error(s), {{ document.warnings | length }} warning(s)
"""

_report = Template(REPORT_TEMPLATE, keep_trailing_newline=True)


def configure_logging(verbose: bool) -> None:
    """
    Sends the dockparse loggers to stderr; DEBUG when verbose, WARNING otherwise.
    """
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter(fmt="%(asctime)s[%(name)s] %(message)s"))
    for name in LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False
        logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def render_report(document: ParsedDockerfile) -> str:
    return _report.render(document=document)


def _load(ctx, dockerfile: str, **overrides) -> ParsedDockerfile:
    try:
        options = load_parse_options(ctx.obj.get('env_file'), **overrides)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(2)
    try:
        return DockerfileParser(options).parse(dockerfile)
    except DockerfileError as e:
        click.echo(f"Error: {e.message}", err=True)
        ctx.exit(1)


def _echo_errors(document: ParsedDockerfile) -> None:
    for err in document.errors:
        click.echo(str(err), err=True)
        click.echo("", err=True)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.option('--env-file', default=None, help='Read DOCKPARSE_* settings from this .env file')
@click.pass_context
def cli(ctx, verbose, env_file):
    """
    dockparse - Dockerfile tokenizer and parser.

    Parses Dockerfiles into stages, instructions and variables, reporting
    every problem found along the way.
    """
    ctx.ensure_object(dict)
    ctx.obj['env_file'] = env_file
    configure_logging(verbose)


@cli.command()
@click.argument('dockerfile', default='Dockerfile')
@click.option('--format', 'output_format', type=click.Choice(['text', 'json', 'yaml']), default='text')
@click.option('--no-comments', is_flag=True, help='Drop comment text from instructions')
@click.option('--no-validate', is_flag=True, help='Skip per-instruction validation')
@click.option('--expand-vars', is_flag=True, help='Expand ARG/ENV references in arguments')
@click.option('--platform', default=None, help='Platform for stages without --platform')
@click.option('--target', default=None, help='Stage that must exist in the Dockerfile')
@click.pass_context
def parse(ctx, dockerfile, output_format, no_comments, no_validate, expand_vars, platform, target):
    """Parse a Dockerfile and print its structure."""
    document = _load(
        ctx, dockerfile,
        include_comments=False if no_comments else None,
        validate_instructions=False if no_validate else None,
        allow_env_var_expansion=True if expand_vars else None,
        default_platform=platform,
        target_stage=target,
    )

    if output_format == 'json':
        click.echo(json.dumps(document.to_dict(), indent=2))
    elif output_format == 'yaml':
        click.echo(yaml.safe_dump(document.to_dict(), sort_keys=False))
    else:
        click.echo(render_report(document), nl=False)
        _echo_errors(document)

    if document.errors:
        ctx.exit(1)


@cli.command()
@click.argument('dockerfile', default='Dockerfile')
@click.pass_context
def stages(ctx, dockerfile):
    """List the build stages."""
    document = _load(ctx, dockerfile)
    click.echo(f"{'INDEX':6} {'NAME':15} {'BASE IMAGE':30} LINES")
    click.echo("-" * 60)
    for stage in document.stages:
        lines = f"{stage.range.start.line}-{stage.range.end.line}"
        click.echo(f"{stage.index:<6} {stage.name or '-':15} {stage.base_image:30} {lines}")
    if document.errors:
        _echo_errors(document)
        ctx.exit(1)


@cli.command()
@click.argument('dockerfile', default='Dockerfile')
@click.option('--out', '-o', default=None, help='Output file, stdout when omitted')
@click.pass_context
def optimize(ctx, dockerfile, out):
    """Combine consecutive RUN instructions and re-format the Dockerfile."""
    document = _load(ctx, dockerfile)
    if document.errors:
        _echo_errors(document)
        ctx.exit(1)

    text = optimize_document(document)
    if out:
        with open(out, 'w') as f:
            f.write(text)
        click.echo(f"Optimized Dockerfile written to {out}")
    else:
        click.echo(text, nl=False)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
