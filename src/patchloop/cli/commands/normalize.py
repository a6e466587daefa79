"""patchloop normalize -- repair raw generator output against a schema."""

from __future__ import annotations

from dataclasses import replace

import click

from patchloop.cli.formatting import format_dropped, format_error, format_json, get_console


@click.command()
@click.argument("schema")
@click.argument("input_file", metavar="INPUT", type=click.File("r"))
@click.option(
    "--no-map-recovery",
    is_flag=True,
    help="Do not rewrite key/value pair lists into objects.",
)
@click.option(
    "--discriminator-key",
    "discriminator_keys",
    multiple=True,
    help="Sibling key naming the variant of a flattened union (repeatable).",
)
def normalize(
    schema: str,
    input_file: click.utils.LazyFile,
    no_map_recovery: bool,
    discriminator_keys: tuple[str, ...],
) -> None:
    """Normalize INPUT (JSON or fenced JSON text, '-' for stdin) against SCHEMA.

    SCHEMA is a JSON Schema file or a ``module:Type`` reference.
    """
    from patchloop.cli import _load_schema
    from patchloop.engine.parsing import parse_json_text
    from patchloop.exceptions import PatchloopError
    from patchloop.models.config import NormalizeOptions
    from patchloop.normalize import normalize_with_report

    console = get_console()
    try:
        descriptor = _load_schema(schema)
        options = NormalizeOptions(recover_maps=not no_map_recovery)
        if discriminator_keys:
            options = replace(options, discriminator_keys=discriminator_keys)
        raw = parse_json_text(input_file.read())
        report = normalize_with_report(raw, descriptor, options)
    except PatchloopError as e:
        format_error(str(e), console)
        raise SystemExit(1) from None
    format_json(report.value, console)
    format_dropped(report.dropped, console)
