"""patchloop patch -- apply a JSON Patch to a document."""

from __future__ import annotations

import click

from patchloop.cli.formatting import format_error, format_json, format_skipped, get_console


@click.command()
@click.argument("base_file", metavar="BASE", type=click.File("r"))
@click.argument("patch_file", metavar="PATCH", type=click.File("r"))
@click.option(
    "--atomic/--partial",
    default=False,
    help="Reject the whole patch on the first failing operation (default: partial).",
)
@click.option(
    "--array-strategy",
    type=click.Choice(["replace_whole", "index_precise", "reorder_removals"], case_sensitive=False),
    default="index_precise",
    show_default=True,
    help="How operations addressing array elements are applied.",
)
def patch(
    base_file: click.utils.LazyFile,
    patch_file: click.utils.LazyFile,
    atomic: bool,
    array_strategy: str,
) -> None:
    """Apply PATCH (RFC 6902, optionally fenced) to the JSON document BASE."""
    from patchloop.engine.parsing import parse_json_text, parse_patch_text
    from patchloop.engine.patcher import apply_patch
    from patchloop.exceptions import PatchloopError
    from patchloop.models.config import ArrayStrategy, ConflictStrategy

    console = get_console()
    try:
        base = parse_json_text(base_file.read())
        ops = parse_patch_text(patch_file.read())
        result = apply_patch(
            base,
            ops,
            array_strategy=ArrayStrategy(array_strategy.lower()),
            conflict_strategy=ConflictStrategy.ATOMIC if atomic else ConflictStrategy.PARTIAL_APPLY,
        )
    except PatchloopError as e:
        format_error(str(e), console)
        raise SystemExit(1) from None
    format_json(result.value, console)
    format_skipped(result.skipped, console)
