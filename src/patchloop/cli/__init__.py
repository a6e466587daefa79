"""patchloop CLI -- normalize generator output, apply patches, inspect traces.

This module is NEVER imported from patchloop/__init__.py.
It is only loaded via the ``patchloop`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import importlib
import json
from pathlib import Path
from typing import Any

try:
    import click
except ImportError:
    raise ImportError(
        "CLI dependencies not installed. Install with: pip install patchloop[cli]"
    ) from None

from patchloop.models.schema import SchemaDescriptor


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """patchloop: schema-driven repair and JSON Patch refinement of LLM output."""
    if verbose:
        import logging

        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


def _load_schema(ref: str) -> SchemaDescriptor:
    """Load a descriptor from a JSON Schema file or a ``module:Type`` reference."""
    path = Path(ref)
    if path.exists():
        return SchemaDescriptor.from_json_schema(json.loads(path.read_text()))
    if ":" in ref:
        module_name, _, attr = ref.partition(":")
        target: Any = importlib.import_module(module_name)
        for part in attr.split("."):
            target = getattr(target, part)
        return SchemaDescriptor.for_type(target)
    raise click.BadParameter(
        f"{ref!r} is neither a JSON Schema file nor a module:Type reference",
        param_hint="SCHEMA",
    )


# Register subcommands after cli group is defined
from patchloop.cli.commands.history import history  # noqa: E402
from patchloop.cli.commands.normalize import normalize  # noqa: E402
from patchloop.cli.commands.patch import patch  # noqa: E402

cli.add_command(normalize)
cli.add_command(patch)
cli.add_command(history)
