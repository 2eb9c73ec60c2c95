"""docmapper management CLI.

Inspects the document types an application module declares and runs
maintenance operations (index creation, collection clearing) against a
storage backend.
"""

import asyncio
import importlib
from typing import Optional

import structlog
import typer

from docmapper.client import connect, disconnect, get_client
from docmapper.config import get_settings
from docmapper.log import configure_logging
from docmapper.models.document import Document
from docmapper.models.registry import DocumentType, registry

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="docmapper",
    help="""Inspect and maintain docmapper document collections.

Examples:

  # List the document types a module declares
  uv run docmapper collections myapp.models

  # Create unique indexes for every document type in a module
  uv run docmapper create-indexes myapp.models --database-url sqlite:///./app.db

  # Remove every record from a collection
  uv run docmapper clear users --database-url sqlite:///./app.db --yes""",
    rich_markup_mode="markdown",
)


@app.callback()
def main() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, fmt=settings.log_format)


def _document_types(module_name: str) -> list[DocumentType]:
    try:
        importlib.import_module(module_name)
    except ImportError as e:
        logger.error("module_not_found", module=module_name, error=str(e))
        typer.echo(f"Cannot import module '{module_name}'")
        raise typer.Exit(1)

    return [
        entry
        for entry in registry.types_in_module(module_name)
        if issubclass(entry.document_cls, Document) and entry.document_cls is not Document
    ]


@app.command()
def collections(
    module: str = typer.Argument(
        ...,
        help="Dotted path of the module declaring document types",
    ),
) -> None:
    """List document types with their collections and unique fields."""
    types = _document_types(module)
    if not types:
        typer.echo(f"No document types found in {module}")
        return

    for entry in types:
        unique = [name for name, spec in entry.fields.items() if spec.unique]
        typer.echo(f"{entry.name}\t{entry.document_cls.collection_name()}\t{', '.join(unique) or '-'}")


@app.command("create-indexes")
def create_indexes(
    module: str = typer.Argument(
        ...,
        help="Dotted path of the module declaring document types",
    ),
    database_url: Optional[str] = typer.Option(
        None,
        "--database-url",
        "-u",
        help="Storage backend URL (default: DOCMAPPER_DATABASE_URL)",
    ),
) -> None:
    """Create unique indexes for every document type in a module."""
    types = _document_types(module)

    async def run() -> dict[str, list[str]]:
        await connect(database_url)
        try:
            return {entry.name: await entry.document_cls.create_indexes() for entry in types}
        finally:
            await disconnect()

    created = asyncio.run(run())
    for name, fields in created.items():
        typer.echo(f"{name}: {', '.join(fields) if fields else 'no unique fields'}")


@app.command()
def clear(
    collection: str = typer.Argument(
        ...,
        help="Collection to clear",
    ),
    database_url: Optional[str] = typer.Option(
        None,
        "--database-url",
        "-u",
        help="Storage backend URL (default: DOCMAPPER_DATABASE_URL)",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation",
    ),
) -> None:
    """Remove every record from a collection."""
    if not yes:
        typer.confirm(f"Remove every record from '{collection}'?", abort=True)

    async def run() -> None:
        await connect(database_url)
        try:
            await get_client().clear_collection(collection)
        finally:
            await disconnect()

    asyncio.run(run())
    logger.info("collection_cleared", collection=collection)
    typer.echo(f"Cleared {collection}")


@app.command()
def version() -> None:
    """Show version information."""
    from docmapper import __version__

    typer.echo(f"docmapper {__version__}")
