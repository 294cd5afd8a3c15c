"""
Command Line Interface for AskAI.
"""

import asyncio
import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from .config import settings
from .exceptions import AskAIError, QuotaError, ValidationError
from .models import QueryRequest
from .online import PromptBuilder, SQLValidator
from .text2sql import Text2SQL


# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Rich console
console = Console()


@click.group()
@click.option('--db-url', envvar='DATABASE_URL', help='Participant database URL')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.pass_context
def cli(ctx, db_url, verbose):
    """AskAI: answer questions about event participants with SQL."""
    ctx.ensure_object(dict)
    if db_url:
        ctx.obj['settings'] = settings.model_copy(update={'database_url': db_url})
    else:
        ctx.obj['settings'] = settings

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _print_stats(stats):
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Total Tokens", str(stats.total_tokens))
    table.add_row("Total Requests", str(stats.total_requests))
    table.add_row("Successful Requests", str(stats.successful_requests))
    table.add_row("Failed Requests", str(stats.failed_requests))
    table.add_row("Token Limit", str(stats.token_limit))
    table.add_row("Remaining Tokens", "unlimited" if stats.remaining_tokens is None else str(stats.remaining_tokens))

    console.print(table)


@cli.command()
@click.argument('query')
@click.option('--application-id', '-a', type=int, required=True, help='Tenant (application) id')
@click.option('--event-id', '-e', type=int, default=0, show_default=True, help='Event id, 0 for all events')
@click.option('--user-id', default='anonymous-user', show_default=True, help='Caller id for the usage ledger')
@click.pass_context
def query(ctx, query, application_id, event_id, user_id):
    """Answer a natural language question with SQL."""
    console.print(f"[bold blue]Query:[/bold blue] {query}")

    text2sql = Text2SQL.from_settings(ctx.obj['settings'])
    request = QueryRequest(
        query=query, application_id=application_id, event_id=event_id, user_id=user_id
    )

    try:
        result = asyncio.run(text2sql.query_to_sql(request))
    except AskAIError as e:
        console.print(f"[bold red]✗[/bold red] Error processing query: {e}")
        raise click.ClickException(str(e))

    try:
        result.raise_for_status()
    except (QuotaError, ValidationError) as e:
        console.print(f"\n[bold red]✗[/bold red] {e}")
        raise click.ClickException(str(e))

    console.print(f"\n[bold green]✓[/bold green] Generated SQL ({result.source.value}):")
    console.print(Syntax(result.generated_sql, "sql", theme="monokai", line_numbers=True))

    if not result.success:
        console.print(f"\n[bold red]✗[/bold red] Execution failed: {result.error}")
    elif result.data:
        console.print("\n[bold green]✓[/bold green] Execution Results:")
        table = Table(show_header=True, header_style="bold magenta")
        for col in result.columns:
            table.add_column(col)
        for row in result.data:
            table.add_row(*[str(row.get(col)) for col in result.columns])
        console.print(table)
    else:
        console.print("\n[yellow]No rows returned[/yellow]")

    console.print(f"\n[dim]Tokens used: {result.tokens_used}[/dim]")


@cli.command()
@click.argument('sql')
@click.option('--application-id', '-a', type=int, default=None, help='Tenant id for the tenant filter check')
@click.pass_context
def validate(ctx, sql, application_id):
    """Validate SQL against the safety rules."""
    console.print("[bold blue]Validating SQL...[/bold blue]")

    source = ctx.obj['settings']
    validator = SQLValidator(require_tenant_filter=source.require_tenant_filter)
    verdict = validator.validate(sql, application_id)

    if verdict.is_valid:
        console.print("[bold green]✓[/bold green] SQL passed validation")
    else:
        console.print(f"[bold red]✗[/bold red] {verdict.reason}")
        raise click.ClickException(verdict.reason)


@cli.command(name='build-index')
@click.argument('schema_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--force', is_flag=True, help='Clear the index before loading')
def build_index(schema_file, force):
    """Load schema fragments from a JSON file into the vector index."""
    from .core import ChromaSchemaIndex, SentenceTransformerEmbeddingProvider
    from .offline import SchemaIndexBuilder

    console.print("[bold green]Building schema index...[/bold green]")

    try:
        builder = SchemaIndexBuilder(
            ChromaSchemaIndex(),
            SentenceTransformerEmbeddingProvider(),
        )
        count = builder.build_from_file(schema_file, force_rebuild=force)
    except (AskAIError, ValueError) as e:
        console.print(f"[bold red]✗[/bold red] Error building schema index: {e}")
        raise click.ClickException(str(e))

    console.print(f"[bold green]✓[/bold green] Indexed {count} tables")


@cli.command()
@click.argument('output_file', type=click.Path(dir_okay=False))
def export(output_file):
    """Export the schema index to a JSON file."""
    from .core import ChromaSchemaIndex
    from .offline import SchemaIndexBuilder

    try:
        builder = SchemaIndexBuilder(ChromaSchemaIndex(), embedding_provider=None)
        count = builder.export(output_file)
    except AskAIError as e:
        console.print(f"[bold red]✗[/bold red] Error exporting schema index: {e}")
        raise click.ClickException(str(e))

    console.print(f"[bold green]✓[/bold green] Exported {count} tables to {output_file}")


@cli.command()
@click.option('--table-name', help='Specific table name')
def schema(table_name):
    """Show the schema fragments held in the vector index."""
    from .core import ChromaSchemaIndex

    try:
        index = ChromaSchemaIndex()
        if table_name:
            fragment = index.get_fragment(table_name)
            if fragment is None:
                console.print(f"[yellow]Table '{table_name}' not found in schema index[/yellow]")
                return
            context = PromptBuilder().build_schema_context([fragment])
            console.print(Panel(context, title=f"Table: {table_name}"))
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Table Name")
        table.add_column("Columns", justify="right")
        table.add_column("Relationships", justify="right")
        for fragment in index.list_fragments():
            table.add_row(fragment.table_name, str(len(fragment.columns)), str(len(fragment.relationships)))
        console.print(table)
        console.print(f"\n{index.count()} tables indexed")
    except AskAIError as e:
        console.print(f"[bold red]✗[/bold red] Error reading schema index: {e}")
        raise click.ClickException(str(e))


@cli.command()
@click.argument('application_id', type=int)
def usage(application_id):
    """Show token usage for an application."""
    from .core import SqlTokenLedger

    ledger = SqlTokenLedger()

    async def _load():
        try:
            return await ledger.stats(application_id)
        finally:
            await ledger.dispose()

    stats = asyncio.run(_load())
    console.print(f"[bold blue]Token usage for application {application_id}[/bold blue]")
    _print_stats(stats)


def main():
    """Entry point for the CLI."""
    cli()
