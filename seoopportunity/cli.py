"""
SEO Opportunity CLI - Estimate a business's organic search opportunity from the command line.
"""

import asyncio
import json
import logging
import sys

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import Settings
from .dataforseo_client import DataForSEOClient
from .errors import ConfigurationError, OpportunityError, ValidationError
from .locations import LocationCache, LocationResolver
from .models import AnalysisRequest
from .pipeline import ReportPipeline

console = Console()


def setup_logging(verbose: bool):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _rank(rank) -> str:
    return str(rank) if rank else "-"


@click.group()
@click.version_option(version=__version__)
def main():
    """
    SEO Opportunity - how much traffic and revenue is a business missing?

    Combines DataForSEO search volumes and rankings with an AI-estimated
    conversion rate into a revenue opportunity report.
    """
    pass


@main.command()
@click.option("--url", "-u", required=True, help="Business website URL")
@click.option("--type", "-t", "business_type", required=True, help="Business type (e.g. roofing)")
@click.option("--location", "-l", required=True, help="Location (e.g. 'Austin, Texas')")
@click.option("--location-code", type=int, default=None, help="DataForSEO location code (see 'locate')")
@click.option("--customer-value", "-v", "customer_value", type=float, required=True, help="Average customer value")
@click.option("--scope", type=click.Choice(["local", "national"]), default="local", help="Analysis scope")
@click.option("--competitors", "-c", default=None, help="Competitor URLs (comma-separated); auto-detected if omitted")
@click.option("--top", default=20, help="Keywords to show in the table")
@click.option("--output", "-o", default=None, help="Write the full response to a .json file")
@click.option("--verbose", is_flag=True, help="Verbose output")
def report(
    url: str,
    business_type: str,
    location: str,
    location_code: int,
    customer_value: float,
    scope: str,
    competitors: str,
    top: int,
    output: str,
    verbose: bool,
):
    """
    Generate an SEO opportunity report.

    Examples:

        seo-opportunity report -u https://joesroofing.com -t roofing -l "Austin, Texas" -v 8000

        seo-opportunity report -u https://acme.com -t "accounting software" -l "United States" \\
            -v 1200 --scope national
    """
    setup_logging(verbose)
    settings = Settings.from_env()

    try:
        settings.require_dataforseo_credentials()
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if not settings.gemini_api_key:
        console.print("[yellow]GEMINI_API_KEY not set - using template keywords and rule-based conversion rates[/yellow]")

    request = AnalysisRequest(
        business_url=url,
        business_type=business_type,
        location=location,
        location_code=location_code,
        customer_value=customer_value,
        analysis_scope=scope,
        competitors=[c.strip() for c in competitors.split(",")] if competitors else [],
    )
    pipeline = ReportPipeline.from_settings(settings)

    console.print(f"\n[bold blue]🔍 Analyzing {url} ({business_type}, {location}, {scope})[/bold blue]\n")

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Collecting keywords, volumes and rankings...", total=None)
            response = asyncio.run(pipeline.run(request))
    except ValidationError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    except OpportunityError as e:
        console.print(f"[red]Error generating report: {e}[/red]")
        sys.exit(1)

    result = response.report

    summary = Table(show_header=False, title="Opportunity")
    summary.add_column("Metric", style="bold")
    summary.add_column("Value", justify="right", style="cyan")
    summary.add_row("Keywords analyzed", str(len(result.keyword_data)))
    summary.add_row("Monthly search volume", f"{result.total_search_volume:,}")
    summary.add_row("Potential traffic", f"{result.potential_traffic:,}")
    summary.add_row("Conversion rate", f"{result.conversion_rate:.2f}% ({result.conversion_rate_source})")
    summary.add_row("Potential customers", f"{result.potential_customers:,}")
    summary.add_row("Potential revenue", f"${result.potential_revenue:,.2f}")
    console.print(summary)

    rankings = Table(show_header=True, header_style="bold", title="Rankings")
    rankings.add_column("Domain", style="cyan")
    rankings.add_column("Top 3", justify="right")
    rankings.add_column("Top 10", justify="right")
    rankings.add_column("Top 50", justify="right")
    rankings.add_column("Top 100", justify="right")
    current = result.current_rankings
    rankings.add_row(url, str(current.top3), str(current.top10), str(current.top50), str(current.top100))
    for competitor in result.competitor_rankings:
        rankings.add_row(
            competitor.name,
            str(competitor.top3), str(competitor.top10), str(competitor.top50), str(competitor.top100),
        )
    console.print(rankings)

    keywords = Table(show_header=True, header_style="bold", title=f"Top {top} keywords")
    keywords.add_column("Keyword", style="cyan")
    keywords.add_column("Volume", justify="right")
    keywords.add_column("Your rank", justify="right", style="green")
    for competitor in response.competitors:
        keywords.add_column(competitor.name, justify="right", style="yellow")
    for entry in result.keyword_data[:top]:
        keywords.add_row(
            entry.keyword,
            f"{entry.search_volume:,}",
            _rank(entry.client_rank),
            *[_rank(entry.competitor_ranks.get(competitor.url)) for competitor in response.competitors],
        )
    console.print(keywords)

    console.print("\n[bold]Recommended actions:[/bold]")
    for action in result.analysis_insights.recommended_actions:
        console.print(f"  • {action}")

    if output:
        if output.endswith(".json"):
            with open(output, "w", encoding="utf-8") as f:
                json.dump(response.to_dict(), f, indent=2)
            console.print(f"\n[green]✓ Exported to {output}[/green]")
        else:
            console.print("[yellow]Unknown format. Use a .json extension.[/yellow]")


@main.command()
@click.argument("state")
@click.argument("city", required=False)
@click.option("--verbose", is_flag=True, help="Verbose output")
def locate(state: str, city: str, verbose: bool):
    """
    Resolve a US state (and optional city) to a DataForSEO location code.

    Examples:

        seo-opportunity locate texas austin

        seo-opportunity locate "new yrok"
    """
    setup_logging(verbose)
    settings = Settings.from_env()
    resolver = LocationResolver(
        DataForSEOClient.from_settings(settings),
        cache=LocationCache(settings.location_cache_ttl),
        threshold=settings.location_match_threshold,
    )

    try:
        match = asyncio.run(resolver.resolve(state, city))
    except OpportunityError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if not match.found:
        console.print(f'[red]State "{state}" not found[/red]')
        if match.suggestions:
            console.print(f"Did you mean: {', '.join(match.suggestions)}?")
        sys.exit(1)

    console.print(
        f"[green]✓[/green] {match.matched_name} → [bold]{match.code}[/bold] "
        f"[dim]({match.type}, {match.method}, score {match.score:.2f})[/dim]"
    )
    if match.warning:
        console.print(f"[yellow]{match.warning}[/yellow]")
        if match.suggestions:
            console.print(f"Similar cities: {', '.join(match.suggestions)}")


@main.command()
def check():
    """
    Check API key configuration.
    """
    console.print("\n[bold blue]🔑 SEO Opportunity - Configuration Check[/bold blue]\n")
    settings = Settings.from_env()

    console.print("[bold]Required:[/bold]")
    if settings.has_dataforseo_credentials():
        console.print(f"  [green]✓[/green] DATAFORSEO_LOGIN: Set ({settings.dataforseo_login[:8]}...)")
        console.print("  [green]✓[/green] DATAFORSEO_PASSWORD: Set")
    else:
        console.print("  [red]✗[/red] DATAFORSEO_LOGIN/PASSWORD: Not set")

    console.print("\n[bold]Optional:[/bold]")
    if settings.gemini_api_key:
        console.print(f"  [green]✓[/green] GEMINI_API_KEY: Set ({settings.gemini_api_key[:8]}...) → AI keywords")
    else:
        console.print("  [yellow]○[/yellow] GEMINI_API_KEY: Not set → template keywords, rule-based conversion rate")

    console.print("\n[bold]Setup Instructions:[/bold]")
    console.print("  export DATAFORSEO_LOGIN='your-email'")
    console.print("  export DATAFORSEO_PASSWORD='your-password'")
    console.print("")
    console.print("  # Optional: Gemini for keyword ideas, relevance filtering and conversion rates")
    console.print("  export GEMINI_API_KEY='your-gemini-api-key'")


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, help="Port")
@click.option("--verbose", is_flag=True, help="Verbose output")
def serve(host: str, port: int, verbose: bool):
    """
    Run the HTTP API.
    """
    import uvicorn

    from .api import create_app

    setup_logging(verbose)
    uvicorn.run(create_app(Settings.from_env()), host=host, port=port)


if __name__ == "__main__":
    main()
