"""Command-line interface for Paper Writer."""

import asyncio
import json
import logging
from pathlib import Path

import click
from dotenv import load_dotenv

from paper_writer.config import ConfigurationError, get_llm_settings, get_settings
from paper_writer.constants import PUBMED_RETMAX, PUBMED_SORT_ORDERS
from paper_writer.data_sources.base_client import ClientConfig, DataSourceError
from paper_writer.data_sources.pubmed import (
    PubMedClient,
    parse_pubmed_xml,
    summary_to_citation,
)
from paper_writer.models.model_llm import LLMConfig
from paper_writer.services.diff import RichDiffEngine, SimpleDiffEngine
from paper_writer.services.llm import LLMError, LLMTransport
from paper_writer.services.openrouter import ChatOrchestrator, OpenRouterConfig
from paper_writer.services.prompts import PromptLoader
from paper_writer.services.revision import RevisionPipeline
from paper_writer.utils.storage import JsonFileStore


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _pubmed_client() -> PubMedClient:
    settings = get_settings()
    return PubMedClient(
        api_key=settings.ncbi_api_key or None,
        max_rps=settings.pubmed_max_rps,
        config=ClientConfig(timeout_seconds=settings.request_timeout),
    )


def _load_llm_config() -> LLMConfig:
    try:
        return get_llm_settings(JsonFileStore(get_settings().settings_file))
    except ConfigurationError as e:
        raise click.ClickException(str(e))


def _run(coro):
    try:
        return asyncio.run(coro)
    except (DataSourceError, LLMError) as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(package_name="paper-writer")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
def main(verbose: bool):
    """Paper Writer: PubMed lookup and AI revision for academic drafts."""
    load_dotenv()
    level = logging.DEBUG if verbose else get_settings().log_level.upper()
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


# ---------------------------------------------------------------------------
# PubMed
# ---------------------------------------------------------------------------


@main.command()
@click.argument("term")
@click.option("-n", "--retmax", default=PUBMED_RETMAX, show_default=True, help="Page size")
@click.option("--retstart", default=0, show_default=True, help="Offset of the page")
@click.option("--sort", type=click.Choice(PUBMED_SORT_ORDERS), help="Sort order")
@click.option("--mindate", help="Earliest date, YYYY/MM/DD")
@click.option("--maxdate", help="Latest date, YYYY/MM/DD")
@click.option(
    "--datetype",
    type=click.Choice(["pdat", "edat", "mdat"]),
    default="pdat",
    show_default=True,
)
def search(
    term: str,
    retmax: int,
    retstart: int,
    sort: str | None,
    mindate: str | None,
    maxdate: str | None,
    datetype: str,
):
    """Search PubMed and print the total count and a page of PMIDs."""

    async def go():
        async with _pubmed_client() as client:
            return await client.search(
                term,
                retmax=retmax,
                retstart=retstart,
                sort=sort,
                mindate=mindate,
                maxdate=maxdate,
                datetype=datetype,
            )

    _echo_json(_run(go()).model_dump())


@main.command()
@click.argument("pmids", nargs=-1, required=True)
@click.option("--citations", is_flag=True, help="Print Citation records instead")
def summary(pmids: tuple[str, ...], citations: bool):
    """Print summary metadata for PMIDS."""

    async def go():
        async with _pubmed_client() as client:
            return await client.summaries(list(pmids))

    entries = _run(go())
    if citations:
        _echo_json([summary_to_citation(e).model_dump() for e in entries])
    else:
        _echo_json([e.model_dump() for e in entries])


@main.command()
@click.argument("pmids", nargs=-1, required=True)
@click.option("--parse", "parse_xml", is_flag=True, help="Print parsed abstracts as JSON")
def fetch(pmids: tuple[str, ...], parse_xml: bool):
    """Print the EFetch XML for PMIDS."""

    async def go():
        async with _pubmed_client() as client:
            return await client.fetch_raw(list(pmids))

    xml_text = _run(go())
    if parse_xml:
        try:
            articles = parse_pubmed_xml(xml_text)
        except DataSourceError as e:
            raise click.ClickException(str(e))
        _echo_json([a.model_dump() for a in articles])
    else:
        click.echo(xml_text)


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------


@main.command()
@click.argument("source", type=click.File("r"))
@click.option("-i", "--instruction", help="Skip review and revise with this instruction")
@click.option(
    "-c", "--context", "context_file", type=click.File("r"), help="Full document for context"
)
@click.option("--diff", "show_diff", is_flag=True, help="Print a word diff (HTML)")
@click.option("--simple-diff", is_flag=True, help="Use positional word comparison")
def revise(source, instruction, context_file, show_diff: bool, simple_diff: bool):
    """Review and revise the text in SOURCE ('-' for stdin)."""
    text = source.read()
    document = context_file.read() if context_file else None
    config = _load_llm_config()
    engine = SimpleDiffEngine() if simple_diff else RichDiffEngine()

    async def go():
        async with LLMTransport(config) as transport:
            pipeline = RevisionPipeline(transport, diff_engine=engine)
            if instruction:
                result = await pipeline.perform_custom_revision(text, instruction, document)
                return result.reviewer_assessment, result.revised_text
            verdict = await pipeline.perform_ai_revision(text, document)
            status = "Revised" if verdict.needs_revision else "No revision needed"
            return f"{status}: {verdict.reason}", verdict.revised_text or text

    assessment, revised = _run(go())
    click.echo(assessment, err=True)
    if show_diff:
        click.echo(engine.diff(text, revised))
    else:
        click.echo(revised)


@main.command("fact-check")
@click.argument("source", type=click.File("r"))
@click.option(
    "-c", "--context", "context_file", type=click.File("r"), help="Full document for context"
)
def fact_check(source, context_file):
    """Fact-check the text in SOURCE ('-' for stdin)."""
    text = source.read()
    document = context_file.read() if context_file else None
    config = _load_llm_config()

    async def go():
        async with LLMTransport(config) as transport:
            return await RevisionPipeline(transport).perform_fact_check(text, document)

    click.echo(_run(go()).analysis)


@main.command("validate-key")
@click.option("--api-key", help="Key to check (default: the configured OpenRouter key)")
def validate_key(api_key: str | None):
    """Check an OpenRouter API key by listing models with it."""
    settings = get_settings()
    if not api_key:
        api_key = _load_llm_config().api_key

    config = OpenRouterConfig(
        api_key=api_key,
        site_url=settings.openrouter_site_url,
        site_name=settings.openrouter_site_name,
    )

    async def go():
        async with ChatOrchestrator(config) as orchestrator:
            return await orchestrator.validate_api_key()

    if asyncio.run(go()):
        click.echo("API key is valid")
    else:
        raise click.ClickException("API key is invalid")


@main.command()
@click.argument("prompt_id")
@click.option(
    "--var", "variables", multiple=True, metavar="NAME=VALUE", help="Template variable"
)
@click.option(
    "--dir",
    "templates_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Template directory (default: the prompts_dir setting)",
)
def prompt(prompt_id: str, variables: tuple[str, ...], templates_dir: Path | None):
    """Render the prompt template PROMPT_ID."""
    settings = get_settings()
    templates_dir = templates_dir or settings.prompts_dir
    if templates_dir is None:
        raise click.ClickException(
            "No prompt directory configured. Set PAPER_WRITER_PROMPTS_DIR or pass --dir."
        )

    values = {}
    for item in variables:
        name, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected NAME=VALUE, got {item!r}", param_hint="--var")
        values[name] = value

    loader = PromptLoader(templates_dir, overrides=JsonFileStore(settings.settings_file))
    try:
        click.echo(loader.render(prompt_id, values))
    except OSError as e:
        raise click.ClickException(f"Cannot load prompt {prompt_id!r}: {e}")


if __name__ == "__main__":
    main()
