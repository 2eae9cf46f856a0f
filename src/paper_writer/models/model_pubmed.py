"""
Pydantic models for PubMed data.

These are the data contracts between the PubMed client and its callers.
Callers receive these models - they never see raw E-utilities envelopes.
"""

from typing import Literal

from pydantic import BaseModel


class SearchResult(BaseModel):
    """One ESearch page."""

    count: int = 0  # total matches reported by NCBI; may exceed len(pmids)
    pmids: list[str] = []  # in the requested sort order


class SummaryEntry(BaseModel):
    """ESummary metadata for a single PMID."""

    pmid: str
    title: str | None = None
    journal: str | None = None  # full journal name
    pubdate: str | None = None  # free-form, e.g. "2021 Mar 25"
    authors: list[str] = []
    doi: str | None = None


class PubmedAbstract(BaseModel):
    """A single EFetch article parsed from XML."""

    pmid: str
    title: str | None = None
    abstract: str | None = None  # labelled sections joined with spaces
    authors: list[str] = []  # "Last, Fore"
    journal: str | None = None
    pub_date: str | None = None  # "YYYY", "YYYY-Mon" or "YYYY-Mon-DD", or a MedlineDate
    doi: str | None = None
    mesh_terms: list[str] = []
    keywords: list[str] = []


CitationType = Literal["article", "book", "inproceedings", "webpage", "misc"]


class Citation(BaseModel):
    """A reference record as stored with a draft."""

    id: str
    title: str
    authors: list[str] = []
    year: int | None = None
    journal: str | None = None
    volume: str | None = None
    issue: str | None = None
    pages: str | None = None
    doi: str | None = None
    url: str | None = None
    type: CitationType = "article"
    abstract: str | None = None
    notes: str = ""
    summary: str | None = None
    date_added: str = ""
