"""
PubMed API client.

Three methods, all routed through one rate-limited, retrying request path:
  1. search: Find PMIDs matching a query (ESearch, one page)
  2. summaries: Batch metadata for given PMIDs (ESummary)
  3. fetch_raw: Raw XML records for given PMIDs (EFetch)

Plus two caller-side helpers: `parse_pubmed_xml` for EFetch payloads and
`summary_to_citation` for turning summaries into Citation records.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Any

from paper_writer.constants import (
    NCBI_BASE_URL,
    PUBMED_ARTICLE_URL,
    PUBMED_EMPTY_FETCH,
    PUBMED_MAX_RPS,
    PUBMED_RETMAX,
    PUBMED_SORT_ORDERS,
)
from paper_writer.data_sources.base_client import (
    BaseClient,
    ClientConfig,
    DataSourceError,
    RateLimitConfig,
    RequestContext,
)
from paper_writer.models.model_pubmed import (
    Citation,
    PubmedAbstract,
    SearchResult,
    SummaryEntry,
)
from paper_writer.utils.retry import RetryPolicy


class PubMedClient(BaseClient):
    """
    Client for the NCBI E-utilities PubMed endpoints.

    Requests are capped at ``max_rps`` per one-second window (3 by default,
    the NCBI ceiling without an API key).  Batches are sent as given: callers
    chunk id lists that exceed what NCBI accepts in one request.
    """

    def __init__(
        self,
        api_key: str | None = None,
        max_rps: int = PUBMED_MAX_RPS,
        base_url: str = NCBI_BASE_URL,
        retry: RetryPolicy | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        config = config or ClientConfig()
        updates: dict[str, Any] = {
            "rate_limit": RateLimitConfig(
                requests_per_window=max_rps,
                window_seconds=config.rate_limit.window_seconds,
            )
        }
        if retry is not None:
            updates["retry"] = retry
        super().__init__(config.model_copy(update=updates))
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def _source_name(self) -> str:
        return "pubmed"

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def _params(self, **params: Any) -> dict[str, str]:
        return self.clean_params({**params, "api_key": self.api_key})

    async def search(
        self,
        term: str,
        retmax: int = PUBMED_RETMAX,
        retstart: int = 0,
        sort: str | None = None,
        mindate: str | None = None,
        maxdate: str | None = None,
        datetype: str = "pdat",
        timeout: float | None = None,
    ) -> SearchResult:
        """
        ESearch: one page of PMIDs for ``term``.

        ``mindate``/``maxdate`` take NCBI's "YYYY/MM/DD" form and apply to
        ``datetype`` ("pdat" publication, "edat" entry, "mdat" modification).
        Missing fields in the envelope read as a zero count / empty page.
        """
        if sort is not None and sort not in PUBMED_SORT_ORDERS:
            raise ValueError(
                f"Unsupported sort order {sort!r}; expected one of {PUBMED_SORT_ORDERS}"
            )
        params = self._params(
            db="pubmed",
            term=term,
            retmax=retmax,
            retstart=retstart,
            retmode="json",
            sort=sort,
            mindate=mindate,
            maxdate=maxdate,
            datetype=datetype,
        )
        data = await self._rest_get(
            self._url("esearch.fcgi"),
            params,
            timeout=timeout,
            context=RequestContext(source=self._source_name, method="search"),
        )
        result = (data or {}).get("esearchresult") or {}
        return SearchResult(
            count=int(result.get("count") or 0),
            pmids=list(result.get("idlist") or []),
        )

    async def summaries(
        self, pmids: list[str], timeout: float | None = None
    ) -> list[SummaryEntry]:
        """
        ESummary: metadata for ``pmids`` in the order given.

        PMIDs that NCBI does not return are skipped, so the result can be
        shorter than the input.
        """
        if not pmids:
            return []

        params = self._params(db="pubmed", id=",".join(pmids), retmode="json")
        data = await self._rest_get(
            self._url("esummary.fcgi"),
            params,
            timeout=timeout,
            context=RequestContext(
                source=self._source_name, method="summaries", params={"n": len(pmids)}
            ),
        )
        result = (data or {}).get("result") or {}

        entries: list[SummaryEntry] = []
        for pmid in pmids:
            item = result.get(pmid)
            if not isinstance(item, dict):
                continue
            doi = next(
                (
                    a.get("value")
                    for a in item.get("articleids") or []
                    if a.get("idtype") == "doi"
                ),
                None,
            )
            entries.append(
                SummaryEntry(
                    pmid=pmid,
                    title=item.get("title"),
                    journal=item.get("fulljournalname"),
                    pubdate=item.get("pubdate"),
                    authors=[
                        a["name"] for a in item.get("authors") or [] if a.get("name")
                    ],
                    doi=doi,
                )
            )
        return entries

    async def fetch_raw(self, pmids: list[str], timeout: float | None = None) -> str:
        """EFetch: raw XML for ``pmids``.  NCBI offers no JSON for PubMed records."""
        if not pmids:
            return PUBMED_EMPTY_FETCH

        params = self._params(db="pubmed", id=",".join(pmids), retmode="xml")
        return await self._rest_get_xml(
            self._url("efetch.fcgi"),
            params,
            timeout=timeout,
            context=RequestContext(
                source=self._source_name, method="fetch_raw", params={"n": len(pmids)}
            ),
        )

    async def fetch_abstracts(
        self, pmids: list[str], timeout: float | None = None
    ) -> list[PubmedAbstract]:
        """EFetch and parse in one step."""
        if not pmids:
            return []
        return parse_pubmed_xml(await self.fetch_raw(pmids, timeout=timeout))


# ---------------------------------------------------------------------------
# Caller-side helpers
# ---------------------------------------------------------------------------


def parse_pubmed_xml(xml_text: str) -> list[PubmedAbstract]:
    """
    Parse an EFetch XML payload into PubmedAbstract objects.

    Records without a PMID are dropped.  The DOI comes from the record's own
    ArticleIdList (not its reference list), falling back to the article's
    ELocationID, so it matches what ESummary reports for the same PMID.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise DataSourceError("pubmed", f"Failed to parse XML: {e}")

    return [
        article
        for record in root.iter("PubmedArticle")
        if (article := _article_from_record(record)) is not None
    ]


def _article_from_record(record: ET.Element) -> PubmedAbstract | None:
    citation = record.find("MedlineCitation")
    if citation is None:
        return None
    pmid = _xml_text(citation, "PMID")
    if not pmid:
        return None

    article = citation.find("Article")
    if article is None:
        article = ET.Element("Article")

    return PubmedAbstract(
        pmid=pmid,
        title=_joined_text(article.find("ArticleTitle")),
        abstract=_abstract_text(article),
        authors=_author_names(article),
        journal=_xml_text(article, "Journal/Title"),
        pub_date=_pub_date(article.find("Journal/JournalIssue/PubDate")),
        doi=_record_doi(record, article),
        mesh_terms=_texts(citation, "MeshHeadingList/MeshHeading/DescriptorName"),
        keywords=_texts(citation, "KeywordList/Keyword"),
    )


def _abstract_text(article: ET.Element) -> str | None:
    """Sections joined with spaces; labelled ones read "LABEL: text"."""
    sections = []
    for section in article.findall("Abstract/AbstractText"):
        text = _joined_text(section)
        if not text:
            continue
        label = section.get("Label")
        sections.append(f"{label}: {text}" if label else text)
    return " ".join(sections) or None


def _author_names(article: ET.Element) -> list[str]:
    names = []
    for author in article.findall("AuthorList/Author"):
        last_name = _xml_text(author, "LastName")
        if last_name is None:
            collective = _xml_text(author, "CollectiveName")
            if collective:
                names.append(collective)
            continue
        fore_name = _xml_text(author, "ForeName")
        names.append(f"{last_name}, {fore_name}" if fore_name else last_name)
    return names


def _pub_date(pub_date: ET.Element | None) -> str | None:
    """Year, Month and Day joined with dashes, or the free-form MedlineDate."""
    if pub_date is None:
        return None
    year = _xml_text(pub_date, "Year")
    if not year:
        return _xml_text(pub_date, "MedlineDate")
    parts = [year]
    for tag in ("Month", "Day"):
        value = _xml_text(pub_date, tag)
        if not value:
            break
        parts.append(value)
    return "-".join(parts)


def _record_doi(record: ET.Element, article: ET.Element) -> str | None:
    for article_id in record.findall("PubmedData/ArticleIdList/ArticleId"):
        if article_id.get("IdType") == "doi" and (doi := _joined_text(article_id)):
            return doi
    for location in article.findall("ELocationID"):
        if location.get("EIdType") == "doi" and (doi := _joined_text(location)):
            return doi
    return None


def summary_to_citation(entry: SummaryEntry, abstract: str | None = None) -> Citation:
    """Build the Citation record a draft stores for an imported PubMed entry."""
    year_match = re.search(r"\b(\d{4})\b", entry.pubdate or "")
    return Citation(
        id=f"pmid:{entry.pmid}",
        title=(entry.title or "").rstrip(".") or f"PMID {entry.pmid}",
        authors=list(entry.authors),
        year=int(year_match.group(1)) if year_match else None,
        journal=entry.journal,
        doi=entry.doi,
        url=f"{PUBMED_ARTICLE_URL}/{entry.pmid}/",
        type="article",
        abstract=abstract,
        notes="",
        date_added=datetime.now().isoformat(),
    )


def _xml_text(elem: ET.Element, path: str) -> str | None:
    """Safely extract text from an XML element."""
    found = elem.find(path)
    if found is None or not found.text:
        return None
    return found.text.strip() or None


def _joined_text(elem: ET.Element | None) -> str | None:
    """All text under `elem`, inline markup such as <i> flattened."""
    if elem is None:
        return None
    return "".join(elem.itertext()).strip() or None


def _texts(elem: ET.Element, path: str) -> list[str]:
    return [text for found in elem.findall(path) if (text := _joined_text(found))]
