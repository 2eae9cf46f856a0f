"""Project-wide constants."""

from pathlib import Path

# -- Base client defaults ---------------------------------------------------
DEFAULT_TIMEOUT: float = 60.0

# -- Persisted settings -----------------------------------------------------
# Anchored to the user's home directory so the CLI and library calls share
# one settings document regardless of the working directory.
DEFAULT_SETTINGS_FILE: Path = Path.home() / ".paper_writer" / "settings.json"
SETTINGS_KEY: str = "paperwriter-settings"
CUSTOM_PROMPTS_KEY: str = "customPromptTemplates"

# -- PubMed / NCBI ----------------------------------------------------------
NCBI_BASE_URL: str = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
PUBMED_MAX_RPS: int = 3  # NCBI ceiling without an API key
PUBMED_RETMAX: int = 20
PUBMED_MAX_RETRIES: int = 2
PUBMED_BASE_DELAY: float = 0.4  # seconds
PUBMED_MAX_DELAY: float = 2.0  # seconds
PUBMED_EMPTY_FETCH: str = "<Empty/>"
PUBMED_ARTICLE_URL: str = "https://pubmed.ncbi.nlm.nih.gov"
PUBMED_SORT_ORDERS: tuple[str, ...] = (
    "most+recent",
    "pub+date",
    "relevance",
    "author",
    "journal",
    "title",
)
RATE_LIMIT_WINDOW: float = 1.0  # seconds

# -- LLM providers ----------------------------------------------------------
OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
OPENROUTER_DEFAULT_MODEL: str = "openai/gpt-4o"
OPENROUTER_DEFAULT_TEMPERATURE: float = 0.7
OPENROUTER_DEFAULT_MAX_TOKENS: int = 2000
OPENROUTER_SITE_NAME: str = "Paper Writer Assistant"
LLM_DEFAULT_TEMPERATURE: float = 0.7
LLM_DEFAULT_MAX_TOKENS: int = 8192
CHAT_MAX_RETRIES: int = 3
CHAT_RETRY_DELAY: float = 1.0  # seconds
LLM_TIMEOUT: float = 300.0  # seconds; long generations stream for minutes

# -- Streaming protocol -----------------------------------------------------
SSE_DATA_PREFIX: str = "data: "
SSE_DONE_SENTINEL: str = "[DONE]"

# -- Diagnostics ------------------------------------------------------------
ERROR_BODY_PREVIEW: int = 200
