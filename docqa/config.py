"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DOCQA_DATA_DIR", str(BASE_DIR / "data")))

# Persisted index artifacts
VECTOR_INDEX_PATH = DATA_DIR / "vector-index.json"
GUIDE_CHUNKS_PATH = DATA_DIR / "guide-chunks.json"
GUIDE_EMBEDDINGS_PATH = DATA_DIR / "guide-embeddings.json"

# Embedding service (OpenAI-compatible /embeddings endpoint)
EMBEDDING_BASE_URL = os.getenv("EMBEDDING_BASE_URL", "https://api.openai.com/v1")
EMBEDDING_API_KEY = os.getenv("EMBEDDING_API_KEY", os.getenv("OPENAI_API_KEY", ""))
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "60.0"))

# Embedding generation (batches run in waves of concurrent requests)
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "20"))
DRIVE_EMBED_BATCH_SIZE = int(os.getenv("DRIVE_EMBED_BATCH_SIZE", "50"))
EMBED_MAX_CONCURRENT_BATCHES = int(os.getenv("EMBED_MAX_CONCURRENT_BATCHES", "3"))
EMBED_WAVE_DELAY = float(os.getenv("EMBED_WAVE_DELAY", "1.0"))  # seconds

# Chunking (character-based to avoid tokenizer inconsistencies)
DRIVE_CHUNK_SIZE = int(os.getenv("DRIVE_CHUNK_SIZE", "300"))
GUIDE_CHUNK_SIZE = int(os.getenv("GUIDE_CHUNK_SIZE", "1500"))
GUIDE_CHUNK_OVERLAP = int(os.getenv("GUIDE_CHUNK_OVERLAP", "200"))
GUIDE_BOUNDARY_LOOKAHEAD = int(os.getenv("GUIDE_BOUNDARY_LOOKAHEAD", "100"))
MIN_CHUNK_SIZE = int(os.getenv("MIN_CHUNK_SIZE", "50"))

# Fragments outside these bounds are excluded before indexing
MIN_FRAGMENT_CHARS = int(os.getenv("MIN_FRAGMENT_CHARS", "50"))
MAX_FRAGMENT_CHARS = int(os.getenv("MAX_FRAGMENT_CHARS", "5000"))

# Keyword fallback scoring. Empirical weights; the raw tally is divided by
# KEYWORD_NORMALIZER so it can be merged with cosine similarities.
KEYWORD_CONTENT_WEIGHT = int(os.getenv("KEYWORD_CONTENT_WEIGHT", "2"))
KEYWORD_TITLE_WEIGHT = int(os.getenv("KEYWORD_TITLE_WEIGHT", "3"))
KEYWORD_TOPIC_WEIGHT = int(os.getenv("KEYWORD_TOPIC_WEIGHT", "2"))
KEYWORD_NORMALIZER = float(os.getenv("KEYWORD_NORMALIZER", "10"))
KEYWORD_MIN_WORD_LENGTH = 3

# Retrieval
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "4000"))

# Google Drive document store
DRIVE_API_URL = os.getenv("DRIVE_API_URL", "https://www.googleapis.com/drive/v3")
DOCS_API_URL = os.getenv("DOCS_API_URL", "https://docs.googleapis.com/v1")
DRIVE_FOLDER_ID = os.getenv("DRIVE_FOLDER_ID", "")
DRIVE_ACCESS_TOKEN = os.getenv("DRIVE_ACCESS_TOKEN", "")
DRIVE_MAX_DEPTH = int(os.getenv("DRIVE_MAX_DEPTH", "10"))
DRIVE_TIMEOUT = float(os.getenv("DRIVE_TIMEOUT", "30.0"))

# Documentation site
DOCS_SITE_URL = os.getenv("DOCS_SITE_URL", "https://kolibri.readthedocs.io/en/latest/")
SCRAPE_DELAY = float(os.getenv("SCRAPE_DELAY", "1.0"))  # seconds between requests
SCRAPE_MAX_PAGES = int(os.getenv("SCRAPE_MAX_PAGES", "50"))
SCRAPE_TIMEOUT = float(os.getenv("SCRAPE_TIMEOUT", "20.0"))
SCRAPE_MIN_PAGE_CHARS = 100

# Topic tags attached to scraped-page fragments
MAX_TOPICS = 10
TOPIC_TERMS = [
    term.strip()
    for term in os.getenv(
        "TOPIC_TERMS",
        "kolibri,installation,setup,configuration,management,users,classes,"
        "facilities,channels,resources,permissions,command,line,performance,"
        "troubleshooting,network,windows,linux,macos,android,raspberry,debian,ubuntu",
    ).split(",")
    if term.strip()
]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
