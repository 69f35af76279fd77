import os

from dotenv import load_dotenv

load_dotenv()


CRAWL = {
    "max_pages": int(os.getenv("CRAWL_MAX_PAGES", "50")),
    "max_depth": int(os.getenv("CRAWL_MAX_DEPTH", "2")),
    "page_timeout_s": 30,
    "total_timeout_s": int(os.getenv("CRAWL_TOTAL_TIMEOUT_S", "600")),
    "min_pages_for_success": 1,
    # fixed politeness delay between fetches; not adaptive
    "request_delay_s": float(os.getenv("CRAWL_REQUEST_DELAY_S", "1.0")),
    "recrawl_cooldown_hours": int(os.getenv("RECRAWL_COOLDOWN_HOURS", "1")),
}

FETCHER = {
    "user_agent": (
        "Mozilla/5.0 (compatible; SiteBot/1.0; +https://sitebot.dev/bot) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "network_idle_timeout_s": 10,
    "dom_stable_poll_s": 0.2,
    "dom_stable_window_s": 0.5,
    "dom_stable_max_s": 3,
    # removed before reading visible text
    "strip_selectors": [
        "nav",
        "footer",
        "header",
        "script",
        "style",
        "noscript",
        "iframe",
        '[role="navigation"]',
        '[role="banner"]',
        '[role="contentinfo"]',
        ".cookie-banner",
        ".cookie-consent",
        "#cookie-banner",
        ".advertisement",
        ".ad-container",
    ],
    "hidden_selectors": [
        "[hidden]",
        '[style*="display: none"]',
        '[style*="display:none"]',
        '[style*="visibility: hidden"]',
        '[style*="visibility:hidden"]',
    ],
    # matched against fetch error messages
    "bot_block_signatures": ["403", "Access Denied", "Cloudflare"],
    # matched against the rendered page title
    "challenge_titles": ["Just a moment...", "Attention Required", "Access Denied"],
    "skip_extensions": [
        ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp",
        ".mp4", ".mp3", ".wav", ".zip", ".tar", ".gz", ".exe", ".dmg",
        ".css", ".js", ".mjs", ".woff", ".woff2", ".ttf", ".otf", ".ico",
        ".xml", ".json", ".yaml", ".yml",
    ],
}

CHUNKING = {
    "size_tokens": 500,
    "overlap_tokens": 50,
    "chars_per_token": 4,
    "sentence_lookback_chars": 200,
}

EMBEDDING = {
    "model": "jina-embeddings-v3",
    "task_doc": "retrieval.passage",
    "task_query": "retrieval.query",
    "batch_size": 100,
    "batch_delay_s": 0.1,
    "retry_attempts": 3,
    "retry_base_delay_s": 1.0,
    "dimensions": 1024,
}

VECTOR_DB = {
    "collection": os.getenv("ZILLIZ_COLLECTION", "site_knowledge"),
    "distance": "cosine",
    "dimensions": 1024,
    "upsert_batch_size": 100,
}

RETRIEVAL = {
    "top_k": 5,
    "max_chunks": 3,
    "default_similarity_threshold": 0.5,
}

LLM = {
    "max_tokens": 500,
    "temperature": 0.3,
    "no_answer": "noAnswer",
    "history_messages": 6,
}

RATE_LIMITS = {
    "session_default_limit": 15,
    "session_ttl_s": 24 * 3600,
    "ip_limit": 50,
    "ip_ttl_s": 3600,
}

CACHE = {
    "progress_ttl_s": 3600,
    "api_key_ttl_s": 300,
}

JOBS = {
    "broker_url": os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    "queue": "site-crawl",
    "worker_concurrency": 2,
}

DATABASE = {
    "url": os.getenv("DATABASE_URL", "sqlite:///./sitebot.db"),
}
