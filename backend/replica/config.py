"""
Runtime configuration, read from the environment (and a .env file when present)
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Remote browser credentials (optional; local Playwright is used when absent)
BROWSERBASE_API_KEY = os.getenv("BROWSERBASE_API_KEY")
BROWSERBASE_PROJECT_ID = os.getenv("BROWSERBASE_PROJECT_ID")

USER_AGENT = os.getenv(
    "REPLICA_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
)

# Network timeouts (seconds)
FETCH_TIMEOUT = float(os.getenv("REPLICA_FETCH_TIMEOUT", "15"))
TEXT_ASSET_TIMEOUT = float(os.getenv("REPLICA_TEXT_TIMEOUT", "10"))
BINARY_ASSET_TIMEOUT = float(os.getenv("REPLICA_BINARY_TIMEOUT", "15"))
PROBE_TIMEOUT = float(os.getenv("REPLICA_PROBE_TIMEOUT", "5"))
STRUCTURED_TIMEOUT = float(os.getenv("REPLICA_STRUCTURED_TIMEOUT", "10"))
CAPTURE_TIMEOUT_MS = int(os.getenv("REPLICA_CAPTURE_TIMEOUT_MS", "30000"))

# Relays returning less than this many characters are treated as stub pages
MIN_DOCUMENT_SIZE = int(os.getenv("REPLICA_MIN_DOCUMENT_SIZE", "100"))

# Relay endpoints tried in order before the direct request.
# {url} receives the percent-encoded target URL.
RELAY_ENDPOINTS = [
    ("AllOrigins", "https://api.allorigins.win/raw?url={url}"),
    ("CorsProxy.io", "https://corsproxy.io/?{url}"),
    ("CodeTabs", "https://api.codetabs.com/v1/proxy?quest={url}"),
    ("ThingProxy", "https://thingproxy.freeboard.io/fetch/{url}"),
]

# Asset pipeline caps per class
MAX_STYLESHEETS = 10
MAX_SCRIPTS = 10
MAX_IMAGES = 30
MAX_BACKGROUND_IMAGES = 10
MAX_FONTS = 10

# Structured content caps
MAX_POSTS = int(os.getenv("REPLICA_MAX_POSTS", "50"))
MAX_PAGES = int(os.getenv("REPLICA_MAX_PAGES", "50"))
MAX_BLOCK_DEPTH = 10

# Rate limiting: clones per window (seconds)
RATE_LIMIT = int(os.getenv("REPLICA_RATE_LIMIT", "10"))
RATE_WINDOW = float(os.getenv("REPLICA_RATE_WINDOW", "3600"))

# Retry policy for rendering and external audit calls
CAPTURE_ATTEMPTS = int(os.getenv("REPLICA_CAPTURE_ATTEMPTS", "3"))
AUDIT_ATTEMPTS = int(os.getenv("REPLICA_AUDIT_ATTEMPTS", "3"))
RETRY_BASE_DELAY = float(os.getenv("REPLICA_RETRY_BASE_DELAY", "1.0"))

# Optional external performance audit endpoint (POST {"url": ...} -> {"performanceScore": int})
AUDIT_URL = os.getenv("REPLICA_AUDIT_URL")

LOG_LEVEL = os.getenv("REPLICA_LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("REPLICA_LOG_FILE")
