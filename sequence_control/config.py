"""Sequence Control configuration — loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Root of the repo
REPO_ROOT = Path(__file__).resolve().parent.parent

# Sequence authoring files (YAML) synced into the definition store
SEQUENCES_DIR = Path(__file__).resolve().parent / "sequences"

# Static trigger catalog: hashtag aliases, cancel sets, suppression sets
TRIGGERS_FILE = Path(os.environ.get("TRIGGERS_FILE", str(REPO_ROOT / "config" / "triggers.yaml")))

# Supabase
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")

# Chat gateway (outbound sends)
WA_GATEWAY_URL = os.environ.get("WA_GATEWAY_URL", "")
WA_GATEWAY_TOKEN = os.environ.get("WA_GATEWAY_TOKEN", "")
SEND_TIMEOUT_SECONDS = float(os.environ.get("SEND_TIMEOUT_SECONDS", "60"))

# Webhook secret (inbound bridge → Sequence Control auth)
WEBHOOK_SECRET = os.environ.get("WEBHOOK_SECRET", "")

# Enrollment
DEFAULT_TRIGGER = os.environ.get("DEFAULT_TRIGGER", "NuevoLead")
AUTO_SAVE_CONTACTS = os.environ.get("AUTO_SAVE_CONTACTS", "true").lower() == "true"
OPT_OUT_KEYWORDS = frozenset(
    k.strip().lower()
    for k in os.environ.get("OPT_OUT_KEYWORDS", "stop,baja,alto").split(",")
    if k.strip()
)

# Dispatch
DISPATCH_INTERVAL_SECONDS = int(os.environ.get("DISPATCH_INTERVAL_SECONDS", "60"))
DISPATCH_PAGE_SIZE = int(os.environ.get("DISPATCH_PAGE_SIZE", "100"))
SEND_DELAY_MS = int(os.environ.get("SEND_DELAY_MS", "350"))
SHARD_COUNT = int(os.environ.get("SHARD_COUNT", "10"))
STEP_TIEBREAK_MS = int(os.environ.get("STEP_TIEBREAK_MS", "250"))

# Server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
