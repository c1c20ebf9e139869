"""
Restyle Configuration Module
Centralized configuration for the model orchestration core.

Values here are module constants. The chunking, sampling and engine
sections can be overridden from config/restyle.yaml (see load_settings()).
"""

import os
from pathlib import Path

import yaml

# Debug Mode Configuration
DEBUG_MODE = os.environ.get('DEBUG', 'false').lower() == 'true'

# Application Paths
APP_NAME = "Restyle"
_default_home = Path(os.environ.get('APPDATA', os.path.expanduser('~/.config'))) / APP_NAME
APPDATA_DIR = Path(os.environ.get('RESTYLE_HOME', str(_default_home)))
MODELS_DIR = APPDATA_DIR / "models"
BASES_DIR = MODELS_DIR / "base-models"
VOICES_DIR = MODELS_DIR / "voices"
LLAMA_BINARIES_DIR = APPDATA_DIR / "llama-binaries"
LOGS_DIR = APPDATA_DIR / "logs"

# Ensure directories exist
for directory in [APPDATA_DIR, MODELS_DIR, BASES_DIR, VOICES_DIR,
                  LLAMA_BINARIES_DIR, LOGS_DIR]:
    directory.mkdir(parents=True, exist_ok=True)

# Binaries shipped next to the package (checked before LLAMA_BINARIES_DIR)
BUNDLED_BINARIES_DIR = Path(
    os.environ.get('RESTYLE_BINARIES', str(Path(__file__).parent.parent / "llama-binaries"))
)

PREFERENCES_FILE = APPDATA_DIR / "preferences.json"

# Remote Model Repository (Hugging Face compatible)
HF_ENDPOINT = os.environ.get('HF_ENDPOINT', "https://huggingface.co")
HF_API_BASE = f"{HF_ENDPOINT}/api/models"
HF_ORG = "Rewritelikeme"
CATALOG_CACHE_TTL_SECONDS = 10 * 60
CATALOG_PAGE_SIZE_DEFAULT = 20
CATALOG_PAGE_SIZE_MAX = 50
REPOSITORY_TIMEOUT_SECONDS = 30

# On-disk artifact names
INFO_FILE = "info.json"
README_FILE = "README.md"
BASE_WEIGHTS_FILE = "model.gguf"
ADAPTER_WEIGHTS_FILE = "adapter.gguf"
SYSTEM_PROMPT_FILE = "system_prompt.txt"
STYLEGUIDE_FILE = "styleguide.txt"
INSTALL_MANIFEST_FILE = "installed.json"

# Verification thresholds
MIN_BASE_WEIGHTS_BYTES = 100 * 1024 * 1024
MIN_ADAPTER_WEIGHTS_BYTES = 1 * 1024 * 1024

# Downloads
DOWNLOAD_BLOCK_SIZE = 64 * 1024
DOWNLOAD_MAX_CONCURRENT = 2
DOWNLOAD_PROGRESS_THROTTLE_MS = 100

# Inference Engine (llama.cpp server)
ENGINE_BINARY_NAME = "llama-server"
ENGINE_HOST = "127.0.0.1"
ENGINE_PORT_START = 33333
ENGINE_PORT_MAX_TRIES = 20
ENGINE_PORT_PROBE_TIMEOUT_SECONDS = 0.3
ENGINE_LIVE_TIMEOUT_SECONDS = 20
ENGINE_LIVE_POLL_SECONDS = 0.2
ENGINE_READY_TIMEOUT_SECONDS = 60
ENGINE_READY_POLL_SECONDS = 0.4
ENGINE_CHAT_TEMPLATE = "mistral-v1"
ENGINE_CHAT_PATH = "/v1/chat/completions"
ENGINE_REQUEST_TIMEOUT_SECONDS = 600

# Text Chunking
CHUNK_MAX_CHARS = 830
CHUNK_MIN_CHARS = 0
CHUNK_BOUNDARY_CHARS = (".", "!", "?", "\n")
CHUNK_LOOKAHEAD_CHARS = 300
CHUNK_BACKSCAN_CHARS = 50
CHUNK_NUDGE_CHARS = 50

# Rewrite prompt and tag markers
DEFAULT_STYLE_PROMPT = "You are a helpful assistant."
REWRITE_OPEN_TAG = "<rephrase>"
REWRITE_CLOSE_TAG = "</rephrase>"
OPEN_TAG_SEARCH_WINDOW = 64
CLOSE_TAG_OVERLAP = 12
REWRITE_STOP_SEQUENCES = ["</rephrase>", "<input>", "</input>"]

# Sampling defaults sent with every chunk request
SAMPLING_DEFAULTS = {
    'temperature': 1.2,
    'top_k': 40,
    'top_p': 0.9,
    'min_p': 0.2,
    'repeat_penalty': 1.1,
    'max_tokens': 2048,
}

# Logging Configuration
LOG_FILE = LOGS_DIR / "processing.log"
DEBUG_FLOW_FILE = LOGS_DIR / "debug_flow.txt"
LOG_FORMAT = "[%(levelname)s %(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

# --- YAML Settings Overrides ---
SETTINGS_FILE = Path(
    os.environ.get('RESTYLE_SETTINGS', str(Path(__file__).parent.parent / "config" / "restyle.yaml"))
)
SETTINGS = {}


def load_settings(path: Path = None) -> dict:
    """
    Load the YAML settings overrides.

    Missing or unreadable files leave the built-in defaults in place.

    Args:
        path: Settings file to read. Defaults to SETTINGS_FILE.

    Returns:
        The loaded settings dict (sections: chunking, sampling, engine).
    """
    global SETTINGS
    path = Path(path) if path is not None else SETTINGS_FILE
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"expected a mapping at the top level, got {type(data).__name__}")
        SETTINGS = data
        if DEBUG_MODE:
            from restyle.logging_config import debug_log
            debug_log(f"[Config] Loaded settings from {path}")
    except FileNotFoundError:
        if DEBUG_MODE:
            from restyle.logging_config import debug_log
            debug_log(f"[Config] WARNING: Settings file not found at {path}. Using defaults.")
        SETTINGS = {}
    except Exception as e:
        from restyle.logging_config import debug_log
        debug_log(f"[Config] ERROR: Failed to load or parse settings file: {e}")
        SETTINGS = {}
    return SETTINGS


def _section(name: str) -> dict:
    values = SETTINGS.get(name)
    return values if isinstance(values, dict) else {}


def get_setting(section: str, key: str, default=None):
    """Return one value from the YAML settings, or default when unset."""
    value = _section(section).get(key)
    return default if value is None else value


def get_sampling_defaults() -> dict:
    """Sampling defaults with any YAML overrides applied."""
    merged = dict(SAMPLING_DEFAULTS)
    for key, value in _section('sampling').items():
        if value is not None:
            merged[key] = value
    return merged


# Load settings on module import
load_settings()
# --- End YAML Settings Overrides ---
