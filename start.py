#!/usr/bin/env python3
"""Document Extractor & Builder startup script.

Checks the three things that break the service at request time instead
of at boot:
  1. args/app_config.yaml does not parse
  2. no LLM API key (every extraction / chat / assessment call fails)
  3. the local blob root is not writable (uploads and config saves fail)

Usage:
  python start.py                   # validate + start Flask
  python start.py --port 5002       # override port
  python start.py --validate-only   # check without starting Flask
"""

import argparse
import os
import sys
import tempfile
from pathlib import Path

import yaml
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent

# Windows cp1252 console can't render Unicode, force UTF-8 output
if hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")

GREEN = "\033[32m"
RED   = "\033[31m"
YELLOW = "\033[33m"
CYAN  = "\033[36m"
RESET = "\033[0m"
BOLD  = "\033[1m"


def _ok(msg):   print(f"{GREEN}  ✓{RESET} {msg}")
def _warn(msg): print(f"{YELLOW}  ⚠{RESET} {msg}")
def _err(msg):  print(f"{RED}  ✗{RESET} {msg}")
def _info(msg): print(f"{CYAN}  →{RESET} {msg}")


# ── Checks ─────────────────────────────────────────────────────────────────────

def check_config_file(path: Path) -> bool:
    if not path.exists():
        _warn(f"{path} not found, using built-in defaults")
        return True
    try:
        with open(path, "r", encoding="utf-8") as f:
            yaml.safe_load(f)
    except yaml.YAMLError as e:
        _err(f"{path.name} does not parse: {e}")
        return False
    _ok(f"{path.name} parses")
    return True


def check_llm(settings) -> bool:
    if not settings.llm_api_key:
        _err("No LLM API key. Set OPENROUTER_API_KEY in the environment or .env")
        return False
    _ok(f"LLM endpoint {settings.llm_base_url} (model {settings.llm_model})")
    _info(f"Assessment timeout {settings.llm_timeout:.0f}s, max tokens {settings.llm_max_tokens}")
    return True


def check_blob_root(settings) -> bool:
    if settings.blob_backend.lower() == "s3":
        if not settings.blob_bucket:
            _err("S3 backend selected but DOCBUILDER_BLOB_BUCKET is empty")
            return False
        _ok(f"S3 bucket {settings.blob_bucket} (prefix '{settings.blob_prefix}')")
        return True

    root = Path(settings.blob_root)
    if not root.is_absolute():
        root = BASE_DIR / root
    try:
        root.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=str(root), prefix=".tmp-"):
            pass
    except OSError as e:
        _err(f"Blob root {root} is not writable: {e}")
        return False
    _ok(f"Blob root {root} is writable")
    return True


# ── Main ───────────────────────────────────────────────────────────────────────

def run(args):
    env_file = BASE_DIR / ".env"
    if env_file.exists():
        load_dotenv(env_file, override=False)

    from docbuilder.config.settings import DEFAULT_CONFIG_PATH, reset_settings, get_settings

    print(f"\n{BOLD}Document Extractor & Builder startup{RESET}  (port {args.port})\n")

    print(f"{BOLD}[1/3] Configuration{RESET}")
    config_path = Path(os.environ.get("DOCBUILDER_CONFIG_PATH") or DEFAULT_CONFIG_PATH)
    config_ok = check_config_file(config_path)
    reset_settings()
    settings = get_settings()

    print(f"\n{BOLD}[2/3] LLM gateway{RESET}")
    llm_ok = check_llm(settings)

    print(f"\n{BOLD}[3/3] Blob storage{RESET}")
    blob_ok = check_blob_root(settings)

    if not (config_ok and blob_ok):
        print(f"\n{RED}{BOLD}Startup checks failed.{RESET}\n")
        return 1
    if not llm_ok:
        _warn("Starting anyway: file and config routes work, LLM routes will return 500")

    if args.validate_only:
        print(f"\n{BOLD}Validation complete.{RESET} (--validate-only, not starting Flask)\n")
        return 0

    from docbuilder.web.app import app
    print()
    _ok(f"Serving on http://{args.host}:{args.port}")
    print(f"  Press {BOLD}Ctrl+C{RESET} to stop.\n")
    app.run(host=args.host, port=args.port, debug=args.debug)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Document Extractor & Builder startup")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=int(os.environ.get("FLASK_PORT", 5001)))
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--validate-only", action="store_true",
                        help="Run the checks and exit without starting Flask")
    args = parser.parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()
