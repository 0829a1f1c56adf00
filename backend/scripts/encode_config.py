from __future__ import annotations

import argparse
import os
from pathlib import Path
import secrets
import sys
from urllib.parse import urlencode

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

from subgate.blob_store import FileBlobStore, encode_base64_text  # noqa: E402


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def upload_config(yaml_path: Path, store_dir: Path, key: str) -> int:
    if not yaml_path.is_file():
        raise FileNotFoundError(f"YAML file does not exist: {yaml_path}")

    encoded = encode_base64_text(yaml_path.read_text(encoding="utf-8"))
    FileBlobStore(store_dir).put(key, encoded)
    return len(encoded)


def subscription_url(base_url: str, subscribe_path: str, token: str) -> str:
    return f"{base_url.rstrip('/')}{subscribe_path}?{urlencode({'token': token})}"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Store a YAML config as a Base64 blob for the gateway")
    parser.add_argument("yaml_path", help="Path to the YAML configuration to publish")
    parser.add_argument("--store-dir", default=os.getenv("BLOB_STORE_DIR", "./blobs"))
    parser.add_argument("--key", default=os.getenv("BLOB_KEY", "proxy_yaml"))
    parser.add_argument("--generate-token", action="store_true", help="Print a fresh ACCESS_TOKEN value")
    parser.add_argument("--base-url", default="", help="Public gateway URL used to print the subscription link")
    parser.add_argument("--subscribe-path", default=os.getenv("SUBSCRIBE_PATH", "/subscribe"))
    args = parser.parse_args(argv)

    try:
        size = upload_config(Path(args.yaml_path), Path(args.store_dir), args.key)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Stored {size} Base64 characters under key '{args.key}' in {args.store_dir}")

    token = generate_token() if args.generate_token else os.getenv("ACCESS_TOKEN", "")
    if args.generate_token:
        print(f"Generated access token: {token}")
        print("Set it as ACCESS_TOKEN for the gateway and keep it private.")
    if args.base_url and token:
        print(f"Subscription URL: {subscription_url(args.base_url, args.subscribe_path, token)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
