"""Standalone client: asks the quote service for the current bid and writes it to a file."""
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import httpx

logger = logging.getLogger("quote-client")

DEFAULT_URL = "http://localhost:8080/cotacao"

class ClientError(Exception):
    pass

def fetch_cotacao(url: str = DEFAULT_URL, timeout: float = 0.3, client: Optional[httpx.Client] = None) -> str:
    """One bounded GET against the service, no retries."""
    http = client or httpx.Client()
    try:
        response = http.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        raise ClientError(f"error doing request: {e}") from e
    finally:
        if client is None:
            http.close()

    if response.status_code != 200:
        raise ClientError(f"HTTP status {response.status_code}")

    try:
        payload = response.json()
    except ValueError as e:
        raise ClientError(f"error decoding JSON response: {e}") from e
    if not isinstance(payload, dict):
        raise ClientError("unexpected response shape")

    # the service answers {"Cotacao": ...}; match the key case-insensitively
    for key, value in payload.items():
        if key.lower() == "cotacao" and isinstance(value, str):
            return value
    raise ClientError("response has no cotacao field")

def save_cotacao(bid: str, path: Path) -> None:
    path.write_text(f"Dólar: {bid}", encoding="utf-8")

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Fetch the dollar quote and save it to a file")
    parser.add_argument("--url", default=DEFAULT_URL)
    parser.add_argument("--timeout", type=float, default=0.3, help="request deadline in seconds")
    parser.add_argument("--output", type=Path, default=Path("cotacao.txt"))
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    try:
        bid = fetch_cotacao(args.url, args.timeout)
    except ClientError as e:
        logger.error("%s", e)
        return 1
    print(f"Dolar price: {bid}")

    try:
        save_cotacao(bid, args.output)
    except OSError as e:
        logger.error("Error saving dolar price on file: %s", e)
        return 1

    logger.info("Dolar price saved successfully on %s", args.output)
    return 0

if __name__ == "__main__":
    sys.exit(main())
