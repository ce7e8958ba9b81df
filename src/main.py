"""Command line entry point for JSON Streaming.

Streams a JSON document from an HTTP endpoint and prints every best-effort
snapshot as it arrives, one compact JSON document per line.

Example:
    To follow a streaming endpoint:
        $ python main.py https://example.com/report -X POST -d '{"id": 1}'
"""

import argparse
import asyncio
import json
import sys
from typing import Optional

from config import logger
from stream_driver import StreamDriver, StreamRequest, TransportError


def _header(value: str) -> tuple[str, str]:
    name, sep, content = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected 'Name: value', got {value!r}")
    return name.strip(), content.strip()


def _payload(value: str):
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"payload is not valid JSON: {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Print best-effort snapshots of a streamed JSON document."
    )
    parser.add_argument("url", help="endpoint streaming the document")
    parser.add_argument(
        "-X",
        "--method",
        default="GET",
        choices=["GET", "POST", "PUT", "DELETE"],
        help="HTTP method (default: GET)",
    )
    parser.add_argument("-d", "--data", type=_payload, help="JSON request body")
    parser.add_argument(
        "-H",
        "--header",
        action="append",
        type=_header,
        default=[],
        help="extra header, may be repeated",
    )
    parser.add_argument(
        "--final", action="store_true", help="print only the last snapshot"
    )
    return parser


async def follow(request: StreamRequest, final_only: bool = False) -> Optional[object]:
    driver = StreamDriver(request)
    seen = False
    async for value in driver.stream():
        seen = True
        if not final_only:
            print(json.dumps(value, ensure_ascii=False), flush=True)
    if final_only and seen:
        print(json.dumps(driver.last_value, ensure_ascii=False))
    return driver.last_value


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    request = StreamRequest(
        url=args.url,
        method=args.method,
        payload=args.data,
        headers=dict(args.header),
    )
    try:
        asyncio.run(follow(request, final_only=args.final))
    except TransportError as e:
        logger.error({"cli": str(e)})
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
