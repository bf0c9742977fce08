from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from detect_client.client import ClientError, DetectClient, DetectionReport, load_image
from detect_client.config import DETECT_CLIENT_TOKEN, DETECT_SERVICE_URL
from detect_service.logging_config import setup_logging


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="detect-text-client",
        description="Detect text in an image via the text detection service",
    )

    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument("image", nargs="?", default=None, help="Local image file (JPEG, PNG, GIF, WebP)")
    source.add_argument("--image-url", default=None, help="Remote image URL instead of a local file")

    p.add_argument("--service-url", default=DETECT_SERVICE_URL, help="Base URL of the detection service")
    p.add_argument("--token", default=DETECT_CLIENT_TOKEN, help="Bearer token (default: anonymous)")
    p.add_argument("--json", action="store_true", help="Print the raw detections as JSON")
    p.add_argument("--log-level", default="WARNING", help="Python logging level (INFO, DEBUG, ...)")
    return p


def format_report(report: DetectionReport) -> str:
    if not report.detections:
        return "No text detected in the image"

    lines = ["Detected Text", "-------------", report.full_text, ""]
    lines.append(f"Detection Details ({len(report.elements)} elements)")
    for d in report.elements:
        line = f"- {d['text_content']}  (confidence {float(d['confidence']) * 100:.1f}%"
        if d.get("language"):
            line += f", language {d['language']}"
        lines.append(line + ")")
    return "\n".join(lines)


async def _amain(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level.upper())

    client = DetectClient(base_url=args.service_url, token=args.token)
    try:
        if args.image_url:
            report = await client.run(image_url=args.image_url)
        else:
            report = await client.run(image=load_image(args.image))
    except ClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await client.aclose()

    if args.json:
        print(json.dumps(
            {"job_id": report.job_id, "message": report.message, "detections": report.detections},
            indent=2,
            default=str,
        ))
    else:
        print(format_report(report))
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
