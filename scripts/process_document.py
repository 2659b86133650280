#!/usr/bin/env python3
"""Run a local document through the extraction engines without touching the database."""
import asyncio
import base64
import json
import mimetypes
import sys
from pathlib import Path

# Load .env file
from dotenv import load_dotenv
load_dotenv()

from payvat.config import Settings
from payvat.engines.base import DocumentInput
from payvat.pipeline import build_engines, build_extraction_client
from payvat.utils.resilience import AllStrategiesFailed, first_success
from payvat.vat.date_parsing import resolve_date
from payvat.vat.totals import resolve_total
from payvat.models.classification import classify
from payvat.telemetry import StructlogEmitter


async def main(file_path: str, category: str) -> None:
    """Extract VAT data from a single file and print the result."""
    path = Path(file_path)
    if not path.exists():
        print(f"Error: File not found: {file_path}")
        sys.exit(1)

    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    print(f"Processing: {path.name} ({mime_type}, {category})")
    print("-" * 50)

    settings = Settings()
    client, _ = build_extraction_client(settings, StructlogEmitter())
    engines = build_engines(settings, client)
    document = DocumentInput(
        file_data=base64.b64encode(path.read_bytes()).decode("ascii"),
        mime_type=mime_type,
        original_name=path.name,
        category=category,
    )

    try:
        engine_name, result = await first_success(
            [(engine.name, lambda engine=engine: engine.process(document)) for engine in engines],
            on_failure=lambda name, exc: print(f"Engine {name} unavailable: {exc}"),
        )
    except AllStrategiesFailed as e:
        print(f"Error: every engine failed: {e.last_error}")
        sys.exit(1)

    print(f"Engine: {engine_name}")
    for step in result.processing_steps:
        print(f"  - {step}")
    if not result.success:
        print(f"\nExtraction failed: {result.error}")
        sys.exit(2)

    data = result.extracted_data
    date = resolve_date(data.invoice_date, min_year=settings.min_plausible_year,
                        max_year=settings.max_plausible_year)
    total = resolve_total(data, f"{data.evidence_text}\n{result.scan_result}", settings.standard_vat_rate)
    assessment = classify(data)

    print(f"\n{result.scan_result}")
    print(f"\nSales VAT: {data.sales_vat}")
    print(f"Purchase VAT: {data.purchase_vat}")
    print(f"Confidence: {data.confidence:.0%}")
    print(f"Date: {date.value} ({'found' if date.found else 'fallback'}, {date.confidence:.0%})")
    print(f"Invoice total: {total.amount} ({total.provenance})")
    print(f"Compliance: {assessment.status} - {assessment.message}")
    for warning in result.warnings:
        print(f"Warning: {warning}")

    output_path = path.with_suffix(".vat.json")
    with open(output_path, "w") as f:
        json.dump(data.to_json_dict(), f, indent=2, default=str)
    print(f"\nFull result saved to: {output_path}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/process_document.py <path-to-file> [SALES|PURCHASES]")
        sys.exit(1)

    asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else "PURCHASES"))
