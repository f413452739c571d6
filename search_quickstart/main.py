#!/usr/bin/env python3
"""Quickstart: reset the hotels index, upload the sample records, and run the demo queries."""
import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path

from search_quickstart import search_client
from search_quickstart.data_files import (
    DEFAULT_DATA_PATH,
    DEFAULT_SCHEMA_PATH,
    load_documents,
    load_index_definition,
    unique_keys,
)
from search_quickstart.documents import merge_or_upload_documents, wait_for_document_count
from search_quickstart.errors import ConfigurationMissingError
from search_quickstart.indexes import create_index, delete_index_if_exists
from search_quickstart.queries import send_queries


async def load_data(client, handle, records: list) -> None:
    print("Uploading documents...")
    result = await merge_or_upload_documents(client, handle, records)
    print(json.dumps([asdict(r) for r in result.results]))
    print(f"Index operations succeeded: {json.dumps(result.succeeded)}")


async def run(schema_path: Path, data_path: Path, settle_timeout: float) -> None:
    print("Running search quickstart...")
    # Bad input files are fatal even before the endpoint is configured.
    definition = load_index_definition(schema_path)
    key_field = definition.key_field or "HotelId"
    hotels = load_documents(data_path, key_field)

    try:
        search_client.require_env()
    except ConfigurationMissingError:
        print("Make sure to set valid values for endpoint and apiKey with proper authorization.")
        return

    async with search_client.get_client() as client:
        print("Checking if index exists...")
        await delete_index_if_exists(client, definition.name)

        print("Creating index...")
        handle = await create_index(client, definition)
        print(f"Index named {handle.name} has been created.")

        await load_data(client, handle, hotels)

        # Documents are searchable only after the service refreshes the index.
        count = await wait_for_document_count(
            client,
            handle,
            expected=len(unique_keys(hotels, key_field)),
            timeout=settle_timeout,
            interval=search_client.SEARCH_SETTLE_INTERVAL,
        )
        print(f"{count} docs uploaded")

        print("Querying the index...")
        print()
        await send_queries(client, handle)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the hotels index, load sample data, and run demo queries.")
    parser.add_argument("--schema", type=Path, default=DEFAULT_SCHEMA_PATH, help="Index definition JSON")
    parser.add_argument("--data", type=Path, default=DEFAULT_DATA_PATH, help='Records JSON ({"value": [...]})')
    parser.add_argument(
        "--settle-timeout",
        type=float,
        default=search_client.SEARCH_SETTLE_TIMEOUT,
        help="Seconds to wait for the uploaded document count (default: SEARCH_SETTLE_TIMEOUT or 10)",
    )
    args = parser.parse_args(argv)
    try:
        asyncio.run(run(args.schema, args.data, args.settle_timeout))
    except Exception as e:
        print(f"The sample encountered an error: {e}", file=sys.stderr)
        return 1
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
