"""Record loading for ``data_source`` steps."""

import csv
import io
import logging
from typing import Optional

import httpx

from autoflow.config import get_settings
from autoflow.exceptions import StepRuntimeError
from autoflow.schemas.steps import DataSourceConfig

logger = logging.getLogger(__name__)
settings = get_settings()

_LIST_KEYS = ("data", "records", "contacts", "results", "items")


def parse_csv(text: str) -> list[dict]:
    """Rows of a CSV document keyed by lower-cased header; blank rows are dropped."""
    reader = csv.DictReader(io.StringIO(text.strip()))
    if reader.fieldnames is None:
        return []
    reader.fieldnames = [h.strip().lower() for h in reader.fieldnames]
    records = []
    for row in reader:
        record = {k: (v or "").strip() for k, v in row.items() if k}
        if any(record.values()):
            records.append(record)
    return records


def split_records(records: list, required_fields: list[str]) -> tuple[list[dict], list]:
    """Separate records carrying every required field from the ones that don't."""
    accepted, rejected = [], []
    for record in records:
        if isinstance(record, dict) and all(record.get(f) not in (None, "") for f in required_fields):
            accepted.append(record)
        else:
            rejected.append(record)
    return accepted, rejected


async def _fetch(url: str, client: Optional[httpx.AsyncClient]) -> httpx.Response:
    try:
        if client is not None:
            response = await client.get(url)
        else:
            async with httpx.AsyncClient(timeout=settings.DELIVERY_TIMEOUT_SECONDS, follow_redirects=True) as c:
                response = await c.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise StepRuntimeError(f"Could not fetch records from {url}: {e}") from e
    return response


def _records_from_json(data) -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in _LIST_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
    raise StepRuntimeError("API response does not contain a list of records")


async def load_records(
    config: DataSourceConfig,
    bindings: dict,
    client: Optional[httpx.AsyncClient] = None,
) -> list:
    if config.records is not None:
        return list(config.records)
    if config.csv_data:
        return parse_csv(config.csv_data)

    if config.url:
        response = await _fetch(config.url, client)
        if config.source_type == "api":
            try:
                return _records_from_json(response.json())
            except ValueError as e:
                raise StepRuntimeError(f"API at {config.url} did not return JSON") from e
        return parse_csv(response.text)

    supplied = bindings.get(config.input_key)
    if isinstance(supplied, list):
        return supplied
    if isinstance(supplied, str) and supplied.strip():
        return parse_csv(supplied)

    raise StepRuntimeError(
        f"No records supplied: set records, csv_data or url, or pass '{config.input_key}' in the input data"
    )
