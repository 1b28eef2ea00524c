"""Tests for record loading."""

import httpx
import pytest

from autoflow.exceptions import StepRuntimeError
from autoflow.schemas.steps import DataSourceConfig
from autoflow.services.source_service import load_records, parse_csv, split_records

CSV = """Email,Name,Company
ada@example.com,Ada,Analytical Engines

grace@example.com,Grace,Navy
"""


def _config(**fields) -> DataSourceConfig:
    fields.setdefault("source_type", "upload")
    fields.setdefault("required_fields", ["email"])
    return DataSourceConfig(**fields)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParsing:
    def test_parse_csv_lowercases_headers_and_drops_blank_rows(self):
        records = parse_csv(CSV)
        assert records == [
            {"email": "ada@example.com", "name": "Ada", "company": "Analytical Engines"},
            {"email": "grace@example.com", "name": "Grace", "company": "Navy"},
        ]

    def test_parse_empty_csv(self):
        assert parse_csv("") == []

    def test_split_records(self):
        records = [{"email": "a@x.io", "name": "A"}, {"email": "", "name": "B"}, {"name": "C"}, "junk"]
        accepted, rejected = split_records(records, ["email", "name"])
        assert accepted == [{"email": "a@x.io", "name": "A"}]
        assert len(rejected) == 3


class TestLoadRecords:
    @pytest.mark.asyncio
    async def test_inline_records_win(self):
        records = await load_records(_config(records=[{"email": "a@x.io"}], csv_data=CSV), {})
        assert records == [{"email": "a@x.io"}]

    @pytest.mark.asyncio
    async def test_inline_csv(self):
        assert len(await load_records(_config(csv_data=CSV), {})) == 2

    @pytest.mark.asyncio
    async def test_records_from_input_data(self):
        assert await load_records(_config(), {"contacts": [{"email": "a@x.io"}]}) == [{"email": "a@x.io"}]
        assert len(await load_records(_config(input_key="upload"), {"upload": CSV})) == 2

    @pytest.mark.asyncio
    async def test_api_source_unwraps_list(self):
        def handler(request):
            assert str(request.url) == "https://crm.example.com/leads"
            return httpx.Response(200, json={"data": [{"email": "a@x.io"}, {"email": "b@x.io"}]})

        config = _config(source_type="api_endpoint", url="https://crm.example.com/leads")
        records = await load_records(config, {}, _client(handler))
        assert [r["email"] for r in records] == ["a@x.io", "b@x.io"]

    @pytest.mark.asyncio
    async def test_spreadsheet_export_is_csv(self):
        config = _config(source_type="google_sheets", url="https://sheets.example.com/export.csv")
        records = await load_records(config, {}, _client(lambda r: httpx.Response(200, text=CSV)))
        assert records[1]["name"] == "Grace"

    @pytest.mark.asyncio
    async def test_http_error(self):
        config = _config(source_type="api", url="https://crm.example.com/leads")
        with pytest.raises(StepRuntimeError):
            await load_records(config, {}, _client(lambda r: httpx.Response(503)))

    @pytest.mark.asyncio
    async def test_api_without_list(self):
        config = _config(source_type="api", url="https://crm.example.com/leads")
        with pytest.raises(StepRuntimeError):
            await load_records(config, {}, _client(lambda r: httpx.Response(200, json={"count": 2})))

    @pytest.mark.asyncio
    async def test_nothing_supplied(self):
        with pytest.raises(StepRuntimeError) as exc:
            await load_records(_config(), {})
        assert "contacts" in exc.value.message
