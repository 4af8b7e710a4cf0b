"""Tests for the dedup ledger and the key-value storage behind it."""

from __future__ import annotations

import json

import pytest

from bulk_downloader.artifacts.ledger import DedupLedger, LedgerStore, has, normalize_url
from bulk_downloader.storage import LEDGER_KEY, PANEL_ENABLED_KEY, JsonFileStorage

from conftest import DRIVE_PDF


class TestNormalizeUrl:
    def test_strips_query_and_fragment(self) -> None:
        assert normalize_url(DRIVE_PDF) == "https://drive.google.com/file/d/1AbCdEf/view"
        assert normalize_url("https://a.example/x#frag") == "https://a.example/x"

    @pytest.mark.parametrize("url", ["relative/path?q=1", "", "://broken", DRIVE_PDF])
    def test_is_idempotent(self, url: str) -> None:
        assert normalize_url(normalize_url(url)) == normalize_url(url)

    def test_relative_urls_are_unchanged(self) -> None:
        assert normalize_url("relative/path?q=1") == "relative/path?q=1"


class TestDedupLedger:
    def test_has_matches_raw_and_normalized_forms(self) -> None:
        ledger = DedupLedger()
        ledger.add("c1", [DRIVE_PDF])
        assert ledger.has("c1", DRIVE_PDF)
        assert ledger.has("c1", "https://drive.google.com/file/d/1AbCdEf/view?authuser=0")
        assert has(ledger, "c1", "https://drive.google.com/file/d/1AbCdEf/view")

    def test_collections_are_independent(self) -> None:
        ledger = DedupLedger({"c1": [DRIVE_PDF]})
        assert not ledger.has("c2", DRIVE_PDF)
        assert not ledger.has(None, DRIVE_PDF)

    def test_add_records_both_forms(self) -> None:
        ledger = DedupLedger()
        assert ledger.add("c1", [DRIVE_PDF]) == 2
        assert ledger.add("c1", [DRIVE_PDF]) == 0
        assert ledger.urls_for("c1") == {DRIVE_PDF, normalize_url(DRIVE_PDF)}

    def test_malformed_entries_are_ignored(self) -> None:
        ledger = DedupLedger({"c1": "not-a-list", "c2": [1, "https://x.example/a"]})
        assert ledger.collections() == ["c2"]
        assert ledger.urls_for("c2") == {"https://x.example/a"}


class TestLedgerStore:
    async def test_record_persists_and_reloads(self, ledger_store: LedgerStore, storage: JsonFileStorage) -> None:
        await ledger_store.record("c1", [DRIVE_PDF])

        reloaded = await ledger_store.load()
        assert reloaded.has("c1", DRIVE_PDF)
        raw = (await storage.get([LEDGER_KEY]))[LEDGER_KEY]
        assert sorted(raw["c1"]) == sorted([DRIVE_PDF, normalize_url(DRIVE_PDF)])

    async def test_record_merges_with_existing_entries(self, ledger_store: LedgerStore) -> None:
        await ledger_store.record("c1", ["https://a.example/1"])
        await ledger_store.record("c2", ["https://a.example/2"])
        ledger = await ledger_store.load()
        assert ledger.has("c1", "https://a.example/1")
        assert ledger.has("c2", "https://a.example/2")

    async def test_missing_store_is_empty(self, ledger_store: LedgerStore) -> None:
        ledger = await ledger_store.load()
        assert len(ledger) == 0

    async def test_corrupt_store_is_treated_as_empty(self, ledger_store: LedgerStore, settings) -> None:
        settings.storage_path.write_text("{not json", encoding="utf-8")
        ledger = await ledger_store.load()
        assert len(ledger) == 0

    async def test_acquire_saves_even_when_block_fails(self, ledger_store: LedgerStore) -> None:
        with pytest.raises(RuntimeError):
            async with ledger_store.acquire() as ledger:
                ledger.add("c1", ["https://a.example/1"])
                raise RuntimeError("boom")
        assert (await ledger_store.load()).has("c1", "https://a.example/1")


class TestJsonFileStorage:
    async def test_set_merges_keys(self, storage: JsonFileStorage, settings) -> None:
        await storage.set({PANEL_ENABLED_KEY: True})
        await storage.set({"other": 1})
        assert await storage.get() == {PANEL_ENABLED_KEY: True, "other": 1}
        assert json.loads(settings.storage_path.read_text(encoding="utf-8"))[PANEL_ENABLED_KEY] is True

    async def test_get_returns_only_present_keys(self, storage: JsonFileStorage) -> None:
        await storage.set({"a": 1})
        assert await storage.get(["a", "missing"]) == {"a": 1}

    async def test_empty_file_reads_as_empty(self, storage: JsonFileStorage, settings) -> None:
        settings.storage_path.write_text("", encoding="utf-8")
        assert await storage.get() == {}
