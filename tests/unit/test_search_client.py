"""
Tests unitarios para SearchServiceClient / SearchIndexSink.

La Session de requests se mockea: no hay red.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from search_sync.domain.types import IndexAction, IndexOperation
from search_sync.infrastructure.search.index_schema import catalog_index_definition
from search_sync.infrastructure.search.search_client import (
    SearchApiError,
    SearchCredentials,
    SearchIndexSink,
    SearchServiceClient,
)
from search_sync.shared.exceptions import SinkRejectedError


def _response(status_code: int, json_body=None, headers=None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_body
    resp.headers = headers or {}
    resp.text = text
    return resp


def _ops(*keys: str) -> list[IndexOperation]:
    return [
        IndexOperation(action=IndexAction.MERGE_OR_UPLOAD, key=k, document={"productID": k, "name": f"p{k}"})
        for k in keys
    ]


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def sleeps() -> list[float]:
    return []


def _client(session, sleeps, **kwargs) -> SearchServiceClient:
    return SearchServiceClient(
        SearchCredentials(endpoint="https://demo.search.windows.net/", api_key="secret"),
        session=session,
        sleep=sleeps.append,
        **kwargs,
    )


class TestIndexDocuments:
    def test_posts_batch_with_actions_and_api_key(self, session, sleeps) -> None:
        session.request.return_value = _response(200, {"value": []})
        client = _client(session, sleeps, timeout_s=12)

        applied = client.index_documents("catalog", _ops("1", "2"))

        assert applied == 2
        kwargs = session.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "https://demo.search.windows.net/indexes/catalog/docs/index"
        assert kwargs["params"] == {"api-version": "2023-11-01"}
        assert kwargs["headers"]["api-key"] == "secret"
        assert kwargs["timeout"] == 12
        assert kwargs["json"]["value"][0] == {"@search.action": "mergeOrUpload", "productID": "1", "name": "p1"}

    def test_multi_status_is_rejected_with_failed_keys(self, session, sleeps) -> None:
        session.request.return_value = _response(
            207,
            {"value": [{"key": "1", "status": True}, {"key": "2", "status": False, "errorMessage": "bad"}]},
        )
        client = _client(session, sleeps)

        with pytest.raises(SinkRejectedError) as exc:
            client.index_documents("catalog", _ops("1", "2"))

        assert exc.value.status_code == 207
        assert exc.value.failed_keys == ["2"]

    @pytest.mark.parametrize("json_side_effect", [ValueError("Expecting value"), None])
    def test_unreadable_multi_status_body_is_rejected(self, session, sleeps, json_side_effect) -> None:
        resp = _response(207, json_body=["not", "an", "object"])
        if json_side_effect is not None:
            resp.json.side_effect = json_side_effect
        session.request.return_value = resp
        client = _client(session, sleeps)

        with pytest.raises(SinkRejectedError) as exc:
            client.index_documents("catalog", _ops("1"))

        assert exc.value.status_code == 207

    def test_server_error_without_retries_fails_immediately(self, session, sleeps) -> None:
        session.request.return_value = _response(503, text="busy")
        client = _client(session, sleeps)

        with pytest.raises(SinkRejectedError) as exc:
            client.index_documents("catalog", _ops("1"))

        assert exc.value.status_code == 503
        assert session.request.call_count == 1
        assert sleeps == []

    def test_throttling_retries_honour_retry_after(self, session, sleeps) -> None:
        session.request.side_effect = [
            _response(429, headers={"Retry-After": "3"}),
            _response(503),
            _response(200, {"value": []}),
        ]
        client = _client(session, sleeps, max_retries=2)

        assert client.index_documents("catalog", _ops("1")) == 1
        assert session.request.call_count == 3
        assert sleeps[0] == 3.0
        assert sleeps[1] > 0

    def test_client_error_is_not_retried(self, session, sleeps) -> None:
        session.request.return_value = _response(400, text="invalid field")
        client = _client(session, sleeps, max_retries=3)

        with pytest.raises(SinkRejectedError):
            client.index_documents("catalog", _ops("1"))

        assert session.request.call_count == 1

    def test_transport_error_is_rejected(self, session, sleeps) -> None:
        session.request.side_effect = requests.ConnectionError("reset by peer")
        client = _client(session, sleeps)

        with pytest.raises(SinkRejectedError) as exc:
            client.index_documents("catalog", _ops("1"))

        assert isinstance(exc.value.__cause__, requests.ConnectionError)


class TestIndexManagement:
    def test_ensure_index_creates_when_missing(self, session, sleeps) -> None:
        session.request.side_effect = [_response(404), _response(201)]
        client = _client(session, sleeps)

        client.ensure_index(catalog_index_definition("catalog"))

        create = session.request.call_args_list[1].kwargs
        assert create["method"] == "POST"
        assert create["url"].endswith("/indexes")
        assert create["json"]["name"] == "catalog"
        assert create["json"]["suggesters"][0]["sourceFields"] == [
            "name",
            "productNumber",
            "categoryName",
            "modelName",
        ]

    def test_ensure_index_skips_existing(self, session, sleeps) -> None:
        session.request.return_value = _response(200, {"name": "catalog"})
        client = _client(session, sleeps)

        client.ensure_index(catalog_index_definition("catalog"))

        assert session.request.call_count == 1

    def test_recreate_deletes_then_creates(self, session, sleeps) -> None:
        session.request.side_effect = [_response(204), _response(404), _response(201)]
        client = _client(session, sleeps)

        client.ensure_index(catalog_index_definition("catalog"), recreate=True)

        methods = [c.kwargs["method"] for c in session.request.call_args_list]
        assert methods == ["DELETE", "GET", "POST"]

    def test_delete_missing_index_returns_false(self, session, sleeps) -> None:
        session.request.return_value = _response(404)
        assert _client(session, sleeps).delete_index("nope") is False

    def test_create_index_failure_raises_api_error(self, session, sleeps) -> None:
        session.request.return_value = _response(403, text="forbidden")
        with pytest.raises(SearchApiError):
            _client(session, sleeps).create_index(catalog_index_definition())


class TestSearchIndexSink:
    def test_apply_batch_returns_true_on_success(self, session, sleeps) -> None:
        session.request.return_value = _response(200, {"value": []})
        sink = SearchIndexSink(_client(session, sleeps), "catalog")

        assert sink.apply_batch(_ops("1")) is True

    def test_apply_batch_returns_false_on_non_json_multi_status(self, session, sleeps) -> None:
        resp = _response(207)
        resp.json.side_effect = ValueError("Expecting value")
        session.request.return_value = resp
        sink = SearchIndexSink(_client(session, sleeps), "catalog")

        assert sink.apply_batch(_ops("1")) is False

    def test_apply_batch_returns_false_instead_of_raising(self, session, sleeps) -> None:
        session.request.return_value = _response(500, text="boom")
        sink = SearchIndexSink(_client(session, sleeps), "catalog")

        assert sink.apply_batch(_ops("1", "2")) is False


def test_catalog_definition_has_single_string_key() -> None:
    definition = catalog_index_definition("catalog")
    body = definition.to_dict()
    assert definition.key_field == "productID"
    key = next(f for f in body["fields"] if f["key"])
    assert key["type"] == "Edm.String"
    assert "suggestions" not in key
