"""
ModelProvenance Repository
Introductory remarks: This module is part of the ModelProvenance codebase.

Tests for the HuggingFace Hub client.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from huggingface_hub.errors import HfHubHTTPError

from provenance.clients.hf_client import HFClient
from provenance.errors import NetworkError
from provenance.net.rate_limiter import RateLimiter


class DummyLimiter(RateLimiter):
    """
    DummyLimiter: Class description.
    """

    def __init__(self) -> None:
        super().__init__(0.0)
        self.invocations = 0

    def acquire(self) -> None:  # type: ignore[override]
        self.invocations += 1

    def release(self) -> None:  # type: ignore[override]
        pass


class DummyResponse:
    """
    DummyResponse: Class description.
    """

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        self.headers: Dict[str, str] = {}
        self.text = "error"
        self.request = None


def _http_error(status_code: int) -> HfHubHTTPError:
    return HfHubHTTPError(
        f"status {status_code}",
        response=DummyResponse(status_code),  # type: ignore[arg-type]
    )


class DummyApi:
    """
    DummyApi: Records Hub calls and returns canned model listings.
    """

    def __init__(
        self,
        models: Optional[Dict[str, List[Dict[str, Any]]]] = None,
    ) -> None:
        self.models = models or {}
        self.searches: List[Dict[str, Any]] = []
        self.info_calls: List[Dict[str, Any]] = []
        self.tree_calls: List[str] = []
        self.tree: List[Any] = []
        self.siblings: List[Any] = []

    def list_models(self, **kwargs: Any) -> List[Dict[str, Any]]:
        self.searches.append(kwargs)
        return list(self.models.get(kwargs["search"], []))

    def model_info(self, repo_id: str, **kwargs: Any) -> Any:
        self.info_calls.append({"repo_id": repo_id, **kwargs})
        return SimpleNamespace(
            id=repo_id,
            author=repo_id.split("/")[0],
            downloads=10,
            likes=2,
            tags=["diffusers", "license:mit"],
            pipeline_tag="text-to-image",
            library_name="diffusers",
            card_data={"license": "mit", "base_model": ["org/base"]},
            siblings=self.siblings,
        )

    def list_repo_tree(self, repo_id: str, **kwargs: Any) -> List[Any]:
        self.tree_calls.append(repo_id)
        return list(self.tree)


def _model(repo_id: str) -> Dict[str, Any]:
    return {
        "id": repo_id,
        "downloads": 100,
        "likes": 5,
        "tags": ["text-to-image"],
        "pipeline_tag": "text-to-image",
        "siblings": [{"rfilename": "model.safetensors"}],
    }


def test_search_by_hash_never_contacts_hub() -> None:
    """
    test_search_by_hash_never_contacts_hub: Function description.
    :param:
    :returns:
    """

    api = DummyApi()
    limiter = DummyLimiter()
    client = HFClient(api=api, rate_limiter=limiter)

    assert client.search_by_hash("ABC123") == []
    assert api.searches == []
    assert limiter.invocations == 0


def test_search_by_hash_returns_seeded_matches() -> None:
    client = HFClient(api=DummyApi(), rate_limiter=DummyLimiter())
    client.seed_cache("hash", {"hash": "ABC123"}, [_model("org/seeded")])

    records = client.search_by_hash("ABC123")

    assert [record.id for record in records] == ["org/seeded"]


def test_search_by_query_maps_model_listing() -> None:
    api = DummyApi({"sdxl": [_model("stabilityai/sdxl")]})
    client = HFClient(api=api, rate_limiter=DummyLimiter())

    records = client.search_by_query("sdxl")
    client.search_by_query("sdxl")

    assert len(api.searches) == 1
    assert api.searches[0]["limit"] == 10
    assert api.searches[0]["full"] is True
    record = records[0]
    assert record.id == "stabilityai/sdxl"
    assert record.author == "stabilityai"
    assert record.siblings == ("model.safetensors",)


def test_unauthorized_token_retries_anonymously(
    caplog: pytest.LogCaptureFixture,
) -> None:
    class RejectingApi(DummyApi):
        def list_models(self, **kwargs: Any) -> List[Dict[str, Any]]:
            self.searches.append(kwargs)
            if kwargs.get("token") is not False:
                raise _http_error(401)
            return [_model("org/public")]

    api = RejectingApi()
    client = HFClient(api=api, token="hf_bad", rate_limiter=DummyLimiter())

    records = client.search_by_query("public")

    assert [record.id for record in records] == ["org/public"]
    assert [call["token"] for call in api.searches] == ["hf_bad", False]
    assert client.has_token() is True


def test_http_error_without_token_is_network_error() -> None:
    class FailingApi(DummyApi):
        def model_info(self, repo_id: str, **kwargs: Any) -> Any:
            raise _http_error(404)

    client = HFClient(api=FailingApi(), rate_limiter=DummyLimiter())

    with pytest.raises(NetworkError) as excinfo:
        client.get_by_id("org/missing")

    assert excinfo.value.status_code == 404


def test_get_by_id_accepts_urls_and_reads_card() -> None:
    api = DummyApi()
    client = HFClient(api=api, rate_limiter=DummyLimiter())

    record = client.get_by_id("https://huggingface.co/org/model")

    assert record.id == "org/model"
    assert record.license == "mit"
    assert record.base_model == "org/base"
    assert api.info_calls[0]["revision"] is None


def test_get_version_by_id_uses_revision() -> None:
    api = DummyApi()
    client = HFClient(api=api, rate_limiter=DummyLimiter())

    client.get_version_by_id("org/model@v2")

    assert api.info_calls[0]["repo_id"] == "org/model"
    assert api.info_calls[0]["revision"] == "v2"


def test_list_model_files_prefers_tree_listing() -> None:
    api = DummyApi()
    api.tree = [
        SimpleNamespace(path="model.safetensors", size=2048),
        SimpleNamespace(path="folder", size=None),
    ]
    client = HFClient(api=api, rate_limiter=DummyLimiter())

    files = client.list_model_files("org/model")

    assert files == [("model.safetensors", 2048)]
    assert api.info_calls == []


def test_list_model_files_falls_back_to_siblings() -> None:
    api = DummyApi()
    api.siblings = [SimpleNamespace(rfilename="weights.bin", size=None)]
    client = HFClient(api=api, rate_limiter=DummyLimiter())

    assert client.list_model_files("org/model") == [("weights.bin", 0)]
    assert api.tree_calls == ["org/model"]


def test_rejects_foreign_host() -> None:
    client = HFClient(api=DummyApi(), rate_limiter=DummyLimiter())

    with pytest.raises(ValueError):
        client.get_by_id("https://example.com/org/model")
