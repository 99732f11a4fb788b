import sys
from pathlib import Path

import pytest
import requests

sys.path.append(str(Path(__file__).resolve().parents[1]))

import llm_clients
from llm_clients import (
    ChatCompletionsClient,
    HostGenerateClient,
    build_summarizer,
    chat_completions_url,
    list_models,
    models_url,
)
from summary_errors import TransportFailure
from summary_settings import ApiSettings


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class Recorder:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


MESSAGES = [
    {"role": "system", "content": "PROMPT"},
    {"role": "user", "content": "summarise this"},
]


@pytest.mark.parametrize(
    "base, expected",
    [
        ("http://host:5001", "http://host:5001/v1/chat/completions"),
        ("http://host:5001/", "http://host:5001/v1/chat/completions"),
        ("http://host:5001/v1", "http://host:5001/v1/chat/completions"),
        ("http://host/v1/chat/completions", "http://host/v1/chat/completions"),
    ],
)
def test_chat_completions_url(base, expected):
    assert chat_completions_url(base) == expected


def test_models_url():
    assert models_url("http://host") == "http://host/v1/models"
    assert models_url("http://host/v1/") == "http://host/v1/models"
    assert models_url("http://host/v1/chat/completions") == "http://host/v1/models"


def test_chat_posts_payload_and_reads_choice(monkeypatch):
    post = Recorder(FakeResponse(payload={"choices": [{"message": {"content": "  Done.  "}}]}))
    monkeypatch.setattr(llm_clients.requests, "post", post)
    client = ChatCompletionsClient(base_url="http://host", api_key="sk-1", model="m1", timeout=9)

    assert client.chat(MESSAGES) == "Done."

    url, kwargs = post.calls[0]
    assert url == "http://host/v1/chat/completions"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-1"
    assert kwargs["timeout"] == 9
    assert kwargs["json"]["model"] == "m1"
    assert kwargs["json"]["messages"] == MESSAGES


def test_chat_default_model_and_content_parts(monkeypatch):
    payload = {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"text": "b"}]}}]}
    post = Recorder(FakeResponse(payload=payload))
    monkeypatch.setattr(llm_clients.requests, "post", post)
    client = ChatCompletionsClient(base_url="http://host", api_key=None)

    assert client.chat(MESSAGES) == "a\nb"
    assert post.calls[0][1]["json"]["model"] == "gpt-3.5-turbo"


def test_http_error_becomes_transport_failure(monkeypatch):
    response = FakeResponse(status_code=401, payload={"error": {"message": "bad key"}})
    monkeypatch.setattr(llm_clients.requests, "post", Recorder(response))
    client = ChatCompletionsClient(base_url="http://host", api_key="x")

    with pytest.raises(TransportFailure) as excinfo:
        client.chat(MESSAGES)
    assert excinfo.value.status_code == 401
    assert "bad key" in str(excinfo.value)


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(payload=None, text="<html>"),
        FakeResponse(payload={"choices": []}),
        FakeResponse(payload={"choices": [{"message": {"content": "   "}}]}),
    ],
)
def test_unusable_replies_fail(monkeypatch, response):
    monkeypatch.setattr(llm_clients.requests, "post", Recorder(response))
    client = ChatCompletionsClient(base_url="http://host", api_key="x")
    with pytest.raises(TransportFailure):
        client.chat(MESSAGES)


def test_connection_error_is_not_retried(monkeypatch):
    post = Recorder(exc=requests.ConnectionError("refused"))
    monkeypatch.setattr(llm_clients.requests, "post", post)
    client = ChatCompletionsClient(base_url="http://host", api_key="x")

    with pytest.raises(TransportFailure):
        client.chat(MESSAGES)
    assert len(post.calls) == 1


def test_dry_run_skips_network(monkeypatch):
    post = Recorder(exc=AssertionError("network used"))
    monkeypatch.setattr(llm_clients.requests, "post", post)
    client = ChatCompletionsClient(base_url="http://host", api_key="x", dry_run=True)
    assert client.chat(MESSAGES).startswith("[dry-run]")
    assert post.calls == []


def test_host_client_flattens_turns():
    prompts = []

    def generate(prompt):
        prompts.append(prompt)
        return " result "

    assert HostGenerateClient(generate).chat(MESSAGES) == "result"
    assert prompts == ["PROMPT\n\nsummarise this"]


def test_host_client_failures():
    def boom(prompt):
        raise RuntimeError("host down")

    with pytest.raises(TransportFailure):
        HostGenerateClient(boom).chat(MESSAGES)
    with pytest.raises(TransportFailure):
        HostGenerateClient(lambda prompt: "").chat(MESSAGES)


def test_build_summarizer_selection():
    with_url = build_summarizer(ApiSettings(url="http://host", key="k", model="m"))
    assert isinstance(with_url, ChatCompletionsClient)
    assert with_url.model == "m"

    host = build_summarizer(ApiSettings(), host_generate=lambda prompt: "x")
    assert isinstance(host, HostGenerateClient)

    assert build_summarizer(ApiSettings(), dry_run=True).chat(MESSAGES).startswith("[dry-run]")

    with pytest.raises(TransportFailure):
        build_summarizer(ApiSettings())


def test_list_models(monkeypatch):
    payload = {"data": [{"id": "m1"}, {"name": "m2"}, "m3", {"id": ""}]}
    get = Recorder(FakeResponse(payload=payload))
    monkeypatch.setattr(llm_clients.requests, "get", get)

    assert list_models("http://host/v1", "k") == ["m1", "m2", "m3"]
    assert get.calls[0][0] == "http://host/v1/models"
    assert get.calls[0][1]["headers"] == {"Authorization": "Bearer k"}


def test_list_models_errors(monkeypatch):
    with pytest.raises(ValueError):
        list_models("  ")
    monkeypatch.setattr(llm_clients.requests, "get", Recorder(FakeResponse(status_code=500, text="oops")))
    with pytest.raises(TransportFailure):
        list_models("http://host")


@pytest.mark.parametrize(
    "response, reason",
    [
        (FakeResponse(status_code=400, payload={"error": "context too long"}), "context too long"),
        (FakeResponse(status_code=400, payload={"error": {"code": "rate_limited"}}), "rate_limited"),
        (FakeResponse(status_code=503, payload={"message": "overloaded"}), "overloaded"),
        (FakeResponse(status_code=502, payload=None, text=" Bad Gateway "), "Bad Gateway"),
    ],
)
def test_error_reason_extraction(monkeypatch, response, reason):
    monkeypatch.setattr(llm_clients.requests, "post", Recorder(response))
    client = ChatCompletionsClient(base_url="http://host", api_key="x")
    with pytest.raises(TransportFailure) as excinfo:
        client.chat(MESSAGES)
    assert reason in str(excinfo.value)


def test_prepare_messages_coerces_roles():
    prepared = ChatCompletionsClient._prepare_messages(
        [{"role": "Tool", "content": " x "}, {"content": [{"text": "y"}, "junk"]}]
    )
    assert prepared == [{"role": "user", "content": "x"}, {"role": "user", "content": "y"}]
