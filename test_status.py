#!/usr/bin/env python3
"""
Tests for status lookup, model list normalization and model selection.
"""

import httpx
import pytest

from ollama_chat.client import ChatRequest, StatusResponse, StreamingChatClient, StreamingError
from ollama_chat.client.models import ModelSelection, StreamSession

CLIENT_CONFIG = {
    "base_url": "http://chat.test",
    "stream_path": "/stream-run",
    "status_path": "/status",
}


def make_client(handler):
    return StreamingChatClient(CLIENT_CONFIG, transport=httpx.MockTransport(handler))


class TestStatusResponse:
    """Test status payload parsing."""

    def test_plain_model_names(self):
        status = StatusResponse.model_validate({"running": True, "models": ["llama3", "mistral"]})
        assert status.running
        assert status.models == ["llama3", "mistral"]

    def test_ollama_tags_shape(self):
        """Ollama's /api/tags entries are reduced to their names."""
        status = StatusResponse.model_validate({
            "running": True,
            "models": [{"name": "llama3:8b", "size": 1}, {"model": "phi3"}, {"size": 2}],
        })
        assert status.models == ["llama3:8b", "phi3"]

    def test_defaults(self):
        status = StatusResponse.model_validate({"models": None})
        assert not status.running
        assert status.models == []


class TestFetchStatus:
    """Test the status endpoint call."""

    @pytest.mark.asyncio
    async def test_running_with_models(self):
        def handler(request):
            assert request.url.path == "/status"
            return httpx.Response(200, json={"running": True, "models": ["llama3"]})

        async with make_client(handler) as client:
            status = await client.fetch_status()

        assert status == StatusResponse(running=True, models=["llama3"])

    @pytest.mark.asyncio
    async def test_unreachable_is_not_running(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            status = await client.fetch_status()

        assert status == StatusResponse(running=False, models=[])

    @pytest.mark.asyncio
    async def test_error_status_is_not_running(self):
        async with make_client(lambda r: httpx.Response(500)) as client:
            status = await client.fetch_status()

        assert not status.running

    @pytest.mark.asyncio
    async def test_unreadable_body_is_running_without_models(self):
        handler = lambda r: httpx.Response(200, content=b"<html>")
        async with make_client(handler) as client:
            status = await client.fetch_status()

        assert status == StatusResponse(running=True, models=[])


class TestRefreshStatus:
    """Test automatic model selection."""

    @pytest.mark.asyncio
    async def test_selects_first_model(self):
        handler = lambda r: httpx.Response(200, json={"running": True, "models": ["a", "b"]})
        async with make_client(handler) as client:
            await client.refresh_status()
            assert client.selection.model == "a"
            assert client.build_request("hi") == ChatRequest(model="a", runner="ollama", prompt="hi")

    @pytest.mark.asyncio
    async def test_keeps_existing_selection(self):
        handler = lambda r: httpx.Response(200, json={"running": True, "models": ["a", "b"]})
        async with make_client(handler) as client:
            client.select_model("ollama", "b")
            await client.refresh_status()
            assert client.selection.model == "b"

    @pytest.mark.asyncio
    async def test_no_selection_when_not_running(self):
        handler = lambda r: httpx.Response(200, json={"running": False, "models": ["a"]})
        async with make_client(handler) as client:
            await client.refresh_status()
            assert client.selection.model is None


def status_sequence(*statuses):
    """Handler answering successive GET /status calls from `statuses`."""
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "POST":
            return httpx.Response(200, json={"running": True, "models": []})
        index = min(len([c for c in calls if c[0] == "GET"]) - 1, len(statuses) - 1)
        return httpx.Response(200, json=statuses[index])

    return handler, calls


class TestWaitUntilRunning:
    """Test polling the status endpoint while the runner starts."""

    @pytest.mark.asyncio
    async def test_polls_until_running(self):
        handler, calls = status_sequence(
            {"running": False, "models": []},
            {"running": False, "models": []},
            {"running": True, "models": ["llama3"]},
        )
        async with make_client(handler) as client:
            status = await client.wait_until_running(interval=0.01, attempts=10)

        assert status.running
        assert client.selection.model == "llama3"
        assert calls == [("GET", "/status")] * 3

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        handler, calls = status_sequence({"running": False, "models": []})
        async with make_client(handler) as client:
            status = await client.wait_until_running(interval=0.01, attempts=3)

        assert not status.running
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_unreachable_runner_is_polled_too(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused")

        async with make_client(handler) as client:
            status = await client.wait_until_running(interval=0.01, attempts=2)

        assert not status.running
        assert len(attempts) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("interval, attempts", [(0, 3), (0.1, 0)])
    async def test_invalid_polling(self, interval, attempts):
        handler, _ = status_sequence({"running": True, "models": []})
        async with make_client(handler) as client:
            with pytest.raises(ValueError, match="Polling"):
                await client.wait_until_running(interval=interval, attempts=attempts)


class TestToggleRunner:
    """Test starting and stopping the runner through the chat UI."""

    @pytest.mark.asyncio
    async def test_start_polls_for_models(self):
        handler, calls = status_sequence(
            {"running": False, "models": []},
            {"running": True, "models": ["llama3"]},
        )
        async with make_client(handler) as client:
            client.poll_interval = 0.01
            status = await client.toggle_runner()

        assert status.running
        assert status.models == ["llama3"]
        assert client.selection.model == "llama3"
        assert calls == [("POST", "/toggle-ollama"), ("GET", "/status"), ("GET", "/status")]

    @pytest.mark.asyncio
    async def test_stop_refreshes_once(self):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path))
            return httpx.Response(200, json={"running": False, "models": []})

        async with make_client(handler) as client:
            status = await client.toggle_runner()

        assert not status.running
        assert calls == [("POST", "/toggle-ollama"), ("GET", "/status")]

    @pytest.mark.asyncio
    async def test_custom_toggle_path(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(200, json={"running": False, "models": []})

        config = {**CLIENT_CONFIG, "toggle_path": "/api/toggle"}
        async with StreamingChatClient(config, transport=httpx.MockTransport(handler)) as client:
            await client.toggle_runner()

        assert calls[0] == "/api/toggle"

    @pytest.mark.asyncio
    async def test_failed_toggle_resyncs_status(self):
        calls = []

        def handler(request):
            calls.append(request.method)
            if request.method == "POST":
                return httpx.Response(500, text="boom")
            return httpx.Response(200, json={"running": True, "models": ["a"]})

        async with make_client(handler) as client:
            status = await client.toggle_runner()

        assert status.running
        assert calls == ["POST", "GET"]


class TestModels:
    """Test request and session models."""

    def test_request_payload(self):
        request = ChatRequest(model="llama3", runner="ollama", prompt="hi")
        assert request.to_payload() == {"model": "llama3", "runner": "ollama", "prompt": "hi"}
        assert request.is_submittable

    def test_request_is_immutable(self):
        request = ChatRequest(model="llama3", runner="ollama", prompt="hi")
        with pytest.raises(AttributeError):
            request.prompt = "changed"

    def test_session_is_append_only_until_terminated(self):
        session = StreamSession()
        assert session.append("A") == "A"
        assert session.append("B") == "AB"
        session.terminate()
        with pytest.raises(StreamingError):
            session.append("C")
        assert session.accumulated_text == "AB"

    def test_selection_label(self):
        selection = ModelSelection()
        assert selection.label == "ollama: -"
        selection.select("ollama", "llama3")
        assert selection.label == "ollama: llama3"
