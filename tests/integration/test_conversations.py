"""Integration tests for conversation and model management endpoints."""

import pytest_check as check
from httpx import AsyncClient

from tests.providers import DONE, ProviderStub, frame


class TestConversationEndpoints:
    """Tests for /conversations."""

    async def test_create_and_list(self, async_client: AsyncClient) -> None:
        created = await async_client.post("/conversations")
        listing = await async_client.get("/conversations")

        conversation = created.json()
        check.equal(created.status_code, 201)
        check.is_true(conversation["id"].startswith("conv-"))
        check.equal(conversation["title"], "New conversation")
        check.equal(
            listing.json(),
            [
                {
                    "id": conversation["id"],
                    "title": "New conversation",
                    "model": conversation["model"],
                    "message_count": 0,
                    "is_named": False,
                    "is_naming": False,
                    "is_current": True,
                }
            ],
        )

    async def test_unknown_conversation_returns_404(self, async_client: AsyncClient) -> None:
        check.equal((await async_client.get("/conversations/conv-missing")).status_code, 404)
        check.equal((await async_client.post("/conversations/conv-missing/select")).status_code, 404)
        check.equal((await async_client.delete("/conversations/conv-missing")).status_code, 404)

    async def test_select_conversation(self, async_client: AsyncClient) -> None:
        first = (await async_client.post("/conversations")).json()
        await async_client.post("/conversations")

        await async_client.post(f"/conversations/{first['id']}/select")
        listing = (await async_client.get("/conversations")).json()

        current = [c["id"] for c in listing if c["is_current"]]
        assert current == [first["id"]]

    async def test_delete_conversation(self, async_client: AsyncClient) -> None:
        conversation = (await async_client.post("/conversations")).json()

        response = await async_client.delete(f"/conversations/{conversation['id']}")
        listing = (await async_client.get("/conversations")).json()

        check.equal(response.status_code, 204)
        check.is_not_in(conversation["id"], [c["id"] for c in listing])
        check.equal(len(listing), 1)

    async def test_edit_and_delete_message(self, async_client: AsyncClient, provider: ProviderStub) -> None:
        provider.queue_stream(frame("reply"), DONE)
        await async_client.post("/chat", json={"message": "questoin"})
        conversation = (await async_client.get("/conversations")).json()[0]
        messages = (await async_client.get(f"/conversations/{conversation['id']}")).json()["messages"]

        edited = await async_client.patch(
            f"/conversations/{conversation['id']}/messages/{messages[0]['id']}",
            json={"content": "question"},
        )
        deleted = await async_client.delete(f"/conversations/{conversation['id']}/messages/{messages[1]['id']}")
        missing = await async_client.delete(f"/conversations/{conversation['id']}/messages/{messages[1]['id']}")

        check.equal(edited.status_code, 200)
        check.equal(edited.json()["content"], "question")
        check.is_true(edited.json()["edited"])
        check.equal(deleted.status_code, 204)
        check.equal(missing.status_code, 404)

    async def test_regenerate(self, async_client: AsyncClient, provider: ProviderStub) -> None:
        provider.queue_stream(frame("first try"), DONE)
        await async_client.post("/chat", json={"message": "question"})
        conversation_id = (await async_client.get("/conversations")).json()[0]["id"]
        provider.queue_stream(frame("second try"), DONE)

        response = await async_client.post(f"/conversations/{conversation_id}/messages/1/regenerate")
        out_of_range = await async_client.post(f"/conversations/{conversation_id}/messages/9/regenerate")

        check.equal(response.status_code, 200)
        check.equal(response.json()["message"]["content"], "second try")
        check.equal(out_of_range.status_code, 404)


class TestModelEndpoints:
    """Tests for /models."""

    async def test_list_models(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/models")

        data = response.json()
        check.equal(data["default_model"], "gpt-3.5-turbo")
        check.equal([m["id"] for m in data["models"]], ["gpt-3.5-turbo", "gpt-4"])

    async def test_add_and_delete_model(self, async_client: AsyncClient) -> None:
        added = await async_client.post("/models", json={"id": "local-llama", "name": "Local Llama"})
        duplicate = await async_client.post("/models", json={"id": "local-llama", "name": "Again"})
        deleted = await async_client.delete("/models/local-llama")

        check.equal(added.status_code, 201)
        check.equal(duplicate.status_code, 409)
        check.equal(deleted.status_code, 204)

    async def test_default_model_cannot_be_deleted(self, async_client: AsyncClient) -> None:
        response = await async_client.delete("/models/gpt-3.5-turbo")

        assert response.status_code == 409
