"""Tests for follow-up chat and POST /api/chat."""

import base64

import pytest

from refyn.db.models import Message, User
from refyn.errors import ApiError, ApiErrorCode, InvalidRequestError, NotFoundError
from refyn.services.chat import CHAT_FAILED_MESSAGE, send_message
from refyn.services.conversations import list_messages
from refyn.services.llm import InlineDataPart, LLMOperation, TextPart
from refyn.services.prompts import MEDIUM_SYSTEM_PROMPTS
from tests.factories import (
    create_test_conversation,
    create_test_file,
    create_test_message,
    create_test_user,
)
from tests.helpers import auth_headers, create_test_user_id


@pytest.fixture
def analyzed_session(db_session, primary_backend):
    """A music session with one analysis message and one uploaded track."""
    user = create_test_user(db_session, used=5)
    conversation = create_test_conversation(
        db_session, session_id="abc", user_id=user.id, media_type="music"
    )
    create_test_message(db_session, conversation, "ai", "The mix is muddy below 200Hz.")
    create_test_file(
        db_session,
        session_id="abc",
        user_id=user.id,
        original_name="take1.mp3",
        mime_type="audio/mpeg",
        data=b"ID3 audio",
        backend=primary_backend,
    )
    return user, conversation


async def run_chat(db_session, user_id, blob_store, fake_router, feedback_config, **overrides):
    kwargs = {
        "viewer_id": user_id,
        "session_id": "abc",
        "message": "How do I fix the low end?",
        "store": blob_store,
        "router": fake_router,
        "config": feedback_config,
    }
    kwargs.update(overrides)
    return await send_message(db_session, **kwargs)


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_appends_user_and_ai_messages(
        self, db_session, analyzed_session, blob_store, fake_router, feedback_config
    ):
        user, conversation = analyzed_session

        result = await run_chat(db_session, user.id, blob_store, fake_router, feedback_config)

        assert result.message.role == "ai"
        assert result.message.seq == 3
        messages = list_messages(db_session, conversation.id)
        assert [(m.seq, m.role) for m in messages] == [(1, "ai"), (2, "user"), (3, "ai")]
        assert messages[1].content == "How do I fix the low end?"

    @pytest.mark.asyncio
    async def test_request_has_medium_transcript_and_files(
        self, db_session, analyzed_session, blob_store, fake_router, feedback_config
    ):
        user, _ = analyzed_session

        await run_chat(db_session, user.id, blob_store, fake_router, feedback_config)

        turns = fake_router.calls_for(LLMOperation.CHAT)[0].request.messages
        assert turns[0].role == "system"
        assert turns[0].text == MEDIUM_SYSTEM_PROMPTS["music"]
        assert turns[1].role == "user"
        prompt, audio = turns[1].parts
        assert isinstance(prompt, TextPart)
        assert "AI: The mix is muddy below 200Hz.\n\nUser: How do I fix the low end?" in prompt.text
        assert "User's new question: How do I fix the low end?" in prompt.text
        assert audio == InlineDataPart("audio/mpeg", base64.b64encode(b"ID3 audio").decode())

    @pytest.mark.asyncio
    async def test_never_touches_quota(
        self, db_session, analyzed_session, blob_store, fake_router, feedback_config
    ):
        user, _ = analyzed_session

        await run_chat(db_session, user.id, blob_store, fake_router, feedback_config)

        db_session.expire_all()
        assert db_session.get(User, user.id).conversations_this_month == 5

    @pytest.mark.asyncio
    async def test_unknown_session_writes_nothing(
        self, db_session, blob_store, fake_router, feedback_config
    ):
        user = create_test_user(db_session)

        with pytest.raises(NotFoundError) as exc_info:
            await run_chat(db_session, user.id, blob_store, fake_router, feedback_config)

        assert exc_info.value.code == ApiErrorCode.E_CONVERSATION_NOT_FOUND
        assert db_session.query(Message).count() == 0
        assert fake_router.calls == []

    @pytest.mark.asyncio
    async def test_foreign_session_is_not_found(
        self, db_session, analyzed_session, blob_store, fake_router, feedback_config
    ):
        intruder = create_test_user(db_session)

        with pytest.raises(NotFoundError):
            await run_chat(db_session, intruder.id, blob_store, fake_router, feedback_config)
        assert db_session.query(Message).count() == 1

    @pytest.mark.asyncio
    async def test_model_failure_keeps_user_message(
        self, db_session, analyzed_session, blob_store, fake_router, feedback_config
    ):
        user, conversation = analyzed_session
        fake_router.fail(LLMOperation.CHAT)

        with pytest.raises(ApiError) as exc_info:
            await run_chat(db_session, user.id, blob_store, fake_router, feedback_config)

        assert exc_info.value.code == ApiErrorCode.E_CHAT_FAILED
        assert exc_info.value.message == CHAT_FAILED_MESSAGE
        roles = [m.role for m in list_messages(db_session, conversation.id)]
        assert roles == ["ai", "user"]

    @pytest.mark.asyncio
    async def test_blank_message_rejected(self, db_session, blob_store, fake_router, feedback_config):
        user = create_test_user(db_session)

        with pytest.raises(InvalidRequestError) as exc_info:
            await run_chat(db_session, user.id, blob_store, fake_router, feedback_config, message=" ")
        assert exc_info.value.message == "Session ID and message are required"


class TestChatRoute:
    def test_success(self, auth_client, db_session, analyzed_session):
        user, _ = analyzed_session

        response = auth_client.post(
            "/api/chat",
            json={"sessionId": "abc", "message": "And the vocals?"},
            headers=auth_headers(user.id),
        )

        assert response.status_code == 200
        message = response.json()["data"]["message"]
        assert message["role"] == "ai"
        assert message["seq"] == 3

    def test_no_conversation_is_404(self, auth_client, db_session):
        user_id = create_test_user_id()

        response = auth_client.post(
            "/api/chat",
            json={"sessionId": "never-analyzed", "message": "Hello?"},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_CONVERSATION_NOT_FOUND"
        assert response.json()["error"]["message"] == "Conversation not found"
        db_session.expire_all()
        assert db_session.query(Message).count() == 0
