"""Conversation and Message service layer.

- One conversation per upload session, created lazily by the first analysis
- Creation consumes one quota unit in the same transaction as the insert
- Conversations owned by another user read as not found (prevents probing)
- Messages are append-only and ordered by seq
"""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refyn.db.models import Conversation, File, Message, MessageRole
from refyn.db.session import transaction
from refyn.errors import ApiErrorCode, NotFoundError
from refyn.logging import get_logger
from refyn.schemas import ConversationOut, ConversationSummaryOut, FileOut, MessageOut
from refyn.services.usage import record_conversation_started

logger = get_logger(__name__)


# =============================================================================
# Helper Functions
# =============================================================================


def conversation_to_out(conversation: Conversation) -> ConversationOut:
    return ConversationOut.model_validate(conversation)


def message_to_out(message: Message) -> MessageOut:
    return MessageOut.model_validate(message)


def is_visible_to(conversation: Conversation, viewer_id: UUID) -> bool:
    """Unowned conversations are visible to everyone, owned ones to the owner."""
    return conversation.user_id is None or conversation.user_id == viewer_id


def get_by_session(db: Session, session_id: str) -> Conversation | None:
    return db.scalar(select(Conversation).where(Conversation.session_id == session_id))


def get_for_viewer(db: Session, viewer_id: UUID, session_id: str) -> Conversation | None:
    """Conversation for the session, or None when absent or not the viewer's."""
    conversation = get_by_session(db, session_id)
    if conversation is None or not is_visible_to(conversation, viewer_id):
        return None
    return conversation


def get_for_viewer_or_404(db: Session, viewer_id: UUID, session_id: str) -> Conversation:
    """Load the session's conversation and verify ownership.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation doesn't
            exist OR belongs to another user.
    """
    conversation = get_for_viewer(db, viewer_id, session_id)
    if conversation is None:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")
    return conversation


def assign_next_message_seq(db: Session, conversation_id: UUID) -> int:
    """Atomically reserve the next message sequence number.

    Single UPDATE ... RETURNING, so concurrent writers never share a seq.
    Must be called within the transaction that inserts the message.

    Raises:
        ValueError: If the conversation does not exist.
    """
    new_next = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(next_seq=Conversation.next_seq + 1)
        .returning(Conversation.next_seq)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()

    if new_next is None:
        raise ValueError(f"Conversation {conversation_id} not found")

    return new_next - 1


# =============================================================================
# Service Functions
# =============================================================================


def lookup_or_create(
    db: Session,
    *,
    session_id: str,
    user_id: UUID,
    context_prompt: str,
    media_type: str,
) -> tuple[Conversation, bool]:
    """Return the session's conversation, creating it when absent.

    Creating inserts the row and increments the user's monthly counter in one
    transaction. Losing a creation race to a concurrent request rolls back
    (so no quota is consumed) and returns the winner's row.

    Returns:
        (conversation, created)

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the session's conversation
            belongs to another user.
    """
    existing = get_by_session(db, session_id)
    if existing is not None:
        if not is_visible_to(existing, user_id):
            raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")
        return existing, False

    conversation = Conversation(
        session_id=session_id,
        user_id=user_id,
        context_prompt=context_prompt,
        media_type=media_type,
        next_seq=1,
    )
    try:
        with transaction(db):
            db.add(conversation)
            db.flush()
            record_conversation_started(db, user_id)
    except IntegrityError:
        # Lost race: another request created it; fetch the existing one
        winner = get_by_session(db, session_id)
        if winner is None:
            raise
        logger.info("conversation.create_race_lost", session_id=session_id)
        if not is_visible_to(winner, user_id):
            raise NotFoundError(
                ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found"
            ) from None
        return winner, False

    logger.info("conversation.created", conversation_id=str(conversation.id), media_type=media_type)
    return conversation, True


def append_message(db: Session, conversation_id: UUID, role: MessageRole, content: str) -> Message:
    """Append one message and commit it."""
    with transaction(db):
        seq = assign_next_message_seq(db, conversation_id)
        message = Message(
            conversation_id=conversation_id,
            seq=seq,
            role=role.value,
            content=content,
        )
        db.add(message)
    return message


def list_messages(db: Session, conversation_id: UUID) -> list[Message]:
    """All messages in creation order."""
    return list(
        db.scalars(
            select(Message).where(Message.conversation_id == conversation_id).order_by(Message.seq)
        )
    )


def get_conversation_detail(
    db: Session, viewer_id: UUID, session_id: str
) -> tuple[ConversationOut | None, list[MessageOut]]:
    """Conversation and its messages for a session, or (None, []) when not visible."""
    conversation = get_for_viewer(db, viewer_id, session_id)
    if conversation is None:
        return None, []
    messages = list_messages(db, conversation.id)
    return conversation_to_out(conversation), [message_to_out(m) for m in messages]


def list_for_user(db: Session, viewer_id: UUID) -> list[ConversationSummaryOut]:
    """Viewer's conversations, newest first, with their files and counts."""
    conversations = list(
        db.scalars(
            select(Conversation)
            .where(Conversation.user_id == viewer_id)
            .order_by(Conversation.created_at.desc(), Conversation.id)
        )
    )
    if not conversations:
        return []

    ids = [c.id for c in conversations]
    message_counts = dict(
        db.execute(
            select(Message.conversation_id, func.count())
            .where(Message.conversation_id.in_(ids))
            .group_by(Message.conversation_id)
        ).all()
    )

    session_ids = [c.session_id for c in conversations]
    files_by_session: dict[str, list[FileOut]] = {}
    for file in db.scalars(
        select(File)
        .where(File.session_id.in_(session_ids))
        .order_by(File.created_at, File.id)
    ):
        files_by_session.setdefault(file.session_id, []).append(FileOut.model_validate(file))

    summaries = []
    for conversation in conversations:
        files = files_by_session.get(conversation.session_id, [])
        summaries.append(
            ConversationSummaryOut(
                **conversation_to_out(conversation).model_dump(),
                file_count=len(files),
                message_count=message_counts.get(conversation.id, 0),
                files=files,
            )
        )
    return summaries
