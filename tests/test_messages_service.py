"""
Case messaging
"""

from datetime import timedelta

import pytest

from models.enums import CaseStatus
from models.message import MessageCreateRequest
from services.base_service import ErrorType
from utils.auth import AuthContext
from utils.pagination import PageParams
from fakes import make_case


@pytest.fixture
def case(cases_repo, client_user, lawyer):
    return cases_repo.add(make_case(client_user.id, status=CaseStatus.ASSIGNED, lawyer_id=lawyer.id))


class TestSend:

    @pytest.mark.asyncio
    async def test_client_writes_to_lawyer(self, messages_service, case, client_actor, lawyer_user):
        result = await messages_service.send(client_actor, MessageCreateRequest(
            case_id=case.id, receiver_id=lawyer_user.id, content="Do I need to attend the hearing?"
        ))

        message = result.first
        assert message.sender_id == client_actor.user_id
        assert not message.is_read

    @pytest.mark.asyncio
    async def test_outsider_cannot_write(self, messages_service, case, lawyer_user):
        result = await messages_service.send(AuthContext(user_id="outsider"), MessageCreateRequest(
            case_id=case.id, receiver_id=lawyer_user.id, content="hello"
        ))
        assert result.error_type == ErrorType.AUTHORIZATION_ERROR

    @pytest.mark.asyncio
    async def test_receiver_must_take_part(self, messages_service, case, client_actor):
        result = await messages_service.send(client_actor, MessageCreateRequest(
            case_id=case.id, receiver_id="random-user", content="hello"
        ))
        assert result.error_type == ErrorType.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_support_can_write_to_participants(self, messages_service, case, client_actor):
        support = AuthContext(user_id="support-1", role="support")
        result = await messages_service.send(support, MessageCreateRequest(
            case_id=case.id, receiver_id=client_actor.user_id, content="Your hearing moved to Friday"
        ))
        assert result.success


class TestConversation:

    @pytest.mark.asyncio
    async def test_newest_first_and_marked_read(self, messages_service, messages_repo, case, client_actor,
                                                lawyer_actor):
        for index in range(3):
            sent = await messages_service.send(lawyer_actor, MessageCreateRequest(
                case_id=case.id, receiver_id=client_actor.user_id, content=f"Update {index}"
            ))
            # Spread timestamps so ordering is deterministic
            messages_repo.messages[-1].created_at = sent.first.created_at + timedelta(seconds=index)

        result = await messages_service.list_for_case(client_actor, case.id, PageParams(limit=2))

        assert [m.content for m in result.data] == ["Update 2", "Update 1"]
        assert result.page_info["total"] == 3
        assert all(m.is_read for m in messages_repo.messages)

    @pytest.mark.asyncio
    async def test_sender_reading_leaves_unread(self, messages_service, messages_repo, case, client_actor,
                                                lawyer_actor):
        await messages_service.send(lawyer_actor, MessageCreateRequest(
            case_id=case.id, receiver_id=client_actor.user_id, content="Filed the motion"
        ))

        await messages_service.list_for_case(lawyer_actor, case.id, PageParams())

        assert not messages_repo.messages[0].is_read

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, messages_service, case):
        result = await messages_service.list_for_case(AuthContext(user_id="outsider"), case.id, PageParams())
        assert result.error_type == ErrorType.AUTHORIZATION_ERROR


class TestInbox:

    @pytest.mark.asyncio
    async def test_unread_count_and_conversations(self, messages_service, messages_repo, cases_repo, case,
                                                  client_user, client_actor, lawyer, lawyer_actor):
        other = cases_repo.add(make_case(client_user.id, status=CaseStatus.ASSIGNED, lawyer_id=lawyer.id))
        for index, (case_id, content) in enumerate(((case.id, "First"), (other.id, "Second"), (case.id, "Third"))):
            sent = await messages_service.send(lawyer_actor, MessageCreateRequest(
                case_id=case_id, receiver_id=client_actor.user_id, content=content
            ))
            messages_repo.messages[-1].created_at = sent.first.created_at + timedelta(seconds=index)

        count = await messages_service.unread_count(client_actor)
        conversations = await messages_service.conversations(client_actor)

        assert count.first == {"unread_count": 3}
        assert [(c.case_id, c.last_message.content, c.unread_count) for c in conversations.data] == [
            (case.id, "Third", 2), (other.id, "Second", 1)
        ]
        assert (await messages_service.unread_count(lawyer_actor)).first == {"unread_count": 0}

    @pytest.mark.asyncio
    async def test_receiver_marks_read(self, messages_service, case, client_actor, lawyer_actor):
        sent = await messages_service.send(lawyer_actor, MessageCreateRequest(
            case_id=case.id, receiver_id=client_actor.user_id, content="Court date confirmed"
        ))

        by_sender = await messages_service.mark_read(lawyer_actor, sent.first.id)
        by_receiver = await messages_service.mark_read(client_actor, sent.first.id)
        again = await messages_service.mark_read(client_actor, sent.first.id)

        assert by_sender.error_type == ErrorType.AUTHORIZATION_ERROR
        assert by_receiver.first.is_read
        assert again.first.read_at == by_receiver.first.read_at

    @pytest.mark.asyncio
    async def test_unknown_message(self, messages_service, client_actor):
        result = await messages_service.mark_read(client_actor, "missing")
        assert result.error_type == ErrorType.NOT_FOUND
