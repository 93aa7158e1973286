"""
Tests for POP3 mailbox operations

Tests cover:
- USER/PASS/NOOP authentication and retry after rejection
- STAT, LIST and UIDL parsing
- RETR and TOP decoding, including dot-unstuffing and unknown charsets
- Batched DELE, RSET and QUIT semantics
- Session state gating
"""
import pytest

from popmail.core.pop3.connection import POP3Connection
from popmail.core.pop3.protocol import POP3Protocol
from popmail.core.pop3.session import SessionState
from popmail.utils.errors import (
    InvalidArgumentError,
    ParseError,
    ServerError,
    SessionStateError,
)

from .test_helpers import MessageTestHelper


async def open_protocol(server, **config) -> POP3Protocol:
    connection = POP3Connection(server.config(**config))
    await connection.open()
    return POP3Protocol(connection)


async def authed_protocol(server, **config) -> POP3Protocol:
    pop3 = await open_protocol(server, **config)
    await pop3.auth("alice", "secret")
    return pop3


class TestAuth:
    """Tests for authentication"""

    @pytest.mark.asyncio
    async def test_auth_success(self, pop3_server):
        pop3 = await open_protocol(pop3_server)

        await pop3.auth("alice", "secret")

        assert pop3.state is SessionState.TRANSACTION
        assert pop3_server.received == ["USER alice", "PASS secret", "NOOP"]
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_wrong_password_returns_to_connected(self, pop3_server):
        pop3 = await open_protocol(pop3_server)

        with pytest.raises(ServerError) as exc_info:
            await pop3.auth("alice", "wrong")

        assert exc_info.value.server_message == "invalid password"
        assert pop3.state is SessionState.CONNECTED
        assert pop3.connection.is_open
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_retry_after_rejection(self, pop3_server):
        pop3 = await open_protocol(pop3_server)

        with pytest.raises(ServerError):
            await pop3.auth("alice", "wrong")
        await pop3.auth("alice", "secret")

        assert pop3.state is SessionState.TRANSACTION
        assert pop3_server.verbs() == ["USER", "PASS", "USER", "PASS", "NOOP"]
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_rejection_reported_on_noop(self, pop3_server_factory):
        server = await pop3_server_factory(reject_noop_after_pass=True)
        pop3 = await open_protocol(server)

        with pytest.raises(ServerError) as exc_info:
            await pop3.auth("alice", "secret")

        assert exc_info.value.server_message == "authentication failed"
        assert pop3.state is SessionState.CONNECTED
        await pop3.connection.close()

    @pytest.mark.asyncio
    async def test_password_with_spaces(self, pop3_server_factory):
        server = await pop3_server_factory(password="two words")
        pop3 = await open_protocol(server)

        await pop3.auth("alice", "two words")

        assert server.received[1] == "PASS two words"
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_invalid_user_rejected_before_sending(self, pop3_server):
        pop3 = await open_protocol(pop3_server)

        with pytest.raises(InvalidArgumentError):
            await pop3.auth("alice smith", "secret")

        assert pop3_server.received == []
        assert pop3.state is SessionState.CONNECTED
        await pop3.connection.close()

    @pytest.mark.asyncio
    async def test_auth_twice_rejected(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        with pytest.raises(SessionStateError):
            await pop3.auth("alice", "secret")

        await pop3.quit()


class TestStat:
    """Tests for STAT"""

    @pytest.mark.asyncio
    async def test_stat(self, pop3_server, sample_messages):
        pop3 = await authed_protocol(pop3_server)

        count, size = await pop3.stat()

        assert count == 3
        assert size == sum(len(m) for m in sample_messages)
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_empty_mailbox(self, pop3_server_factory):
        server = await pop3_server_factory(messages=[])
        pop3 = await authed_protocol(server)

        assert await pop3.stat() == (0, 0)
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_zero_count_without_size(self, pop3_server_factory):
        server = await pop3_server_factory(replies={"STAT": b"+OK 0\r\n"})
        pop3 = await authed_protocol(server)

        assert await pop3.stat() == (0, 0)
        await pop3.quit()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply",
        [
            b"+OK abc 10\r\n",
            b"+OK 2 xyz\r\n",
            b"+OK 2\r\n",
            b"+OK\r\n",
            b"+OK -3 100\r\n",
            b"+OK 1_0 2_0\r\n",
            b"+OK 2 -50\r\n",
            "+OK ٣ 10\r\n".encode("utf-8"),
        ],
    )
    async def test_malformed_stat_raises_parse_error(self, pop3_server_factory, reply):
        server = await pop3_server_factory(replies={"STAT": reply})
        pop3 = await authed_protocol(server)

        with pytest.raises(ParseError):
            await pop3.stat()

        # A parse failure is not fatal to the connection
        assert pop3.connection.is_open
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_stat_before_auth_sends_nothing(self, pop3_server):
        pop3 = await open_protocol(pop3_server)

        with pytest.raises(SessionStateError) as exc_info:
            await pop3.stat()

        assert "authenticate first" in exc_info.value.message
        assert pop3_server.received == []
        await pop3.connection.close()


class TestListing:
    """Tests for LIST and UIDL"""

    @pytest.mark.asyncio
    async def test_list_all(self, pop3_server, sample_messages):
        pop3 = await authed_protocol(pop3_server)

        listing = await pop3.list()

        assert [m.id for m in listing] == [1, 2, 3]
        assert [m.size for m in listing] == [len(m) for m in sample_messages]
        assert pop3_server.received[-1] == "LIST"
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_list_single(self, pop3_server, sample_messages):
        pop3 = await authed_protocol(pop3_server)

        listing = await pop3.list(2)

        assert len(listing) == 1
        assert listing[0].id == 2
        assert listing[0].size == len(sample_messages[1])
        assert pop3_server.received[-1] == "LIST 2"
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_list_missing_message(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        with pytest.raises(ServerError):
            await pop3.list(9)

        await pop3.quit()

    @pytest.mark.asyncio
    async def test_list_stops_at_empty_line(self, pop3_server_factory):
        server = await pop3_server_factory(
            replies={"LIST": b"+OK\r\n1 100\r\n\r\n2 200\r\n.\r\n"}
        )
        pop3 = await authed_protocol(server)

        listing = await pop3.list()

        assert [m.id for m in listing] == [1]
        await pop3.quit()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "line", [b"1", b"x 100", b"1 big", b"0 100", b"1 -5", b"1_0 100", b"+1 100"]
    )
    async def test_malformed_list_line(self, pop3_server_factory, line):
        server = await pop3_server_factory(
            replies={"LIST": b"+OK\r\n" + line + b"\r\n.\r\n"}
        )
        pop3 = await authed_protocol(server)

        with pytest.raises(ParseError):
            await pop3.list()

        await pop3.quit()

    @pytest.mark.asyncio
    async def test_uidl_all(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        listing = await pop3.uidl()

        assert [(m.id, m.uid) for m in listing] == [
            (1, "uid-0001"),
            (2, "uid-0002"),
            (3, "uid-0003"),
        ]
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_uidl_single(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        listing = await pop3.uidl(3)

        assert listing[0].uid == "uid-0003"
        await pop3.quit()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [b"+OK 1_0 uid-0010\r\n", b"+OK -1 uid-0001\r\n"])
    async def test_uidl_non_decimal_id(self, pop3_server_factory, reply):
        server = await pop3_server_factory(replies={"UIDL": reply})
        pop3 = await authed_protocol(server)

        with pytest.raises(ParseError):
            await pop3.uidl(1)

        await pop3.quit()


class TestRetrieve:
    """Tests for RETR and TOP"""

    @pytest.mark.asyncio
    async def test_retr_raw_is_unstuffed_original(self, pop3_server, sample_messages):
        pop3 = await authed_protocol(pop3_server)

        raw = await pop3.retr_raw(2)

        assert raw == sample_messages[1]
        assert b"\r\n.hidden dot line\r\n" in raw
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_retr_decodes_message(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        message = await pop3.retr(1)

        assert message["Subject"] == "First"
        assert message.get_content().strip() == "first body"
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_retr_tolerates_unknown_charset(self, pop3_server_factory):
        server = await pop3_server_factory(
            messages=[MessageTestHelper.create_unknown_charset_message()]
        )
        pop3 = await authed_protocol(server)

        message = await pop3.retr(1)

        assert message["Subject"] == "Legacy"
        assert message.get_content_charset() == "x-no-such-charset"
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_retr_missing_message(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        with pytest.raises(ServerError) as exc_info:
            await pop3.retr(42)

        assert exc_info.value.server_message == "no such message"
        assert pop3.connection.is_open
        await pop3.quit()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("msg_id", [0, -1, True, "1"])
    async def test_retr_invalid_id(self, pop3_server, msg_id):
        pop3 = await authed_protocol(pop3_server)
        sent = len(pop3_server.received)

        with pytest.raises(InvalidArgumentError):
            await pop3.retr(msg_id)

        assert len(pop3_server.received) == sent
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_top_returns_headers_and_leading_lines(self, pop3_server_factory):
        raw = MessageTestHelper.create_message(
            subject="Long", plain="line one\nline two\nline three\n"
        )
        server = await pop3_server_factory(messages=[raw])
        pop3 = await authed_protocol(server)

        message = await pop3.top(1, 1)

        assert message["Subject"] == "Long"
        body = message.get_content()
        assert "line one" in body
        assert "line two" not in body
        assert server.received[-1] == "TOP 1 1"
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_top_zero_lines(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        message = await pop3.top(1, 0)

        assert message["Subject"] == "First"
        assert message.get_content().strip() == ""
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_top_negative_lines_rejected(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        with pytest.raises(InvalidArgumentError):
            await pop3.top(1, -1)

        await pop3.quit()

    @pytest.mark.asyncio
    async def test_top_tolerates_unknown_charset(self, pop3_server_factory):
        server = await pop3_server_factory(
            messages=[MessageTestHelper.create_unknown_charset_message()]
        )
        pop3 = await authed_protocol(server)

        message = await pop3.top(1, 5)

        assert message["Subject"] == "Legacy"
        await pop3.quit()


class TestDelete:
    """Tests for DELE, RSET and QUIT"""

    @pytest.mark.asyncio
    async def test_dele_commits_on_quit(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        await pop3.dele(1, 3)
        await pop3.quit()

        assert pop3_server.committed_deletions == [1, 3]
        assert pop3.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_dele_batch_stops_at_first_failure(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        with pytest.raises(ServerError) as exc_info:
            await pop3.dele(1, 7, 2)

        assert exc_info.value.details["msg_id"] == 7
        assert exc_info.value.details["deleted"] == [1]
        assert "DELE 2" not in pop3_server.received
        await pop3.quit()
        assert pop3_server.committed_deletions == [1]

    @pytest.mark.asyncio
    async def test_dele_validates_all_ids_first(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        with pytest.raises(InvalidArgumentError):
            await pop3.dele(1, 0)

        assert "DELE 1" not in pop3_server.received
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_deleted_message_hidden_from_stat(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        await pop3.dele(2)
        count, _ = await pop3.stat()

        assert count == 2
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_rset_unmarks_deletions(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        await pop3.dele(1, 2)
        await pop3.rset()
        await pop3.quit()

        assert pop3_server.committed_deletions == []

    @pytest.mark.asyncio
    async def test_close_without_quit_discards_deletions(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)

        await pop3.dele(1)
        await pop3.connection.close()

        assert "QUIT" not in pop3_server.verbs()
        assert pop3_server.committed_deletions == []


class TestNoopAndQuit:
    """Tests for NOOP and session termination"""

    @pytest.mark.asyncio
    async def test_noop_allowed_before_auth(self, pop3_server):
        pop3 = await open_protocol(pop3_server)

        await pop3.noop()

        assert pop3_server.received == ["NOOP"]
        await pop3.quit()

    @pytest.mark.asyncio
    async def test_quit_before_auth(self, pop3_server):
        pop3 = await open_protocol(pop3_server)

        await pop3.quit()

        assert pop3_server.received == ["QUIT"]
        assert pop3.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_operations_after_quit_rejected(self, pop3_server):
        pop3 = await authed_protocol(pop3_server)
        await pop3.quit()

        with pytest.raises(SessionStateError) as exc_info:
            await pop3.stat()
        assert "connection is not open" in exc_info.value.message

        with pytest.raises(SessionStateError):
            await pop3.quit()

    @pytest.mark.asyncio
    async def test_rejected_quit_still_closes(self, pop3_server_factory):
        server = await pop3_server_factory(
            replies={"QUIT": b"-ERR some deleted messages not removed\r\n"}
        )
        pop3 = await authed_protocol(server)

        with pytest.raises(ServerError):
            await pop3.quit()

        assert pop3.state is SessionState.CLOSED
        assert not pop3.connection.is_open
