"""
Shared test fixtures and configuration for pytest
"""
import pytest

from popmail.utils.logging import init_logging

from .test_helpers import FakePOP3Server, MessageTestHelper, TLSTestHelper


@pytest.fixture
def sample_messages():
    """Three netease-style messages, one with a dot-stuffed body line"""
    return [
        MessageTestHelper.create_message(subject="First", plain="first body"),
        MessageTestHelper.create_message(
            subject="Second", plain="second body\n.hidden dot line\n"
        ),
        MessageTestHelper.create_message(
            subject="Third", plain="third body", html="<p>third body</p>"
        ),
    ]


@pytest.fixture
async def pop3_server_factory():
    """Start fake POP3 servers on demand and stop them after the test"""
    servers = []

    async def factory(**kwargs):
        server = FakePOP3Server(**kwargs)
        await server.start()
        servers.append(server)
        return server

    yield factory

    for server in servers:
        await server.stop()


@pytest.fixture
async def pop3_server(pop3_server_factory, sample_messages):
    """Fake POP3 server holding the sample mailbox"""
    return await pop3_server_factory(messages=sample_messages)


@pytest.fixture
def reset_logging():
    """Restore the default log handlers after a test reconfigures them"""
    yield
    init_logging(force=True)


@pytest.fixture
def server_ssl_context(tmp_path):
    """Server-side TLS context with a throwaway self-signed certificate"""
    return TLSTestHelper.create_server_context(tmp_path)
