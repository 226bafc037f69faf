"""测试公共夹具。"""

import httpx
import pytest

from src.client.transport import Transport
from src.models.character import Character, Group
from tests.helpers import FakeServer


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
async def transport(fake_server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_server.handler), base_url="http://test")
    t = Transport(client=client)
    yield t
    await t.aclose()


@pytest.fixture
def characters():
    return [
        Character(id="ai1", name="千问", model="qwen-plus", personality="high_eq",
                  custom_prompt="你在#groupName#群里"),
        Character(id="ai2", name="DeepSeek", model="deepseek-chat", personality="deepseek-v3",
                  custom_prompt="你是DeepSeek"),
        Character(id="ai3", name="Kimi", model="moonshot-v1-8k", personality="kimi",
                  custom_prompt="你是Kimi"),
    ]


@pytest.fixture
def discussion_group():
    return Group(id="g1", name="测试群", description="随便聊", members=["ai1", "ai2", "ai3"],
                 is_group_discussion_mode=True)


@pytest.fixture
def scheduled_group():
    return Group(id="g2", name="调度群", description="", members=["ai1", "ai2", "ai3"],
                 is_group_discussion_mode=False)
