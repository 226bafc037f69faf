"""测试辅助：SSE 帧构造与按路径分派的假服务端（httpx.MockTransport）。"""

import asyncio
import json

import httpx


def sse(*contents: str) -> bytes:
    return "".join(
        f"data: {json.dumps({'content': c}, ensure_ascii=False)}\n\n" for c in contents
    ).encode("utf-8")


async def chunks(*parts: bytes, stall_after: bool = False):
    """按块产出字节；stall_after 为 True 时之后一直挂起（模拟上游卡住）。"""
    for part in parts:
        yield part
    if stall_after:
        await asyncio.sleep(3600)


class FakeServer:
    """按路径分派的假服务端，记录所有请求。

    replies: aiName -> bytes（一次性返回）| "stall"（不返回任何数据）|
             ("partial", bytes)（返回后挂起）| Exception（连接失败）
    """

    def __init__(self):
        self.replies: dict = {}
        self.selected: list[str] | None = None
        self.scheduler_status = 200
        self.history: dict[str, list] = {}
        self.history_status = 200
        self.requests: list[tuple[str, str, dict]] = []
        self.init_data: dict = {"groups": [], "characters": [], "user": None}

    def chat_requests(self) -> list[dict]:
        return [body for method, path, body in self.requests if path in ("/api/chat", "/rag/query")]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        path = request.url.path
        self.requests.append((request.method, path, body))

        if path in ("/api/chat", "/rag/query"):
            reply = self.replies.get(body.get("aiName"), sse("好的"))
            if isinstance(reply, Exception):
                raise reply
            if reply == "stall":
                return httpx.Response(200, content=chunks(stall_after=True))
            if isinstance(reply, tuple) and reply[0] == "partial":
                return httpx.Response(200, content=chunks(reply[1], stall_after=True))
            return httpx.Response(200, content=chunks(reply))

        if path == "/api/scheduler":
            if self.scheduler_status != 200:
                return httpx.Response(self.scheduler_status, json={"error": "boom"})
            return httpx.Response(200, json={"selectedAIs": self.selected or []})

        if path == "/api/history":
            if self.history_status != 200:
                return httpx.Response(self.history_status, json={"success": False, "message": "boom"})
            group_id = request.url.params.get("groupId") or body.get("groupId")
            if request.method == "GET":
                return httpx.Response(200, json={"success": True, "messages": self.history.get(group_id, [])})
            if request.method == "POST":
                self.history[group_id] = body["messages"]
                return httpx.Response(200, json={"success": True})
            if request.method == "DELETE":
                self.history.pop(group_id, None)
                return httpx.Response(200, json={"success": True})

        if path == "/api/init":
            return httpx.Response(200, json={"data": self.init_data})

        return httpx.Response(404, json={"detail": "Not Found"})
