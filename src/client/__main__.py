"""终端群聊客户端：python -m src.client --group 0 --name 我

命令：/cancel 中止当前回复，/mute <角色id> 切换静音，/discuss 切换讨论模式，
/reset 清空本群记录，/quit 退出。其余输入作为消息发送。
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from src.client.persistence import LocalStorage
from src.client.session import ChatSession
from src.client.transport import Transport
from src.models.chat import ChatMessage


class ConsolePrinter:
    """把消息列表的变化增量打印到终端。"""

    def __init__(self):
        self._printed: dict[int, str] = {}

    def __call__(self, messages: list[ChatMessage]) -> None:
        if not messages:
            self._printed.clear()
            return
        message = messages[-1]
        printed = self._printed.get(message.id)
        if printed is None:
            sys.stdout.write(f"\n[{message.sender.name}] {message.content}")
        elif message.content.startswith(printed):
            sys.stdout.write(message.content[len(printed):])
        else:
            sys.stdout.write(f"\r[{message.sender.name}] {message.content}")
        sys.stdout.flush()
        self._printed[message.id] = message.content


async def _read_line(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def run(args: argparse.Namespace) -> None:
    transport = Transport(base_url=args.base_url)
    storage = LocalStorage(args.storage_dir)
    session = await ChatSession.from_init(transport, args.group, storage, user_name=args.name)
    watcher = asyncio.create_task(storage.watch())
    send_task: asyncio.Task | None = None
    try:
        await session.enter()
        print(f"# {session.group.name}  {session.group.description}")
        for message in session.messages:
            print(f"[{message.sender.name}] {message.content}")
        print("# 成员: " + ", ".join(f"{c.name}({c.id})" for c in session.roster))
        session.message_list.subscribe(ConsolePrinter())

        while True:
            line = (await _read_line("\n> ")).strip()
            if not line:
                continue
            if line == "/quit":
                break
            if line == "/cancel":
                session.cancel()
            elif line.startswith("/mute "):
                character_id = line.split(maxsplit=1)[1]
                print("已静音" if session.toggle_mute(character_id) else "已取消静音", character_id)
            elif line == "/discuss":
                print("讨论模式:", "开" if session.toggle_discussion_mode() else "关")
            elif line == "/reset":
                await session.reset()
                print("已清空")
            elif send_task is not None and not send_task.done():
                print("上一条消息仍在回复中，可输入 /cancel 中止")
            else:
                send_task = asyncio.create_task(session.send(line))
    finally:
        if send_task is not None and not send_task.done():
            session.cancel()
            await send_task
        watcher.cancel()
        await session.close()
        await transport.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(description="AI 群聊终端客户端")
    parser.add_argument("--base-url", default="http://localhost:8788")
    parser.add_argument("--group", type=int, default=0, help="群组序号")
    parser.add_argument("--name", default="", help="你的显示名")
    parser.add_argument("--storage-dir", default="data/local_storage")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    try:
        asyncio.run(run(args))
    except (KeyboardInterrupt, EOFError):
        pass


if __name__ == "__main__":
    main()
