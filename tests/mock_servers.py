"""
Mock ntfy relay for integration testing.

- GET  /v1/health            health probe
- WS   /{topics}/ws          subscribe to comma-separated topics
- POST /{topic}              publish (body = message, Title/Priority/Tags headers)
- POST /_test/drop           close every socket with 1011
- GET  /_test/stats          connection counters
"""

import asyncio
import json
import time
import uuid

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect

_DROP = object()


class _RelayState:
    def __init__(self):
        self.subscribers: list[tuple[set[str], asyncio.Queue]] = []
        self.connections = 0
        self.paths: list[str] = []


def create_relay_app() -> FastAPI:
    app = FastAPI(title="Mock relay")
    relay = _RelayState()

    @app.get("/v1/health")
    async def health():
        return {"healthy": True}

    @app.get("/_test/stats")
    async def stats():
        return {
            "connections": relay.connections,
            "active": len(relay.subscribers),
            "paths": relay.paths,
        }

    @app.post("/_test/drop")
    async def drop():
        for _, queue in relay.subscribers:
            queue.put_nowait(_DROP)
        return {"dropped": len(relay.subscribers)}

    @app.post("/{topic}")
    async def publish(topic: str, request: Request):
        body = (await request.body()).decode()
        msg = {
            "id": uuid.uuid4().hex[:12],
            "time": int(time.time()),
            "event": "message",
            "topic": topic,
            "message": body,
        }
        if "title" in request.headers:
            msg["title"] = request.headers["title"]
        if "priority" in request.headers:
            msg["priority"] = int(request.headers["priority"])
        if "tags" in request.headers:
            msg["tags"] = request.headers["tags"].split(",")
        frame = json.dumps(msg)
        for wanted, queue in relay.subscribers:
            if topic in wanted:
                queue.put_nowait(frame)
        return msg

    @app.websocket("/{topics}/ws")
    async def subscribe(websocket: WebSocket, topics: str):
        await websocket.accept()
        wanted = set(topics.split(","))
        queue: asyncio.Queue = asyncio.Queue()
        entry = (wanted, queue)
        relay.subscribers.append(entry)
        relay.connections += 1
        relay.paths.append(topics)

        await websocket.send_text(json.dumps({
            "id": uuid.uuid4().hex[:12],
            "time": int(time.time()),
            "event": "open",
            "topic": topics,
        }))

        async def pump():
            while True:
                item = await queue.get()
                if item is _DROP:
                    await websocket.close(code=1011)
                    return
                await websocket.send_text(item)

        async def watch():
            try:
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                return

        tasks = [asyncio.create_task(pump()), asyncio.create_task(watch())]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            relay.subscribers.remove(entry)

    return app
