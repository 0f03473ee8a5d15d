import asyncio
import json
from collections import Counter
from datetime import datetime

from aiohttp import web
from loguru import logger


class JobServer:
    """Local stand-in for a remote job service, used by the example and tests"""

    def __init__(self, completion_time: float = 10.0, slow_delay: float = 5.0):
        self.start_time = None
        self.completion_time = completion_time
        self.slow_delay = slow_delay
        self.result_payload = {"job_id": "demo", "output": "done"}
        self.request_counts = Counter()
        self.runner = None
        self.app = web.Application()
        self.app.router.add_get("/status", self.handle_status)
        self.app.router.add_get("/result", self.handle_result)
        self.app.router.add_get("/empty", self.handle_empty)
        self.app.router.add_get("/invalid", self.handle_invalid)
        self.app.router.add_get("/slow", self.handle_slow)
        self.app.router.add_route("*", "/echo", self.handle_echo)
        self.logger = logger

    async def handle_status(self, request):
        self.request_counts["status"] += 1
        if self.start_time is None:
            self.start_time = datetime.now()

        elapsed = (datetime.now() - self.start_time).total_seconds()

        if elapsed >= self.completion_time:
            self.logger.info("Returning completed status")
            return web.json_response({"status": "completed"})
        else:
            self.logger.info(f"Returning pending status (elapsed: {elapsed:.1f}s)")
            return web.json_response({"status": "pending"})

    async def handle_result(self, request):
        self.request_counts["result"] += 1
        return web.json_response(self.result_payload)

    async def handle_empty(self, request):
        self.request_counts["empty"] += 1
        return web.Response(body=b"")

    async def handle_invalid(self, request):
        self.request_counts["invalid"] += 1
        return web.Response(text="definitely not json", content_type="text/plain")

    async def handle_slow(self, request):
        self.request_counts["slow"] += 1
        await asyncio.sleep(self.slow_delay)
        return web.json_response({"status": "completed"})

    async def handle_echo(self, request):
        self.request_counts["echo"] += 1
        raw = await request.read()
        return web.json_response(
            {
                "method": request.method,
                "headers": dict(request.headers),
                "body": json.loads(raw) if raw else None,
            }
        )

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
