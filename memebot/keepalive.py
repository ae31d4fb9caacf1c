"""Tiny HTTP endpoint so hosting platforms can see the process is alive."""

from __future__ import annotations

import logging

from aiohttp import web

logger = logging.getLogger("memebot.keepalive")

ALIVE_TEXT = "Bot is alive!"


async def alive_handler(_request: web.Request) -> web.Response:
    return web.Response(text=ALIVE_TEXT)


def create_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/", alive_handler)
    return app


async def start_keepalive(port: int, host: str = "0.0.0.0") -> web.AppRunner:
    runner = web.AppRunner(create_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Keep-alive server listening on port %s", port)
    return runner


__all__ = ["ALIVE_TEXT", "create_app", "start_keepalive"]
