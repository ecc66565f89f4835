"""aiohttp application factory and server lifecycle."""

from __future__ import annotations

import logging

from aiohttp import web

from vivaro.core import Vivaro
from vivaro.errors import FolderNotEmptyError, NotFoundError, ValidationError
from vivaro.store.entity_store import FILES_URL_PREFIX
from vivaro.web.routes import VIVARO_KEY, routes

logger = logging.getLogger(__name__)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map application errors to JSON responses with a status code."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except FolderNotEmptyError as e:
        logger.warning("%s %s: %s", request.method, request.path, e)
        return web.json_response({"error": str(e), "count": e.count}, status=409)
    except ValidationError as e:
        logger.warning("%s %s: %s", request.method, request.path, e)
        return web.json_response({"error": str(e), "field": e.field}, status=400)
    except NotFoundError as e:
        logger.info("%s %s: %s", request.method, request.path, e)
        return web.json_response({"error": str(e)}, status=404)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response({"error": "Internal server error"}, status=500)


def create_app(vivaro: Vivaro) -> web.Application:
    """Build the API application around an orchestrator."""
    max_size = vivaro.config.server.max_upload_mb * 1024 * 1024
    app = web.Application(middlewares=[error_middleware], client_max_size=max_size)
    app[VIVARO_KEY] = vivaro
    app.router.add_routes(routes)

    files_root = vivaro.store.root
    files_root.mkdir(parents=True, exist_ok=True)
    app.router.add_static(FILES_URL_PREFIX.rstrip("/"), files_root)
    return app


class VivaroServer:
    """Runs the API application on a TCP site until stopped."""

    def __init__(self, vivaro: Vivaro) -> None:
        self.vivaro = vivaro
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        server = self.vivaro.config.server
        self._runner = web.AppRunner(create_app(self.vivaro))
        await self._runner.setup()
        site = web.TCPSite(self._runner, server.host, server.port)
        await site.start()
        logger.info("API server listening on http://%s:%d", server.host, server.port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("API server stopped")
