"""REST routes of the local API server.

Handlers only translate HTTP into ``Vivaro`` calls and records into JSON;
errors raised below are mapped to status codes by the app's middleware.
"""

from __future__ import annotations

import asyncio
import json

from aiohttp import web

from vivaro import __version__
from vivaro.core import Vivaro
from vivaro.errors import ValidationError
from vivaro.folders.tree import normalize_path
from vivaro.store.records import now_iso


VIVARO_KEY = web.AppKey("vivaro", Vivaro)

routes = web.RouteTableDef()

_CLIENT = "/api/clients/{client_id}"
_FOLDERED = _CLIENT + "/{kind:notes|resources}"
_ITEMS = _CLIENT + "/{kind:reminders|milestones|contacts}"


def _vivaro(request: web.Request) -> Vivaro:
    return request.app[VIVARO_KEY]


async def _json_body(request: web.Request) -> dict:
    """Parse the request body as a JSON object or raise ValidationError."""
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise ValidationError("Request body is not valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _path_field(body: dict, key: str) -> str:
    value = body.get(key) or ""
    if not isinstance(value, str):
        raise ValidationError(f"'{key}' must be a folder path string", field=key)
    return value


def _success(**extra) -> web.Response:
    return web.json_response({"success": True, **extra})


# ── Health ────────────────────────────────────────────────────


@routes.get("/api/health")
async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "version": __version__, "timestamp": now_iso()})


# ── Clients ───────────────────────────────────────────────────


@routes.get("/api/clients")
async def list_clients(request: web.Request) -> web.Response:
    clients = await _vivaro(request).list_clients()
    return web.json_response([c.to_dict() for c in clients])


@routes.post("/api/clients")
async def create_client(request: web.Request) -> web.Response:
    client = await _vivaro(request).create_client(await _json_body(request))
    return web.json_response(client.to_dict(), status=201)


@routes.get(_CLIENT)
async def get_client(request: web.Request) -> web.Response:
    client = await _vivaro(request).get_client(request.match_info["client_id"])
    return web.json_response(client.to_dict())


@routes.put(_CLIENT)
async def update_client(request: web.Request) -> web.Response:
    client = await _vivaro(request).update_client(
        request.match_info["client_id"], await _json_body(request)
    )
    return web.json_response(client.to_dict())


@routes.delete(_CLIENT)
async def delete_client(request: web.Request) -> web.Response:
    await _vivaro(request).delete_client(request.match_info["client_id"])
    return _success()


@routes.patch(_CLIENT + "/archive")
async def archive_client(request: web.Request) -> web.Response:
    client = await _vivaro(request).archive_client(request.match_info["client_id"])
    return web.json_response(client.to_dict())


@routes.patch(_CLIENT + "/unarchive")
async def unarchive_client(request: web.Request) -> web.Response:
    client = await _vivaro(request).unarchive_client(request.match_info["client_id"])
    return web.json_response(client.to_dict())


# ── Virtual folders (registered before the item routes they shadow) ──


@routes.get(_FOLDERED + "/folders/tree")
async def folder_tree(request: web.Request) -> web.Response:
    info = request.match_info
    tree = await _vivaro(request).folder_tree(info["client_id"], info["kind"])
    return web.json_response(tree.to_dict())


@routes.get(_FOLDERED + "/folders")
async def folder_contents(request: web.Request) -> web.Response:
    info = request.match_info
    contents = await _vivaro(request).folder_contents(
        info["client_id"], info["kind"], request.query.get("path", "")
    )
    return web.json_response(contents.to_dict())


@routes.post(_FOLDERED + "/folders")
async def create_folder(request: web.Request) -> web.Response:
    info = request.match_info
    path = _path_field(await _json_body(request), "path")
    markers = await _vivaro(request).create_folder(info["client_id"], info["kind"], path)
    return web.json_response(
        {"path": normalize_path(path), "created": [m.to_dict() for m in markers]},
        status=201,
    )


@routes.delete(_FOLDERED + "/folders")
async def delete_folder(request: web.Request) -> web.Response:
    info = request.match_info
    removed = await _vivaro(request).delete_folder(
        info["client_id"], info["kind"], request.query.get("path", "")
    )
    return _success(removed=removed)


@routes.patch(_FOLDERED + "/folders/move")
async def move_folder(request: web.Request) -> web.Response:
    info = request.match_info
    body = await _json_body(request)
    moved = await _vivaro(request).move_folder(
        info["client_id"], info["kind"], _path_field(body, "from"), _path_field(body, "to")
    )
    return _success(moved=moved)


@routes.patch(_FOLDERED + "/{entity_id}/folder")
async def move_entity(request: web.Request) -> web.Response:
    info = request.match_info
    body = await _json_body(request)
    entity = await _vivaro(request).move_entity(
        info["client_id"], info["kind"], info["entity_id"], _path_field(body, "folder")
    )
    return web.json_response(entity.to_dict())


# ── Meeting notes ─────────────────────────────────────────────


@routes.get(_CLIENT + "/meeting-notes")
async def list_notes(request: web.Request) -> web.Response:
    notes = await _vivaro(request).list_notes(request.match_info["client_id"])
    return web.json_response([n.to_dict() for n in notes])


@routes.post(_CLIENT + "/meeting-notes")
async def create_note(request: web.Request) -> web.Response:
    note = await _vivaro(request).create_note(
        request.match_info["client_id"], await _json_body(request)
    )
    return web.json_response(note.to_dict(), status=201)


@routes.put(_CLIENT + "/meeting-notes/{note_id}")
async def update_note(request: web.Request) -> web.Response:
    info = request.match_info
    note = await _vivaro(request).update_note(
        info["client_id"], info["note_id"], await _json_body(request)
    )
    return web.json_response(note.to_dict())


@routes.delete(_CLIENT + "/meeting-notes/{note_id}")
async def delete_note(request: web.Request) -> web.Response:
    info = request.match_info
    await _vivaro(request).delete_note(info["client_id"], info["note_id"])
    return _success()


# ── Resources ─────────────────────────────────────────────────


@routes.get(_CLIENT + "/resources")
async def list_resources(request: web.Request) -> web.Response:
    resources = await _vivaro(request).list_resources(request.match_info["client_id"])
    return web.json_response([r.to_dict() for r in resources])


@routes.post(_CLIENT + "/resources/link")
async def create_link(request: web.Request) -> web.Response:
    resource = await _vivaro(request).create_link(
        request.match_info["client_id"], await _json_body(request)
    )
    return web.json_response(resource.to_dict(), status=201)


@routes.post(_CLIENT + "/resources/file")
async def upload_file(request: web.Request) -> web.Response:
    form = await request.post()
    upload = form.get("file")
    if not isinstance(upload, web.FileField):
        raise ValidationError("No file uploaded", field="file")
    data = await asyncio.to_thread(upload.file.read)
    resource = await _vivaro(request).upload_file(
        request.match_info["client_id"],
        upload.filename,
        data,
        title=str(form.get("title") or ""),
        description=str(form.get("description") or ""),
        folder=str(form.get("folder") or ""),
    )
    return web.json_response(resource.to_dict(), status=201)


@routes.put(_CLIENT + "/resources/{resource_id}")
async def update_resource(request: web.Request) -> web.Response:
    info = request.match_info
    resource = await _vivaro(request).update_resource(
        info["client_id"], info["resource_id"], await _json_body(request)
    )
    return web.json_response(resource.to_dict())


@routes.delete(_CLIENT + "/resources/{resource_id}")
async def delete_resource(request: web.Request) -> web.Response:
    info = request.match_info
    await _vivaro(request).delete_resource(info["client_id"], info["resource_id"])
    return _success()


# ── Reminders, milestones, contacts ───────────────────────────


@routes.get(_ITEMS)
async def list_items(request: web.Request) -> web.Response:
    info = request.match_info
    items = await _vivaro(request).list_items(info["client_id"], info["kind"])
    return web.json_response([i.to_dict() for i in items])


@routes.post(_ITEMS)
async def create_item(request: web.Request) -> web.Response:
    info = request.match_info
    item = await _vivaro(request).create_item(
        info["client_id"], info["kind"], await _json_body(request)
    )
    return web.json_response(item.to_dict(), status=201)


@routes.put(_ITEMS + "/{item_id}")
async def update_item(request: web.Request) -> web.Response:
    info = request.match_info
    item = await _vivaro(request).update_item(
        info["client_id"], info["kind"], info["item_id"], await _json_body(request)
    )
    return web.json_response(item.to_dict())


@routes.delete(_ITEMS + "/{item_id}")
async def delete_item(request: web.Request) -> web.Response:
    info = request.match_info
    await _vivaro(request).delete_item(info["client_id"], info["kind"], info["item_id"])
    return _success()
