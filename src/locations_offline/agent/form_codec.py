"""
Form body handling for deferred uploads.

A job stores its form as an ordered list of ``FormField`` entries. This module
owns the three conversions around that list:

* ``parse_form_body``: raw request body (multipart or urlencoded) -> fields
* ``encode_fields`` / ``decode_fields``: fields <-> JSON-safe payload
* ``build_form_data``: fields -> ``aiohttp.FormData`` for replay
"""

from __future__ import annotations

import asyncio
import base64
from typing import Iterable, Sequence
from urllib.parse import parse_qsl

import aiohttp
from aiohttp import hdrs
from aiohttp.base_protocol import BaseProtocol

from locations_offline.agent.models import FormField


async def parse_form_body(body: bytes, content_type: str) -> list[FormField]:
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "multipart/form-data":
        return await _parse_multipart(body, content_type)
    if media_type == "application/x-www-form-urlencoded":
        pairs = parse_qsl(body.decode("utf-8"), keep_blank_values=True)
        return [FormField(name=name, kind="text", value=value) for name, value in pairs]
    raise ValueError(f"Unsupported form content type: {content_type!r}")


def _buffered_stream(body: bytes) -> aiohttp.StreamReader:
    loop = asyncio.get_running_loop()
    # The limit must exceed the body so feeding it never pauses the (absent) transport.
    stream = aiohttp.StreamReader(BaseProtocol(loop), max(len(body), 2**16), loop=loop)
    stream.feed_data(body)
    stream.feed_eof()
    return stream


async def _parse_multipart(body: bytes, content_type: str) -> list[FormField]:
    reader = aiohttp.MultipartReader({hdrs.CONTENT_TYPE: content_type}, _buffered_stream(body))

    fields: list[FormField] = []
    while True:
        part = await reader.next()
        if part is None:
            break
        if isinstance(part, aiohttp.MultipartReader):
            raise ValueError("Nested multipart parts are not supported in upload forms.")
        if not part.name:
            await part.release()
            continue
        if part.filename is not None:
            fields.append(
                FormField(
                    name=part.name,
                    kind="file",
                    value=bytes(await part.read(decode=True)),
                    filename=part.filename,
                    content_type=part.headers.get(hdrs.CONTENT_TYPE, "application/octet-stream"),
                )
            )
        else:
            fields.append(FormField(name=part.name, kind="text", value=await part.text()))
    return fields


def encode_fields(fields: Iterable[FormField]) -> list[dict]:
    encoded: list[dict] = []
    for f in fields:
        if f.kind == "file":
            raw = f.value if isinstance(f.value, bytes) else f.value.encode("utf-8")
            encoded.append(
                {
                    "name": f.name,
                    "kind": "file",
                    "value": base64.b64encode(raw).decode("ascii"),
                    "filename": f.filename,
                    "content_type": f.content_type,
                }
            )
        else:
            value = f.value.decode("utf-8") if isinstance(f.value, bytes) else f.value
            encoded.append({"name": f.name, "kind": "text", "value": value})
    return encoded


def decode_fields(payload: Sequence[dict]) -> list[FormField]:
    fields: list[FormField] = []
    for entry in payload:
        kind = entry.get("kind", "text")
        if kind == "file":
            fields.append(
                FormField(
                    name=entry["name"],
                    kind="file",
                    value=base64.b64decode(entry["value"]),
                    filename=entry.get("filename"),
                    content_type=entry.get("content_type"),
                )
            )
        elif kind == "text":
            fields.append(FormField(name=entry["name"], kind="text", value=str(entry["value"])))
        else:
            raise ValueError(f"Unknown form field kind: {kind!r}")
    return fields


def build_form_data(fields: Iterable[FormField]) -> aiohttp.FormData:
    # Text-only forms would otherwise be sent urlencoded.
    form = aiohttp.FormData(default_to_multipart=True)
    for f in fields:
        if f.kind == "file":
            form.add_field(
                f.name,
                f.value,
                filename=f.filename or f.name,
                content_type=f.content_type or "application/octet-stream",
            )
        else:
            form.add_field(f.name, f.value)
    return form
