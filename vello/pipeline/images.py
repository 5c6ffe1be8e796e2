from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import replace
from typing import List, Optional, Tuple

import httpx

from .. import config
from .blocks import Block, ContainerProperties, ImageProperties

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?),(?P<payload>.*)$", re.S)


def is_valid_image_source(src: str) -> bool:
    return bool(src) and src.startswith(("data:", "http://", "https://", "/"))


def is_remote(src: str) -> bool:
    return bool(src) and src.startswith(("http://", "https://"))


def decode_data_url(src: str) -> Tuple[str, bytes]:
    match = DATA_URL_RE.match(src or "")
    if not match:
        raise ValueError("Not a data URL")
    mime = match.group("mime") or "text/plain"
    payload = match.group("payload")
    if ";base64" in (match.group("params") or ""):
        try:
            return mime, base64.b64decode(payload, validate=False)
        except binascii.Error as exc:
            raise ValueError(f"Invalid base64 payload: {exc}") from exc
    return mime, payload.encode("utf-8")


def fetch_image_as_data_url(url: str, client: httpx.Client) -> Optional[str]:
    try:
        response = client.get(url)
    except httpx.HTTPError as exc:
        logger.warning("Error fetching image %s: %s", url[:80], exc)
        return None
    if not response.is_success:
        logger.warning("Failed to fetch image %s: %s", url[:80], response.status_code)
        return None
    content_type = response.headers.get("content-type", "").split(";")[0].strip()
    if not content_type.startswith("image/"):
        logger.warning("Invalid content type for image %s: %s", url[:80], content_type or "missing")
        return None
    payload = base64.b64encode(response.content).decode("ascii")
    return f"data:{content_type};base64,{payload}"


def _embed(blocks: List[Block], client: httpx.Client) -> List[Block]:
    out: List[Block] = []
    for block in blocks:
        props = block.properties
        if isinstance(props, ImageProperties) and is_remote(props.src):
            data_url = fetch_image_as_data_url(props.src, client)
            if data_url:
                block = replace(block, properties=replace(props, src=data_url))
        elif isinstance(props, ContainerProperties) and props.children:
            block = replace(block, properties=replace(props, children=_embed(props.children, client)))
        out.append(block)
    return out


def preprocess_blocks_for_pdf(blocks: List[Block], client: httpx.Client | None = None) -> List[Block]:
    """
    Rewrite remote image sources to embedded ``data:`` URLs.

    The PDF renderer never touches the network, so any image that should
    appear in the output has to be inlined first. Images that cannot be
    fetched keep their URL and are skipped at render time.
    """
    if client is not None:
        return _embed(blocks, client)
    with httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS, follow_redirects=True) as owned:
        return _embed(blocks, owned)
