import asyncio
import hashlib
import ipaddress
import logging
import os
import socket
import uuid as uuid_mod
from typing import List, Optional
from urllib.parse import urljoin, urlparse

import httpx
from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse, Response

from core.auth import current_active_user
from core.imagekit_client import (
    IMAGE_FOLDERS,
    MAX_IMAGE_BYTES,
    MIN_IMAGE_BYTES,
    ImageUploadError,
    upload_base64_to_imagekit,
    upload_image_to_imagekit,
)
from db.users import User

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTS = {"jpg", "jpeg", "png", "gif", "webp", "heic", "heif"}
PROXY_TIMEOUT_SECONDS = 5.0
PROXY_USER_AGENT = "Mozilla/5.0 (compatible; BourbonBuddy/1.0)"
PROXY_MAX_REDIRECTS = 3


async def get_proxy_client():
    async with httpx.AsyncClient(timeout=PROXY_TIMEOUT_SECONDS, follow_redirects=False) as client:
        yield client


def check_image_file(file: UploadFile, file_data: bytes) -> None:
    content_type = (file.content_type or "").strip().lower()
    ext = os.path.splitext(file.filename or "")[1].lower().lstrip(".")
    if content_type and content_type != "application/octet-stream" and not content_type.startswith("image/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be an image")
    if (not content_type or content_type == "application/octet-stream") and ext and ext not in ALLOWED_EXTS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be an image")
    if len(file_data) < MIN_IMAGE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Image file appears to be corrupted or too small",
        )
    if len(file_data) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Image size must be less than 25MB")


@router.post("/images/upload")
async def upload_image(
    file: Optional[UploadFile] = File(None),
    base64_image: Optional[str] = Form(None),
    folder: str = Form("spirits"),
    user: User = Depends(current_active_user),
):
    """
    Upload a bottle photo, avatar or cover to ImageKit.
    Accepts either a file upload or a base64 encoded image.
    """
    if folder not in IMAGE_FOLDERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown folder: {folder}")

    try:
        if file:
            file_data = await file.read()
            check_image_file(file, file_data)
            filename = file.filename or f"image_{uuid_mod.uuid4().hex[:8]}.jpg"
            uploaded = await upload_image_to_imagekit(file_data, filename, folder)
        elif base64_image:
            filename = f"image_{uuid_mod.uuid4().hex[:8]}.jpg"
            uploaded = await upload_base64_to_imagekit(base64_image, filename, folder)
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Either 'file' or 'base64_image' must be provided",
            )
    except ImageUploadError as e:
        logger.warning(f"Image upload failed: {e}", extra={"user_id": str(user.id)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return JSONResponse(content=uploaded)


async def resolve_addresses(host: str) -> List[str]:
    try:
        return [str(ipaddress.ip_address(host))]
    except ValueError:
        pass
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return list({info[4][0] for info in infos})


def is_public_address(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if ip.version == 6 and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return ip.is_global and not ip.is_multicast


async def check_proxy_target(url: str) -> None:
    """Reject anything but http(s) URLs whose host resolves only to public addresses"""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid URL")
    try:
        addresses = await resolve_addresses(parsed.hostname)
    except (socket.gaierror, UnicodeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Could not resolve image host")
    if not addresses or not all(is_public_address(a) for a in addresses):
        logger.warning(f"Image proxy refused non-public host {parsed.hostname}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Image host not allowed")


async def fetch_image(client: httpx.AsyncClient, url: str):
    """Follow up to PROXY_MAX_REDIRECTS hops, checking every hop, and read at most MAX_IMAGE_BYTES"""
    for _ in range(PROXY_MAX_REDIRECTS + 1):
        await check_proxy_target(url)
        async with client.stream("GET", url, headers={"User-Agent": PROXY_USER_AGENT}) as upstream:
            if upstream.is_redirect and "location" in upstream.headers:
                url = urljoin(url, upstream.headers["location"])
                continue

            if upstream.status_code >= 400:
                raise HTTPException(
                    status_code=status.HTTP_502_BAD_GATEWAY,
                    detail=f"Failed to fetch image: {upstream.status_code}",
                )

            content_type = upstream.headers.get("content-type", "image/jpeg")
            if not content_type.startswith("image/"):
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Not an image")

            declared = upstream.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > MAX_IMAGE_BYTES:
                raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Image too large")

            body = bytearray()
            async for chunk in upstream.aiter_bytes():
                body.extend(chunk)
                if len(body) > MAX_IMAGE_BYTES:
                    raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Image too large")
            return bytes(body), content_type

    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Too many redirects")


@router.get("/image-proxy", response_class=Response)
async def image_proxy(
    url: str = Query(...),
    if_none_match: Optional[str] = Header(None),
    client: httpx.AsyncClient = Depends(get_proxy_client),
):
    """Fetch a remote image and serve it from our origin. No auth so img src works."""
    try:
        content, content_type = await fetch_image(client, url)
    except httpx.TimeoutException:
        raise HTTPException(status_code=status.HTTP_408_REQUEST_TIMEOUT, detail="Image fetch timed out")
    except httpx.RequestError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Failed to fetch image: {e}")

    etag = f'"{hashlib.sha256(content).hexdigest()[:32]}"'
    headers = {
        "ETag": etag,
        "Cache-Control": "public, max-age=86400",
        "Access-Control-Allow-Origin": "*",
    }
    if if_none_match and etag in [tag.strip() for tag in if_none_match.split(",")]:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)
    return Response(content=content, media_type=content_type, headers=headers)
