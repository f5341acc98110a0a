import base64
import logging
import os
import tempfile
from typing import Optional

from imagekitio import ImageKit
from imagekitio.models.UploadFileRequestOptions import UploadFileRequestOptions

from core.config import settings

logger = logging.getLogger(__name__)

MIN_IMAGE_BYTES = 100
MAX_IMAGE_BYTES = 25 * 1024 * 1024
IMAGE_FOLDERS = ("spirits", "avatars", "covers")

_imagekit: Optional[ImageKit] = None


class ImageUploadError(Exception):
    pass


def get_imagekit() -> ImageKit:
    global _imagekit
    if _imagekit is None:
        if not settings.imagekit_private_key or not settings.imagekit_url_endpoint:
            raise ImageUploadError("ImageKit is not configured")
        _imagekit = ImageKit(
            public_key=settings.imagekit_public_key,
            private_key=settings.imagekit_private_key,
            url_endpoint=settings.imagekit_url_endpoint,
        )
    return _imagekit


async def upload_image_to_imagekit(file_data: bytes, filename: str, folder: str = "spirits") -> dict:
    """
    Upload an image to ImageKit and return where it landed.

    Args:
        file_data: Image file bytes
        filename: Name for the file
        folder: one of IMAGE_FOLDERS

    Returns:
        dict with 'url', 'file_id' and 'name' keys
    """
    if len(file_data) < MIN_IMAGE_BYTES:
        raise ImageUploadError(f"File data too small: {len(file_data)} bytes")
    if len(file_data) > MAX_IMAGE_BYTES:
        raise ImageUploadError("Image size must be less than 25MB")
    if folder not in IMAGE_FOLDERS:
        raise ImageUploadError(f"Unknown image folder: {folder}")

    imagekit = get_imagekit()

    # The SDK wants a real file object opened in binary mode
    file_ext = os.path.splitext(filename)[1] or ".jpg"
    temp_file_path = None
    try:
        with tempfile.NamedTemporaryFile(delete=False, suffix=file_ext, mode="wb") as temp_file:
            temp_file.write(file_data)
            temp_file_path = temp_file.name

        options = UploadFileRequestOptions(
            folder=f"/bourbon-buddy/{folder}",
            use_unique_file_name=True,
            is_private_file=False,
        )
        with open(temp_file_path, "rb") as file_obj:
            upload = imagekit.upload_file(file=file_obj, file_name=filename, options=options)
    except ImageUploadError:
        raise
    except Exception as e:
        raise ImageUploadError(f"Failed to upload image to ImageKit: {e}")
    finally:
        if temp_file_path and os.path.exists(temp_file_path):
            try:
                os.unlink(temp_file_path)
            except OSError as cleanup_error:
                logger.warning(f"Failed to delete temporary file {temp_file_path}: {cleanup_error}")

    if not upload or not upload.url:
        raise ImageUploadError("Upload returned no URL")

    logger.info(f"Image uploaded: file_id={upload.file_id}, size={len(file_data)} bytes")
    return {"url": upload.url, "file_id": upload.file_id, "name": upload.name}


async def upload_base64_to_imagekit(base64_string: str, filename: str, folder: str = "spirits") -> dict:
    """Same as upload_image_to_imagekit for a base64 string, data URL prefix allowed"""
    if "," in base64_string:
        base64_string = base64_string.split(",", 1)[1]
    try:
        file_data = base64.b64decode(base64_string, validate=True)
    except ValueError as e:
        raise ImageUploadError(f"Invalid base64 image: {e}")
    return await upload_image_to_imagekit(file_data, filename, folder)

