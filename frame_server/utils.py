import os
import socket
import uuid
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple
import datetime
from PIL import Image, UnidentifiedImageError
from . import config

# Constants
PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent

ALLOWED_IMAGE_EXTENSIONS: Tuple[str, ...] = ('.jpeg', '.jpg', '.png', '.gif', '.webp')


def get_static_assets_root() -> Path:
    """Return the absolute path to the static assets directory."""
    return Path(config.WEB_STATIC_DIR)


def static_asset_path(*parts: str) -> Path:
    """Build a path inside the static assets directory."""
    return get_static_assets_root().joinpath(*parts)


def bundled_asset_path(*parts: str) -> Path:
    """Build a path inside the ``web`` directory shipped next to the package."""
    return PROJECT_ROOT.joinpath('web', *parts)


def asset_path(*parts: str) -> Path:
    """Prefer the configured static directory, falling back to the bundled assets."""
    candidate = static_asset_path(*parts)
    if candidate.exists():
        return candidate
    return bundled_asset_path(*parts)


def upload_path(filename: str) -> Path:
    """Return the on-disk location of an uploaded file, refusing path traversal."""
    name = os.path.basename(filename or '')
    if not name or name in {'.', '..'}:
        raise ValueError(f'invalid upload filename: {filename!r}')
    return Path(config.UPLOADS_DIR).joinpath(name)


def public_upload_url(filename: str) -> str:
    return f"/uploads/{filename}"


def get_ip_address() -> str:
    """
    Get the local IP address of the machine.
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # doesn't even have to be reachable
        s.connect(('10.254.254.254', 1))
        ip = s.getsockname()[0]
    except OSError:
        ip = '127.0.0.1'
    finally:
        s.close()
    return ip


def image_extension(filename: Optional[str]) -> str:
    """Return the lower-cased extension of an upload, or '' when it is not allowed."""
    _, ext = os.path.splitext(filename or '')
    ext = ext.lower()
    return ext if ext in ALLOWED_IMAGE_EXTENSIONS else ''


def is_allowed_image(filename: Optional[str], content_type: Optional[str]) -> bool:
    """Both the extension and the declared MIME type have to look like an image."""
    if not image_extension(filename):
        return False
    return (content_type or '').lower().startswith('image/')


def verify_image_bytes(payload: bytes) -> str:
    """
    Check that Pillow can decode the payload and return the detected format.
    Raises ValueError for anything that is not a readable image.
    """
    if not payload:
        raise ValueError('empty file')
    try:
        with Image.open(BytesIO(payload)) as image:
            image.verify()
            return (image.format or '').lower()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValueError(f'not a valid image: {exc}') from exc


def generate_upload_filename(original_name: Optional[str]) -> str:
    """Unique stored filename keeping the original extension; it doubles as the image id."""
    return f"{uuid.uuid4().hex}{image_extension(original_name)}"


def generate_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def to_iso_datetime(value: Optional[datetime.datetime]) -> str:
    """Return an ISO-8601 representation for datetimes or POSIX timestamps."""
    if value is None:
        return ''
    if isinstance(value, (int, float)):
        if value <= 0:
            return ''
        value = datetime.datetime.fromtimestamp(value, datetime.timezone.utc)
    trimmed = value.replace(microsecond=0)
    return trimmed.isoformat()
