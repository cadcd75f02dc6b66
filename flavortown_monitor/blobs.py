"""
Active Storage blob ids
=======================
Shop images are served from Active Storage URLs such as

    /rails/active_storage/representations/redirect/<signed blob id>/<variation>/<filename>

The signed blob id is ``base64(json)--signature`` where the json payload is
``{"_rails": {"data": <blob id>, ...}}``. The public URL may change between
runs (new variation key, new signature) while the blob id does not, so the
blob id is what the image cache is keyed on.
"""

import base64
import binascii
import json
from urllib.parse import unquote, urlparse

from .errors import EncodingError


def get_blob_id(url: str) -> int:
    segments = urlparse(url).path.split('/')
    if len(segments) < 3:
        raise EncodingError(f"can't find signed blob id in {url}")
    signed_id = unquote(segments[-3])

    blob_info_b64 = signed_id.split('--')[0]
    if not blob_info_b64:
        raise EncodingError(f"can't find the blob info in {url}")

    try:
        blob_info_bytes = base64.b64decode(blob_info_b64, validate=True)
        blob_info = json.loads(blob_info_bytes.decode('utf-8'))
        blob_id = blob_info["_rails"]["data"]
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise EncodingError(f"malformed blob info in {url}: {e!r}") from e

    if not isinstance(blob_id, int) or isinstance(blob_id, bool):
        raise EncodingError(f"blob id is not an integer in {url}: {blob_id!r}")
    return blob_id
