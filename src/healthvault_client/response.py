"""
Response classification for HealthVault calls.

``classify`` reads a response envelope only as far as ``response/status/code``.
A code of 0 returns the payload unchanged; any other code raises the mapped
``HealthServiceError``. A body that cannot be read as far as the code is
treated as a success: terse success bodies may omit the status wrapper.
"""

import io
import logging
import shutil
from typing import BinaryIO, Mapping, Optional, Union
from uuid import UUID

from lxml import etree

from .errors import (
    HealthServiceError,
    HealthServiceResponseError,
    HealthServiceStatusCode,
    HealthServiceTransportError,
    get_health_service_exception,
)
from .request import RESPONSE_ID_HEADER, HealthServiceRequest

logger = logging.getLogger(__name__)

_STATUS_PATH = ["response", "status"]
_CODE_PATH = ["response", "status", "code"]
_ERROR_PATH = ["response", "status", "error"]


def get_response_id(headers: Optional[Mapping[str, str]]) -> Optional[UUID]:
    """Extract the ``WC_ResponseId`` header; malformed or absent values give None."""
    if not headers:
        return None
    wanted = RESPONSE_ID_HEADER.lower()
    for name, value in headers.items():
        if name.lower() == wanted:
            try:
                return UUID(value.strip())
            except (AttributeError, TypeError, ValueError):
                return None
    return None


def _local(elem: etree._Element) -> str:
    return etree.QName(elem).localname


def _parse_error(elem: etree._Element) -> HealthServiceResponseError:
    message = ""
    context: dict[str, str] = {}
    error_info = None
    for child in elem:
        if not isinstance(child.tag, str):
            continue
        name = _local(child)
        if name == "message":
            message = (child.text or "").strip()
        elif name == "context":
            for item in child:
                if isinstance(item.tag, str):
                    context[_local(item)] = (item.text or "").strip()
        elif name == "error-info":
            error_info = (child.text or "").strip() or None
    return HealthServiceResponseError(message, context, error_info)


def _read_status(buffer: BinaryIO) -> Optional[tuple[int, Optional[HealthServiceResponseError]]]:
    """
    Find the status code and, for failures, the error block.

    Returns:
        None when the code is OK or not legible, else (code, error).
    """
    code: Optional[int] = None
    error: Optional[HealthServiceResponseError] = None
    path: list[str] = []

    buffer.seek(0)
    try:
        for event, elem in etree.iterparse(
            buffer, events=("start", "end"), resolve_entities=False, no_network=True
        ):
            if event == "start":
                path.append(_local(elem))
                continue

            if code is None:
                if path == _CODE_PATH:
                    code = int((elem.text or "").strip())
                    if code == HealthServiceStatusCode.OK:
                        return None
            elif path == _ERROR_PATH:
                error = _parse_error(elem)
                break
            elif path == _STATUS_PATH:
                break
            path.pop()
    except (etree.XMLSyntaxError, ValueError, LookupError) as e:
        if code is None:
            logger.debug(f"Response status not legible ({type(e).__name__}); treating as success")
            return None
        # A broken error block must not hide the status that was already read
        logger.debug(f"Error block for status {code} is malformed: {e}")

    if code is None:
        return None
    return code, error


def classify(
    stream: Union[bytes, bytearray, BinaryIO],
    headers: Optional[Mapping[str, str]] = None,
    request: Optional[HealthServiceRequest] = None,
) -> bytes:
    """
    Check a response envelope for a service failure.

    Args:
        stream: Response body. Bytes and ``io.BytesIO`` are used in place;
                any other stream is copied into a private buffer.
        headers: Response headers (for the correlation id).
        request: The originating request; receives ``response_id``.

    Returns:
        The full response payload.

    Raises:
        HealthServiceError: The mapped subclass for a non-OK status code.
        HealthServiceTransportError: The body stream could not be read.
    """
    response_id = get_response_id(headers)
    if request is not None and response_id is not None:
        request.response_id = response_id

    owned = False
    if isinstance(stream, (bytes, bytearray)):
        buffer = io.BytesIO(stream)
    elif isinstance(stream, io.BytesIO):
        buffer = stream
    else:
        owned = True
        buffer = io.BytesIO()

    try:
        if owned:
            try:
                shutil.copyfileobj(stream, buffer)
            except OSError as e:
                raise HealthServiceTransportError(f"Failed to read response body: {e}") from e
        status = _read_status(buffer)
        payload = buffer.getvalue()
    finally:
        if owned:
            buffer.close()

    if status is None:
        return payload

    code, error = status
    exc: HealthServiceError = get_health_service_exception(code, error, response_id)
    logger.debug(f"Service returned {exc.error_id} ({code}): {exc}")
    raise exc
