"""
One SOAP round trip: build, send, decode, check for faults, unwrap.
"""

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from requests.structures import CaseInsensitiveDict

from vim_telemetry.errors import ProtocolError, raise_for_fault
from vim_telemetry.soap_requests import build_request, response_schema
from vim_telemetry.transcoder import DocumentTranscoder, to_json, unwrap_response

logger = logging.getLogger(__name__)


@dataclass
class SoapResponse:
    """Decoded response of one operation"""
    operation: str
    raw: bytes
    headers: CaseInsensitiveDict
    latency: float
    status_code: int
    body: Any    # transcoded SOAP Body
    value: Any   # <operation>Response, or the body when absent

    @property
    def json_text(self) -> str:
        return to_json(self.value)

    @property
    def returnval(self) -> Any:
        if isinstance(self.value, dict):
            return self.value.get("returnval")
        return None


def invoke(transport, name: str, params: BaseModel) -> SoapResponse:
    """
    Execute one vim25 operation through a PacedTransport.

    Raises:
        ValidationError: Parameters do not match the operation
        TransportError: Network/TLS/timeout failure
        ProtocolError: Undecodable body, unexpected HTTP status or SOAP fault
        SessionError: Fault says the session is not (or no longer) valid
    """
    payload = build_request(name, params)
    logger.debug(f"Calling {name} ({len(payload)} bytes)")
    response = transport.call(payload)

    transcoder = DocumentTranscoder(response_schema(name))
    try:
        body = transcoder.body(response.raw)
    except ProtocolError as e:
        if response.status_code >= 400:
            raise ProtocolError(f"{name} failed with HTTP {response.status_code}: {e.message}",
                                status_code=response.status_code)
        raise

    raise_for_fault(body, response.status_code)
    if response.status_code >= 400:
        raise ProtocolError(f"{name} failed with HTTP {response.status_code}", status_code=response.status_code)

    return SoapResponse(
        operation=name,
        raw=response.raw,
        headers=response.headers,
        latency=response.latency,
        status_code=response.status_code,
        body=body,
        value=unwrap_response(body, name),
    )
