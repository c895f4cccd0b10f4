"""
vSphere API Error Classes and Fault Mapping

Defines the exception taxonomy used across the client and maps vim25 SOAP
fault types to the exception raised plus a user-friendly title.
"""

from typing import Any, Dict, Optional, Tuple


class VimApiError(Exception):
    """Base exception for vSphere API client operations"""

    def __init__(self, message: str, fault_type: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.fault_type = fault_type
        self.status_code = status_code
        super().__init__(self.message)


class ConfigError(VimApiError):
    """Endpoint URL or credentials missing"""


class ValidationError(VimApiError):
    """Caller-supplied arguments failed preconditions"""


class SessionError(VimApiError):
    """Operation attempted without an authenticated session, or login failed"""


class TransportError(VimApiError):
    """Network or TLS failure at the transport boundary (including timeouts)"""


class ProtocolError(VimApiError):
    """Response could not be transcoded or lacks the expected shape"""


# Mapping of vim25 fault names to the exception raised and a friendly title
VIM_FAULTS: Dict[str, Dict[str, Any]] = {
    'InvalidLogin': {
        'title': 'Authentication Failed',
        'error': SessionError,
    },
    'NotAuthenticated': {
        'title': 'Session Expired',
        'error': SessionError,
    },
    'NoPermission': {
        'title': 'Permission Denied',
        'error': ProtocolError,
    },
    'InvalidArgument': {
        'title': 'Invalid Argument',
        'error': ProtocolError,
    },
    'InvalidProperty': {
        'title': 'Invalid Property Path',
        'error': ProtocolError,
    },
    'InvalidType': {
        'title': 'Invalid Object Type',
        'error': ProtocolError,
    },
    'ManagedObjectNotFound': {
        'title': 'Object Not Found',
        'error': ProtocolError,
    },
    'RequestCanceled': {
        'title': 'Request Cancelled',
        'error': ProtocolError,
    },
    'NotSupported': {
        'title': 'Operation Not Supported',
        'error': ProtocolError,
    },
}


def _text(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get('#text', ''))
    if value is None:
        return ''
    return str(value)


def parse_fault(fault: Dict[str, Any]) -> Tuple[Optional[str], str]:
    """
    Extract (fault_type, fault_string) from a transcoded SOAP Fault element.

    The fault type comes from the single child of <detail>, either from its
    xsi:type attribute or from its tag name with the "Fault" suffix removed.
    """
    fault_string = _text(fault.get('faultstring')) or _text(fault.get('faultcode')) or 'SOAP fault'
    detail = fault.get('detail')
    if not isinstance(detail, dict):
        return None, fault_string

    for tag, content in detail.items():
        if tag == '@':
            continue
        if isinstance(content, dict):
            declared = content.get('@', {}).get('type')
            if declared:
                return declared.split(':')[-1], fault_string
        if tag.endswith('Fault'):
            return tag[:-len('Fault')], fault_string
        return tag, fault_string

    return None, fault_string


def raise_for_fault(body: Any, status_code: Optional[int] = None) -> None:
    """
    Raise the mapped exception if a transcoded SOAP body carries a Fault.

    Unknown fault types become ProtocolError carrying the server faultstring.
    """
    if not isinstance(body, dict) or 'Fault' not in body:
        return

    fault_type, fault_string = parse_fault(body['Fault'] if isinstance(body['Fault'], dict) else {})
    info = VIM_FAULTS.get(fault_type or '')
    if info:
        raise info['error'](f"{info['title']}: {fault_string}", fault_type=fault_type, status_code=status_code)

    raise ProtocolError(fault_string, fault_type=fault_type, status_code=status_code)


def format_error(error: Exception) -> str:
    """Format an exception for the error field of a result."""
    if isinstance(error, VimApiError):
        return error.message
    return str(error) or type(error).__name__
