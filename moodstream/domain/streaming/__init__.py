"""Streaming delivery: range negotiation, upstream policy and the proxy itself."""

from .delivery import StreamDeliveryService, StreamResult
from .extraction import ExtractionProvider, StreamInfo, YtDlpExtractionProvider
from .ranges import ByteRange, CORS_HEADERS, build_stream_headers, parse_range_request, preflight_headers
from .sources import (
    SourceValidation,
    detect_content_type,
    extract_quality_info,
    is_expired,
    validate_source_url,
)

__all__ = [
    "ByteRange",
    "CORS_HEADERS",
    "ExtractionProvider",
    "SourceValidation",
    "StreamDeliveryService",
    "StreamInfo",
    "StreamResult",
    "YtDlpExtractionProvider",
    "build_stream_headers",
    "detect_content_type",
    "extract_quality_info",
    "is_expired",
    "parse_range_request",
    "preflight_headers",
    "validate_source_url",
]
