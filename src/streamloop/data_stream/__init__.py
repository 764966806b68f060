from .adapter import format_event, mask_error_message, to_data_stream
from .protocol import (
    DATA_STREAM_HEADERS,
    DATA_STREAM_PARTS,
    DataStreamPart,
    format_data_stream_part,
    parse_data_stream_part,
)

__all__ = [
    "to_data_stream",
    "format_event",
    "mask_error_message",
    "format_data_stream_part",
    "parse_data_stream_part",
    "DataStreamPart",
    "DATA_STREAM_PARTS",
    "DATA_STREAM_HEADERS",
]
