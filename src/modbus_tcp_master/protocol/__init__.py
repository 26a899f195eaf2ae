"""Protocol layer: MBAP framing, request builders, correlation and response parsing."""

from .framing import Frame, build_frame, parse_frame, parse_header
from .functions import ExceptionCode, FunctionCode
from .correlator import check_transaction
