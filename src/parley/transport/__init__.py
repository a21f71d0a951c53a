from .sse import parse_sse_line, frames_from_sse, OpenAIStreamTransport

__all__ = ["parse_sse_line", "frames_from_sse", "OpenAIStreamTransport"]
