import codecs
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, Optional, Tuple, Union

from openai import AsyncOpenAI

from parley.schemas.configs.turns import ChatConfig
from parley.schemas.domain.response import FinalizedResponse, WireFrame
from parley.utils.async_ops import Timer
from parley.utils.logger import logger

DONE_SENTINEL = "[DONE]"

# chat.completions.create() 原生支持的参数，其余字段经由 extra_body 透传
_NATIVE_PARAMS = frozenset({
    "model", "messages", "temperature", "top_p", "max_tokens", "stop",
    "stream", "tools", "tool_choice", "n", "presence_penalty", "frequency_penalty",
})

ChunkSource = Union[AsyncIterable[Union[bytes, str]], Iterable[Union[bytes, str]]]


def parse_sse_line(line: str) -> Optional[WireFrame]:
    """
    解析一行 SSE 文本
    只关心 data 字段；注释行 (':' 开头)、空行以及 event/id/retry 字段返回 None
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        return None

    data = line[len("data:"):].strip()
    if data == DONE_SENTINEL:
        return WireFrame.terminator()
    return WireFrame.data(data)


async def frames_from_sse(chunks: ChunkSource) -> AsyncIterator[WireFrame]:
    """
    把原始字节/文本块流转换为 WireFrame 流
    跨块的半行会被缓存到下一块补齐；遇到 [DONE] 立即结束
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""

    async for chunk in _iterate(chunks):
        buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            frame = parse_sse_line(line)
            if frame is None:
                continue
            yield frame
            if frame.event == "terminator":
                return

    buffer += decoder.decode(b"", final=True)
    frame = parse_sse_line(buffer)
    if frame is not None:
        yield frame


async def _iterate(chunks: ChunkSource):
    if hasattr(chunks, "__aiter__"):
        async for chunk in chunks:
            yield chunk
    else:
        for chunk in chunks:
            yield chunk


def split_request(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """拆分为 (SDK 原生参数, extra_body 透传参数)"""
    native = {k: v for k, v in payload.items() if k in _NATIVE_PARAMS}
    extra = {k: v for k, v in payload.items() if k not in _NATIVE_PARAMS}
    return native, extra


class OpenAIStreamTransport:
    """
    基于 openai SDK 的传输适配器
    stream() 读取原始 SSE 行并产出 WireFrame，complete() 发起非流式请求 (用于追问)
    """
    def __init__(self, config: ChatConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.api_key or "sk-placeholder",  # 防止空值初始化报错
            base_url=config.base_url
        )
        logger.debug(f"[Transport] 已连接至: {config.base_url}")

    async def stream(self, payload: Dict[str, Any]) -> AsyncIterator[WireFrame]:
        native, extra = split_request(payload)
        native["stream"] = True
        async with self.client.chat.completions.with_streaming_response.create(
            **native, extra_body=extra or None
        ) as response:
            # iter_lines() 已按行切分 (不含换行符)
            async for line in response.iter_lines():
                frame = parse_sse_line(line)
                if frame is None:
                    continue
                yield frame
                if frame.event == "terminator":
                    return

    async def complete(self, payload: Dict[str, Any]) -> FinalizedResponse:
        native, extra = split_request(payload)
        native["stream"] = False
        with Timer("Transport complete"):
            completion = await self.client.chat.completions.create(**native, extra_body=extra or None)
        return FinalizedResponse.from_completion(completion.model_dump())

    async def aclose(self):
        await self.client.close()
