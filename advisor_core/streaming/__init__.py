"""流式响应处理：字节块 -> 帧 -> 文本增量。"""

from advisor_core.streaming.accumulator import DeltaAccumulator, extract_delta
from advisor_core.streaming.decoder import StreamFrameDecoder

__all__ = ["DeltaAccumulator", "StreamFrameDecoder", "extract_delta"]
