from capgate.streaming.normalizer import SseLineDecoder, normalize
from capgate.streaming.source import Framing, RawSource

__all__ = ["Framing", "RawSource", "SseLineDecoder", "normalize"]
