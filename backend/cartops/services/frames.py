"""
CARTOPS - Frame sources

The camera stream behind bottle control. A session opens a source, reads
one frame per detection tick and always releases it on close.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """One still image from the camera."""
    data: bytes
    mime_type: str = "image/jpeg"


class FrameSource(ABC):
    """Acquire/read/release contract for a camera-like stream."""

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def read_frame(self) -> Optional[Frame]:
        """Latest frame, or None when nothing new is available."""
        pass

    @abstractmethod
    async def release(self) -> None:
        """Free the stream. Must be safe to call more than once."""
        pass


class BufferedFrameSource(FrameSource):
    """
    Frames pushed by the caller (image uploads, tests).

    Keeps at most `maxlen` pending frames; older ones are dropped.
    """

    def __init__(self, frames: Optional[list[Frame]] = None, maxlen: int = 8) -> None:
        self._frames: deque[Frame] = deque(frames or [], maxlen=maxlen)
        self.is_open = False
        self.release_count = 0

    def push(self, frame: Frame) -> None:
        self._frames.append(frame)

    async def open(self) -> None:
        self.is_open = True
        logger.info("Frame source opened")

    async def read_frame(self) -> Optional[Frame]:
        if not self.is_open or not self._frames:
            return None
        return self._frames.popleft()

    async def release(self) -> None:
        if self.is_open:
            logger.info("Frame source released")
        self.is_open = False
        self._frames.clear()
        self.release_count += 1
