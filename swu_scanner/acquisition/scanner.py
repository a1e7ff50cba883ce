"""
swu_scanner/acquisition/scanner.py: Cooldown-gated auto-scan loop

A timer fires every `interval` seconds. Each tick samples the current frame,
runs the content gate and, if it passes, one identification attempt. After an
attempt the scanner cools down for `cooldown` seconds. At most one attempt is
in flight at a time; ticks that land during an attempt or a cooldown are
dropped. A card is reported once: further matches of the same card are
swallowed until a different card is matched or the scanner is restarted.
No-match results are always delivered.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional, Set

import numpy as np

from swu_scanner.acquisition.frames import FrameSource, frame_has_content
from swu_scanner.config import AUTO_SCAN_COOLDOWN, AUTO_SCAN_INTERVAL
from swu_scanner.indexing.image_processor import CropMode

logger = logging.getLogger(__name__)

IdentifyFn = Callable[[np.ndarray, CropMode], Any]
ResultCallback = Callable[[Any], Any]


def default_result_key(result: Any) -> Optional[str]:
    """
    Key identifying the card a result reports, or None for no match

    Understands IdentifyResult and MatchResult (via `identity.key`); any other
    non-None value is keyed by its string form.
    """
    if result is None or getattr(result, "matched", True) is False:
        return None
    identity = getattr(result, "identity", None)
    if identity is not None:
        return identity.key
    return str(result)


class ScannerState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


class AutoScanner:
    """Polls a frame source and reports identification results."""

    def __init__(
        self,
        identify: IdentifyFn,
        frame_source: FrameSource,
        cooldown: float = AUTO_SCAN_COOLDOWN,
        content_gate: Callable[[np.ndarray], bool] = frame_has_content,
        result_key: Callable[[Any], Optional[str]] = default_result_key
    ):
        """
        Args:
            identify: Called as identify(frame, CropMode.CENTER_CROP); may be async
            frame_source: Source of live frames
            cooldown: Quiet period in seconds after each attempt
            content_gate: Predicate deciding whether a frame is worth matching
            result_key: Maps a result to the card key used to suppress repeat
                reports; None means "no card" and is always delivered
        """
        self.identify = identify
        self.frame_source = frame_source
        self.cooldown = cooldown
        self.content_gate = content_gate
        self.result_key = result_key

        self.state = ScannerState.IDLE
        self.attempts = 0
        self._generation = 0
        self._last_key: Optional[str] = None
        self._on_result: Optional[ResultCallback] = None
        self._cooling_down = False
        self._cooldown_handle: Optional[asyncio.TimerHandle] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._tick_tasks: Set[asyncio.Task] = set()

    @property
    def is_active(self) -> bool:
        return self.state == ScannerState.ACTIVE

    @property
    def cooling_down(self) -> bool:
        return self._cooling_down

    def start(self, on_result: ResultCallback, interval: float = AUTO_SCAN_INTERVAL):
        """
        Start polling. Must be called from within a running event loop.

        Args:
            on_result: Receives every identification result, including None
            interval: Seconds between ticks
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if self.is_active:
            self.stop()

        loop = asyncio.get_running_loop()
        self._generation += 1
        self._on_result = on_result
        self._cooling_down = False
        self._last_key = None
        self.state = ScannerState.ACTIVE
        self._timer_task = loop.create_task(self._run_timer(interval))
        logger.info(f"Auto-scan started (interval {interval}s, cooldown {self.cooldown}s)")

    def stop(self):
        """Stop polling; results of attempts still in flight are discarded."""
        was_active = self.is_active
        self.state = ScannerState.IDLE
        self._generation += 1

        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        if self._cooldown_handle is not None:
            self._cooldown_handle.cancel()
            self._cooldown_handle = None

        self._on_result = None
        self._cooling_down = False
        self._last_key = None

        if was_active:
            logger.info(f"Auto-scan stopped after {self.attempts} attempts")

    async def _run_timer(self, interval: float):
        while self.is_active:
            await asyncio.sleep(interval)
            if not self.is_active:
                break
            task = asyncio.get_running_loop().create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    def _end_cooldown(self):
        self._cooling_down = False
        self._cooldown_handle = None

    async def tick(self) -> bool:
        """
        Run one polling step

        Returns:
            True if an identification attempt was made
        """
        if not self.is_active or self._cooling_down:
            return False

        try:
            frame = self.frame_source.read_frame()
        except Exception as e:
            logger.warning(f"Could not read frame: {e}")
            return False

        if frame is None or not self.content_gate(frame):
            return False

        generation = self._generation
        callback = self._on_result
        self._cooling_down = True
        self.attempts += 1

        try:
            result = self.identify(frame, CropMode.CENTER_CROP)
            if inspect.isawaitable(result):
                result = await result

            if generation != self._generation or callback is None:
                logger.debug("Discarding result from stopped scan")
            else:
                key = self.result_key(result)
                if key is not None and key == self._last_key:
                    logger.debug(f"{key} already reported, waiting for a new card")
                else:
                    if key is not None:
                        self._last_key = key
                    outcome = callback(result)
                    if inspect.isawaitable(outcome):
                        await outcome
        except Exception as e:
            logger.warning(f"Auto-scan frame error: {e}")
        finally:
            if generation == self._generation:
                loop = asyncio.get_running_loop()
                self._cooldown_handle = loop.call_later(self.cooldown, self._end_cooldown)

        return True
