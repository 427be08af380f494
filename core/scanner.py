"""
Liveness scanner: drives the challenge state machine from a camera on a
fixed detection tick, with a session watchdog and a one-shot terminal
callback.
"""
import asyncio
import logging
import random
import time

from config import settings
from . import liveness as lv
from .liveness import ScanMode, StateTag

logger = logging.getLogger(__name__)


class LatestFrameBuffer:
    """Capturable image source holding the most recent camera frame"""

    def __init__(self):
        self._frame = None
        self.released = False

    def put(self, frame):
        if not self.released:
            self._frame = frame

    def capture(self):
        return self._frame

    def release(self):
        self.released = True
        self._frame = None


class LivenessScanner:
    """
    One scan attempt (register or verify).

    Args:
        mode: 'register' or 'verify'
        detector: object with detect(image) -> FaceFrame | None (sync or async)
        frame_source: object with capture() and release()
        comparator: object with compare(descriptor, [enrolled]) -> MatchResult
        enrolled: enrolled descriptor for verify mode
        on_success: called once with the captured descriptor
        on_failure: called once with a short reason string
        on_update: called with the scanner after every state change
    """

    def __init__(self, mode, detector, frame_source,
                 comparator=None,
                 enrolled=None,
                 on_success=None,
                 on_failure=None,
                 on_update=None,
                 config=None,
                 interval=settings.DETECTION_INTERVAL,
                 rng=None,
                 clock=time.monotonic):
        self.detector = detector
        self.frame_source = frame_source
        self.comparator = comparator
        self.enrolled = enrolled
        self.on_success = on_success
        self.on_failure = on_failure
        self.on_update = on_update
        self.config = config or lv.LivenessConfig()
        self.interval = interval
        self.rng = rng or random.Random()
        self.clock = clock

        self.session = lv.new_session(mode)
        self.error = None
        self.closed = False

        self._busy = False
        self._terminal_emitted = False
        self._task = None
        self._watchdog = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self):
        """Prepare the detector, arm the watchdog and start ticking"""
        prepare = getattr(self.detector, 'prepare', None)
        try:
            if self.detector is None:
                raise RuntimeError("no face detector loaded")
            if prepare is not None:
                result = prepare()
                if asyncio.iscoroutine(result):
                    await result
        except Exception as e:
            logger.error("Scanner setup failed: %s", e)
            self.error = "camera unavailable"
            self._finish(lv.fail(self.session, "camera unavailable"))
            return

        if self.closed:
            return

        self.session = lv.begin(self.session, self.clock(), self.config)
        loop = asyncio.get_running_loop()
        if self.session.deadline is not None:
            self._watchdog = loop.call_later(self.config.timeout, self._on_timeout)
        self._task = loop.create_task(self._run())
        self._notify()

    async def _run(self):
        try:
            while not self.closed and not self.session.is_terminal:
                await self.tick()
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Scanner loop crashed")
            if not self.closed and not self.session.is_terminal:
                self._finish(lv.fail(self.session, "verification error"))

    def close(self):
        """Stop ticking, cancel the watchdog and release the camera. No callback."""
        if self.closed:
            return
        self.closed = True
        self._stop()

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------
    async def tick(self):
        """One detection tick; skipped while a previous inference is in flight"""
        if self._busy or self.closed or self.session.is_terminal:
            return
        if self.session.state == StateTag.INITIALIZING:
            return

        image = self.frame_source.capture()
        if image is None:
            return

        self._busy = True
        try:
            frame = await self._detect(image)
        except Exception as e:
            logger.warning("Detection failed: %s", e)
            frame = None
        finally:
            self._busy = False

        if self.closed or self.session.is_terminal:
            return
        self.apply(frame)

    async def _detect(self, image):
        if asyncio.iscoroutinefunction(self.detector.detect):
            return await self.detector.detect(image)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.detector.detect, image)

    def apply(self, frame):
        """Feed one detection result through the state machine"""
        if self.closed or self.session.is_terminal:
            return self.session

        previous = self.session.state
        session = lv.step(self.session, frame, self.clock(), self.config, self.rng)

        if session.event == 'reset':
            logger.info("Face lost mid-challenge, restarting")
        if session.state == StateTag.VERIFYING:
            session = lv.resolve_verification(session, self.comparator, self.enrolled, self.config)

        self.session = session
        if session.is_terminal:
            self._finish(session)
        elif session.state != previous or session.event:
            self._notify()
        return self.session

    def _on_timeout(self):
        self._watchdog = None
        if self.closed or self.session.state in (StateTag.VERIFYING, StateTag.PASSED, StateTag.FAILED):
            return
        self._finish(lv.fail(self.session, "timeout"))

    # ------------------------------------------------------------------
    # Terminal handling
    # ------------------------------------------------------------------
    def _finish(self, session):
        self.session = session
        if self._terminal_emitted:
            return
        self._terminal_emitted = True
        self._stop()

        if session.state == StateTag.PASSED:
            logger.info("Liveness %s passed", session.mode.value)
            if self.on_success is not None:
                self.on_success(session.descriptor)
        else:
            logger.info("Liveness %s failed: %s", session.mode.value, session.failure_reason)
            if self.on_failure is not None:
                self.on_failure(session.failure_reason)
        self._notify()

    def _stop(self):
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        if self._task is not None:
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if self._task is not current:
                self._task.cancel()
            self._task = None
        self.frame_source.release()

    def _notify(self):
        if self.on_update is not None:
            self.on_update(self)

    # ------------------------------------------------------------------
    # UI outputs
    # ------------------------------------------------------------------
    @property
    def instruction_text(self):
        if self.error:
            return self.error
        return lv.instruction_text(self.session)

    @property
    def progress_fraction(self):
        return lv.time_remaining_fraction(self.session, self.clock())

    @property
    def challenge_progress(self):
        return lv.challenge_progress(self.session)

    @property
    def mode(self):
        return self.session.mode

    @property
    def is_register(self):
        return self.session.mode == ScanMode.REGISTER
