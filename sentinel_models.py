"""
Sentinel-Vision — Model Lifecycle Manager
==========================================
Brings the detection backends up once, with retry, timeouts and a
permanent fallback mode.

State machine (forward only):
  UNINITIALIZED → INITIALIZING(1) → ... → INITIALIZING(n) → READY(real)

  - runtime readiness step bounded by runtime_timeout_s (30 s)
  - object + face models loaded concurrently, each bounded by
    model_load_timeout_s (45 s); a model that fails is simply unavailable
  - readiness failure → sleep retry_backoff_s (2 s), retry up to max_retries
  - retries exhausted → READY(real=False) and ONE BackendUnavailableError

Timed-out work keeps running on its worker thread. A cancellation
token is set and a done-callback releases whatever handle it produces
later, so abandoned loads never leak into the live state. The same
holds for loads still running when release() closes the manager.

One instance is created at startup and handed to the engine.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Optional

from sentinel_backend import (
    DetectionBackend,
    MediaPipeFaceBackend,
    OnnxObjectBackend,
    onnx_runtime_ready,
)
from sentinel_errors import BackendTimeoutError, BackendUnavailableError
from sentinel_types import ModelState

_log = logging.getLogger("ModelManager")

Loader = Callable[[], DetectionBackend]


def _release_quietly(handle: Any, what: str) -> None:
    release = getattr(handle, "release", None)
    if release is None:
        return
    try:
        release()
    except Exception as e:
        _log.warning("Failed to release %s: %s", what, e)


class ModelLifecycleManager:
    """Owns ModelState and the loaded backend handles.

    Args:
        object_loader: Returns a loaded object backend, raises on failure.
        face_loader: Returns a loaded face backend, raises on failure.
        runtime_ready: Backend readiness step, raises when not ready.
        max_retries: Readiness attempts before falling back.
        retry_backoff_s: Sleep between attempts.
        runtime_timeout_s: Bound on the readiness step.
        model_load_timeout_s: Bound on the concurrent model loads.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        object_loader: Optional[Loader] = None,
        face_loader: Optional[Loader] = None,
        runtime_ready: Optional[Callable[[], Any]] = None,
        max_retries: int = 3,
        retry_backoff_s: float = 2.0,
        runtime_timeout_s: float = 30.0,
        model_load_timeout_s: float = 45.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._object_loader = object_loader
        self._face_loader = face_loader
        self._runtime_ready = runtime_ready
        self.max_retries = max(1, int(max_retries))
        self.retry_backoff_s = retry_backoff_s
        self.runtime_timeout_s = runtime_timeout_s
        self.model_load_timeout_s = model_load_timeout_s
        self._sleep = sleep

        self._lock = threading.Lock()
        self._init_lock = threading.Lock()
        self._state = ModelState.uninitialized()
        self._object_backend: Optional[DetectionBackend] = None
        self._face_backend: Optional[DetectionBackend] = None
        self._closed = False

    @classmethod
    def from_config(cls, config: dict, **kwargs) -> "ModelLifecycleManager":
        """Manager wired to the onnxruntime / MediaPipe backends."""
        models_cfg = config.get("models", config)
        return cls(
            object_loader=lambda: OnnxObjectBackend().load(models_cfg),
            face_loader=lambda: MediaPipeFaceBackend().load(models_cfg),
            runtime_ready=onnx_runtime_ready,
            max_retries=models_cfg.get("max_retries", 3),
            retry_backoff_s=models_cfg.get("retry_backoff_s", 2.0),
            runtime_timeout_s=models_cfg.get("runtime_timeout_s", 30.0),
            model_load_timeout_s=models_cfg.get("model_load_timeout_s", 45.0),
            **kwargs,
        )

    # ── State ─────────────────────────────────────────────────

    @property
    def state(self) -> ModelState:
        with self._lock:
            return self._state

    @property
    def object_backend(self) -> Optional[DetectionBackend]:
        with self._lock:
            return self._object_backend

    @property
    def face_backend(self) -> Optional[DetectionBackend]:
        with self._lock:
            return self._face_backend

    def is_model_ready(self) -> bool:
        """READY in either real or fallback mode."""
        return self.state.is_ready

    def has_real_models(self) -> bool:
        with self._lock:
            return self._object_backend is not None or self._face_backend is not None

    def status(self) -> dict:
        return {"ready": self.is_model_ready(), "real": self.has_real_models()}

    def _set_state(self, state: ModelState) -> None:
        with self._lock:
            self._state = state

    # ── Initialization ────────────────────────────────────────

    def initialize(self) -> None:
        """Bring the backends up. No-op once READY or released.

        Raises:
            BackendUnavailableError: every readiness attempt failed. The
                manager is left READY(real=False) and later calls are no-ops.
        """
        with self._init_lock:
            if self.state.is_ready:
                return

            attempt = self.state.attempt
            while True:
                with self._lock:
                    if self._closed:
                        self._state = ModelState.ready(real=False, attempt=attempt)
                        return
                    attempt += 1
                    self._state = ModelState.initializing(attempt)
                _log.info("Initializing detection models (attempt %d/%d)",
                          attempt, self.max_retries)

                try:
                    if self._runtime_ready is not None:
                        self._run_bounded(
                            "runtime readiness", self._runtime_ready, self.runtime_timeout_s
                        )
                except Exception as e:
                    _log.warning("Model init attempt %d failed: %s", attempt, e)
                    if attempt < self.max_retries:
                        self._sleep(self.retry_backoff_s)
                        continue
                    self._release_handles()
                    self._set_state(ModelState.ready(real=False, attempt=attempt))
                    raise BackendUnavailableError(attempt, e) from e

                object_backend, face_backend = self._load_models()
                with self._lock:
                    closed = self._closed
                    if not closed:
                        self._object_backend = object_backend
                        self._face_backend = face_backend
                    real = not closed and (object_backend is not None or face_backend is not None)
                    self._state = ModelState.ready(real=real, attempt=attempt)

                if closed:
                    # Released while loading: the fresh handles are never installed.
                    _log.info("Manager released during initialization, dropping loaded models")
                    for what, handle in (("object backend", object_backend),
                                         ("face backend", face_backend)):
                        if handle is not None:
                            _release_quietly(handle, what)
                elif real:
                    _log.info(
                        "Models ready — object=%s face=%s",
                        getattr(object_backend, "name", None),
                        getattr(face_backend, "name", None),
                    )
                else:
                    _log.warning("No detection model loaded, running in fallback mode")
                return

    def initialize_in_background(
        self,
        on_error: Optional[Callable[[BackendUnavailableError], None]] = None,
    ) -> threading.Thread:
        """Run initialize() on a daemon thread. Never blocks the caller."""
        def _run():
            try:
                self.initialize()
            except BackendUnavailableError as e:
                _log.error("%s", e)
                if on_error is not None:
                    on_error(e)

        thread = threading.Thread(target=_run, daemon=True, name="SentinelModelInit")
        thread.start()
        return thread

    @staticmethod
    def _submit(executor: ThreadPoolExecutor, fn: Callable[[], Any], step: str):
        """Submit ``fn`` with a cancellation token.

        Once the token is set, a result that arrives later is released
        by the worker itself instead of being returned.
        """
        cancel = threading.Event()

        def _guarded():
            result = fn()
            if cancel.is_set():
                _log.info("Releasing late result of abandoned %s", step)
                _release_quietly(result, step)
                return None
            return result

        return executor.submit(_guarded), cancel

    @staticmethod
    def _abandon(future: Future, cancel: threading.Event, step: str) -> None:
        cancel.set()

        # Covers a result that landed between the timeout and cancel.set().
        def _release_late(done: Future):
            if done.cancelled() or done.exception() is not None:
                return
            handle = done.result()
            if handle is not None:
                _log.info("Releasing late result of abandoned %s", step)
                _release_quietly(handle, step)

        future.cancel()
        future.add_done_callback(_release_late)

    def _run_bounded(self, step: str, fn: Callable[[], Any], timeout_s: float) -> Any:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sentinel-init")
        future, cancel = self._submit(executor, fn, step)
        try:
            return future.result(timeout=timeout_s)
        except FuturesTimeout:
            self._abandon(future, cancel, step)
            raise BackendTimeoutError(step, timeout_s)
        finally:
            executor.shutdown(wait=False)

    def _load_models(self) -> tuple[Optional[DetectionBackend], Optional[DetectionBackend]]:
        loaders = {"object": self._object_loader, "face": self._face_loader}
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="sentinel-load")
        pending = {
            kind: self._submit(executor, loader, f"{kind} model load")
            for kind, loader in loaders.items() if loader is not None
        }

        handles = {}
        try:
            wait([future for future, _ in pending.values()], timeout=self.model_load_timeout_s)
            for kind, (future, cancel) in pending.items():
                if not future.done():
                    self._abandon(future, cancel, f"{kind} model load")
                    _log.warning("%s model load timed out after %.1fs",
                                 kind, self.model_load_timeout_s)
                    continue
                try:
                    handles[kind] = future.result()
                except Exception as e:
                    _log.warning("%s model unavailable: %s", kind, e)
        finally:
            executor.shutdown(wait=False)

        return handles.get("object"), handles.get("face")

    # ── Shutdown ──────────────────────────────────────────────

    def _release_handles(self) -> None:
        with self._lock:
            handles = [("object backend", self._object_backend),
                       ("face backend", self._face_backend)]
            self._object_backend = None
            self._face_backend = None
        for what, handle in handles:
            if handle is not None:
                _release_quietly(handle, what)

    def release(self) -> None:
        """Release loaded backends and close the manager.

        Loads still in flight are released as soon as they finish. The
        manager is left READY(real=False).
        """
        with self._lock:
            self._closed = True
            attempt = self._state.attempt
        self._release_handles()
        self._set_state(ModelState.ready(real=False, attempt=attempt))
