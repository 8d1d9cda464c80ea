"""
The dashboard's client event loop.

All fetchers and pollers live on one asyncio loop running in a daemon
thread. Flask request threads never touch them directly; they submit
coroutines with ``run`` and wait for the result.
"""

import asyncio
import logging
import threading

logger = logging.getLogger(__name__)


class BackgroundLoop:
    def __init__(self, name='mailbadger-client'):
        self.name = name
        self._loop = None
        self._thread = None
        self._ready = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the loop thread if it is not running yet."""
        with self._lock:
            if self.running:
                return self
            self._ready.clear()
            self._thread = threading.Thread(target=self._serve, name=self.name, daemon=True)
            self._thread.start()
        self._ready.wait()
        return self

    def run(self, coro, timeout=None):
        """Run a coroutine on the loop and block until it finishes."""
        if not self.running:
            self.start()
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout)

    def call(self, fn, *args, timeout=None):
        """Run a plain function on the loop thread and return its result."""
        async def _call():
            return fn(*args)
        return self.run(_call(), timeout=timeout)

    def stop(self, timeout=5):
        """Cancel outstanding tasks, stop the loop and join the thread."""
        with self._lock:
            if not self.running:
                return
            loop, thread = self._loop, self._thread
            loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        logger.debug(f"{self.name} loop stopped")

    def _serve(self):
        loop = asyncio.new_event_loop()
        self._loop = loop
        try:
            asyncio.set_event_loop(loop)
            self._ready.set()
            loop.run_forever()
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.run_until_complete(loop.shutdown_default_executor())
        finally:
            asyncio.set_event_loop(None)
            loop.close()
