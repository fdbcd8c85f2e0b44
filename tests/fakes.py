"""Test doubles shared by the adapter, polling and session tests."""


class Replies:
    """Successive responses for one route; the last one repeats."""

    def __init__(self, *items):
        self.items = list(items)

    def next(self):
        if len(self.items) > 1:
            return self.items.pop(0)
        return self.items[0]


class FakeTransport:
    def __init__(self, routes=None):
        # (method, path) -> value | exception | Replies | callable(**kwargs)
        self.routes = dict(routes or {})
        self.calls = []
        self.headers = {}

    def get(self, path, params=None):
        return self._handle("GET", path, params=params)

    def post(self, path, data=None, params=None, json=None, files=None):
        return self._handle("POST", path, data=data, params=params, json=json, files=files)

    def _handle(self, method, path, **kwargs):
        kwargs = {k: v for k, v in kwargs.items() if v is not None}
        self.calls.append((method, path, kwargs))
        if (method, path) not in self.routes:
            raise AssertionError(f"unexpected {method} {path}")
        reply = self.routes[(method, path)]
        if isinstance(reply, Replies):
            reply = reply.next()
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(**kwargs)
            if isinstance(reply, BaseException):
                raise reply
        return reply

    def paths(self, method=None):
        return [p for m, p, _ in self.calls if method is None or m == method]

    def calls_to(self, path):
        return [kw for _, p, kw in self.calls if p == path]


class FakeHandle:
    def __init__(self, due, delay, callback):
        self.due = due
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Deterministic stand-in for ThreadingScheduler; time moves only on advance()."""

    def __init__(self):
        self.now = 0.0
        self.handles = []

    def schedule(self, delay, callback):
        handle = FakeHandle(self.now + delay, delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def pending_delays(self):
        return [h.delay for h in self.pending]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = sorted((h for h in self.pending if h.due <= target), key=lambda h: h.due)
            if not due:
                break
            handle = due[0]
            self.handles.remove(handle)
            self.now = handle.due
            handle.callback()
        self.now = target
