import threading

from flask import current_app


def run_in_background(fn, *args, **kwargs):
    """
    Run ``fn`` on a daemon thread with the current app context pushed.

    With BACKGROUND_SYNC set (tests, CLI) the call runs inline instead.
    Returns the started thread, or None when run inline.
    """
    app = current_app._get_current_object()
    if app.config.get("BACKGROUND_SYNC"):
        fn(*args, **kwargs)
        return None

    def _runner():
        with app.app_context():
            try:
                fn(*args, **kwargs)
            except Exception:
                app.logger.exception("background task %s failed", getattr(fn, "__name__", fn))

    thread = threading.Thread(target=_runner, name=f"bg-{getattr(fn, '__name__', 'task')}", daemon=True)
    thread.start()
    return thread
