from fastapi import HTTPException, Request, status

from reminder_dispatcher.runtime import ReminderRuntime


def get_runtime(request: Request) -> ReminderRuntime:
    """The runtime built by the app lifespan."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Scheduler not initialized"
        )
    return runtime
