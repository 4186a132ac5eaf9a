"""``taskgate-server`` entry point."""

import uvicorn

from taskgate.config import env_flag, env_int, env_str, load_local_env


def main():
    """Serve the API with uvicorn, bound per TASKGATE_HOST and TASKGATE_PORT."""
    load_local_env()
    uvicorn.run(
        "taskgate.api:app",
        host=env_str("TASKGATE_HOST", "127.0.0.1"),
        port=env_int("TASKGATE_PORT", 8080, 1, 65535),
        reload=env_flag("TASKGATE_RELOAD", False),
        log_level="info",
    )


if __name__ == "__main__":
    main()
