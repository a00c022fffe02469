from starlette.requests import HTTPConnection

from livehls.core.container import ServiceContainer


def get_container(conn: HTTPConnection) -> ServiceContainer:
    container = getattr(conn.app.state, "container", None)
    if container is None:
        # lifespan has not run (app used without its context manager)
        raise RuntimeError("Service container is not initialised")
    return container
