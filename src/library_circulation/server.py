"""Library Circulation Server

Wires the pieces together and exposes them over MCP:

1. ``LibraryApp`` owns the configuration, the ``DatabaseManager``, the auth
   oracle and the dispatcher. ``invoke`` is the transport-neutral entry point:
   it verifies the bearer token (if any) and dispatches.
2. ``create_server`` registers two FastMCP tools, ``invoke`` and
   ``list_operations``, on top of a ``LibraryApp``.
3. ``main`` is the console entry point.

Logging goes to stderr so stdout stays clean for the stdio transport.
"""

import logging
import signal
import sys
from typing import Any

from fastmcp import FastMCP

from .auth import AuthOracle, JWTAuthOracle
from .config import LibraryConfig, get_config
from .database.session import DatabaseManager
from .dispatcher import Dispatcher, Response
from .errors import AuthenticationError
from .observability import configure_observability
from .tools import build_registry

logger = logging.getLogger(__name__)


class LibraryApp:
    """The library backend, independent of any transport."""

    def __init__(
        self,
        config: LibraryConfig | None = None,
        db: DatabaseManager | None = None,
        auth: AuthOracle | None = None,
    ):
        self.config = config or get_config()
        self.db = db or DatabaseManager.from_config(self.config)
        self.auth = auth or JWTAuthOracle.from_config(self.config)
        self.registry = build_registry()
        self.dispatcher = Dispatcher(self.db, self.registry, self.config, self.auth)
        logger.info("Library app ready with %d operations", len(self.registry))

    async def invoke(
        self, operation: str, payload: dict[str, Any] | None = None, token: str | None = None
    ) -> Response:
        """Authenticate the caller from ``token`` and run one operation."""
        actor = None
        if token:
            try:
                actor = self.auth.verify(token)
            except AuthenticationError as e:
                logger.info("Rejected token for %s: %s", operation, e.message)
                return Response.from_error(e)
        return await self.dispatcher.dispatch(operation, actor, payload)

    async def login(self, email: str, password: str) -> Response:
        return await self.invoke("auth.login", {"email": email, "password": password})

    def list_operations(self) -> list[dict[str, Any]]:
        return [operation.describe() for operation in self.registry]

    def close(self) -> None:
        self.db.close()


def create_server(app: LibraryApp) -> FastMCP:
    """Build the FastMCP server in front of ``app``."""
    mcp = FastMCP(
        name=app.config.server_name,
        instructions=(
            "Library circulation backend. Call `auth.login` through `invoke` to obtain a "
            "token, then pass it with every other operation. `list_operations` describes "
            "each operation, the roles allowed to call it and its payload schema."
        ),
    )

    async def invoke(
        operation: str, payload: dict[str, Any] | None = None, token: str | None = None
    ) -> dict[str, Any]:
        response = await app.invoke(operation, payload, token)
        return {"status": response.status_code, **response.envelope()}

    def list_operations() -> list[dict[str, Any]]:
        return app.list_operations()

    mcp.tool(
        name="invoke",
        description="Run one library operation. Returns {status, success, message, data, errors}.",
    )(invoke)
    mcp.tool(
        name="list_operations",
        description="Describe every library operation and who may call it.",
    )(list_operations)

    logger.info("Registered MCP tools for %d operations", len(app.registry))
    return mcp


def main() -> None:
    """Console entry point: `library-circulation`."""
    config = get_config()

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    if not config.debug:
        logging.getLogger("fastmcp").setLevel(logging.WARNING)

    configure_observability(config)

    app = LibraryApp(config)
    if not app.db.verify_connection():
        logger.error("Database is not reachable: %s", config.get_database_url())
        sys.exit(1)
    app.db.init_database()

    mcp = create_server(app)

    def signal_handler(signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, shutting down...", signum)
        app.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Starting %s v%s on %s", config.server_name, config.server_version, config.transport)
    try:
        if config.transport == "stdio":
            mcp.run(transport="stdio")
        else:
            mcp.run(transport="streamable-http", host=config.http_host, port=config.http_port)
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception:
        logger.exception("Fatal error in server")
        sys.exit(1)
    finally:
        app.close()


if __name__ == "__main__":
    main()
