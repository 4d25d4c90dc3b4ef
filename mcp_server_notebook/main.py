"""
Command-line entry point: serve a Jupyter notebook workspace over the MCP
notebook tool gateway.

    mcp-server-notebook --workspace ./project --notebook analysis.ipynb

The bound port is printed to stderr as ``[MCP_PORT]: <port>`` so a parent
process can pick it up when ``--port 0`` is used.
"""

import argparse
import asyncio
import sys

from mcp_server_notebook.config import load_settings
from mcp_server_notebook.dispatcher import ProtocolDispatcher
from mcp_server_notebook.jupyter_provider import JupyterNotebookProvider
from mcp_server_notebook.observability import configure_logging, get_logger
from mcp_server_notebook.server import GatewayServer
from mcp_server_notebook.tools import build_registry
from mcp_server_notebook.tools.base import ToolContext

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MCP Notebook Tool Gateway")
    parser.add_argument("--notebook", default=None, help="Notebook to open and activate at start-up")
    parser.add_argument("--workspace", default=None, help="Root directory for relative notebook paths")
    parser.add_argument("--host", default=None, help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=None, help="Port number (0 lets the OS choose)")
    parser.add_argument(
        "--log-level", default=None, choices=["debug", "info", "warning", "error"], help="Log level"
    )
    return parser


async def serve(args) -> None:
    overrides = {}
    if args.host is not None:
        overrides["HOST"] = args.host
    if args.port is not None:
        overrides["PORT"] = args.port
    if args.log_level is not None:
        overrides["LOG_LEVEL"] = args.log_level
    if args.workspace is not None:
        overrides["WORKSPACE_ROOT"] = args.workspace
    settings = load_settings(**overrides)
    configure_logging(settings.LOG_LEVEL)

    provider = JupyterNotebookProvider(workspace_root=settings.WORKSPACE_ROOT, kernel_name=settings.KERNEL_NAME)
    if args.notebook:
        await provider.open_document(args.notebook)

    ctx = ToolContext(provider=provider, settings=settings)
    server = GatewayServer(settings, lambda: ProtocolDispatcher(build_registry(ctx)))
    handle = await server.start()
    print(f"[MCP_PORT]: {handle.port}", file=sys.stderr)
    print(f"MCP Server listening on {handle.url}", file=sys.stderr)

    try:
        await handle.task
    finally:
        await server.stop(handle)
        await provider.shutdown()


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(serve(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
