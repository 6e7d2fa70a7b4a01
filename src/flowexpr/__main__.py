"""`python -m flowexpr` and the `flowexpr-mcp` script.

The tools module must be imported before the server runs: importing it is
what registers the @mcp.tool() functions on the shared FastMCP instance.
"""


def main() -> None:
    from . import tools  # noqa: F401
    from .server import main as run_server

    run_server()


if __name__ == "__main__":
    main()
