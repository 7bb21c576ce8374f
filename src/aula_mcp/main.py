"""Main CLI entry point for aula-mcp."""

import typer

from aula_mcp.cli.commands import auth

app = typer.Typer(
    name="aula",
    help="MitID login and MCP server for the Aula school portal",
    no_args_is_help=True,
)

app.command("login")(auth.do_login)
app.command("logout")(auth.do_logout)
app.command("status")(auth.status)


@app.command("serve")
def serve():
    """Run the MCP server on stdio."""
    from aula_mcp.mcp.server import main as run_server

    run_server()


if __name__ == "__main__":
    app()
