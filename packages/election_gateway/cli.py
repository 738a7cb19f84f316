import json

import typer

from . import elections
from .chain import GatewayContext, format_ether
from .config import load_settings
from .errors import GatewayError

app = typer.Typer(help="Election gateway tools.")


def _context() -> GatewayContext:
    try:
        return GatewayContext.from_settings(load_settings())
    except RuntimeError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)


def _fail(exc: GatewayError):
    typer.echo(json.dumps({"success": False, "error": exc.message, "code": exc.code}))
    raise typer.Exit(code=1)


@app.command()
def serve(host: str = "0.0.0.0", port: int = 3000, reload: bool = False):
    """Run the HTTP gateway."""
    import uvicorn

    uvicorn.run("election_gateway.main:app", host=host, port=port, reload=reload)


@app.command("elections")
def list_elections():
    """Print every election address the factory has deployed."""
    ctx = _context()
    try:
        typer.echo(json.dumps(elections.list_elections(ctx)))
    except GatewayError as exc:
        _fail(exc)


@app.command()
def results(admin: str = typer.Argument(...)):
    ctx = _context()
    try:
        typer.echo(json.dumps(elections.read_results(ctx, admin)))
    except GatewayError as exc:
        _fail(exc)


@app.command()
def balance(admin: str = typer.Argument(...)):
    ctx = _context()
    try:
        wei = elections.read_balance(ctx, admin)
    except GatewayError as exc:
        _fail(exc)
    typer.echo(json.dumps({"balance": f"{format_ether(wei)} ETH"}))


if __name__ == "__main__":
    app()
