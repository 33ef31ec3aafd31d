"""
Command-line interface for Mellon.

Usage:
    mellon token add my-service
    mellon token list
    mellon token rescind my-service
    mellon serve localhost:8090
"""

import logging
from collections.abc import Sequence
from pathlib import Path

import click

from mellon import __version__
from mellon.errors import MellonError
from mellon.server.app import run_http
from mellon.server.listener import MellonServer, parse_hostport
from mellon.settings import MellonSettings
from mellon.tokens import TokenStore

logger = logging.getLogger(__name__)

THE_DOORS_OF_DURIN = r"""
             _,-'_,-----------._`-._
           ,'_,-'  ___________  `-._`.
         ,','  _,-'___________`-._  `.`.
       ,','  ,'_,-'     .     `-._`.  `.`.
      /,'  ,','        >|<        `.`.  `.\
     //  ,','      ><  ,^.  ><      `.`.  \\
    //  /,'      ><   / | \   ><      `.\  \\
   //  //      ><    \/\^/\/    ><      \\  \\
  ;;  ;;              `---'              ::  ::
  ||  ||              (____              ||  ||
 _||__||_            ,'----.            _||__||_
(o.____.o)____        `---'        ____(o.____.o)
  |    | /,--.)                   (,--.\ |    |
  |    |((  -`___               ___`   ))|    |
  |    | \\,'',  `.           .'  .``.// |    |
  |    |  // (___,'.         .'.___) \\  |    |
 /|    | ;;))  ____) .     . (____  ((\\ |    |\
 \|.__ | ||/ .'.--.\/       `/,--.`. \;: | __,|;
  |`-,`;.| :/ /,'  `)-'   `-('  `.\ \: |.;',-'|
  |   `..  ' / \__.'         `.__/ \ `  ,.'   |
  |    |,\  /,                     ,\  /,|    |
  |    ||: : )          .          ( : :||    |
 /|    |:; |/  .      ./|\,      ,  \| :;|    |\
 \|.__ |/  :  ,/-    <--:-->    ,\.  ;  \| __,|;
  |`-.``:   `'/-.     '\|/`     ,-\`;   ;'',-'|
  |   `..   ,' `'       '       `  `.   ,.'   |
  |    ||  :                         :  ||    |
  |    ||  |                         |  ||    |
  |    ||  |                         |  ||    |
  |    |'  |            _            |  `|    |
  |    |   |          '|))           |   |    |
  ;____:   `._        `'           _,'   ;____:
 {______}     \___________________/     {______}
 |______|_______________________________|______|
"""

HELP = "A small, simple, fast auth service.\n\n\b" + THE_DOORS_OF_DURIN


def format_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Render ``rows`` as a boxed, left-aligned text table."""
    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    border = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

    def render(cells: Sequence[str]) -> str:
        return "|" + "|".join(f" {c.ljust(w)} " for c, w in zip(cells, widths)) + "|"

    lines = [border, render(headers), border]
    lines.extend(render(row) for row in rows)
    lines.append(border)
    return "\n".join(lines)


def open_store(ctx: click.Context) -> TokenStore:
    settings: MellonSettings = ctx.obj
    try:
        return TokenStore(settings.store_path)
    except MellonError as e:
        click.echo(f"Failed to instantiate token store: {e}", err=True)
        ctx.exit(1)


@click.group(help=HELP)
@click.option(
    "--store",
    "store_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Token store file (default: $MELLON_STORE_PATH or /tmp/mellon/tokens)",
)
@click.option("--log-level", default=None, help="Logging level, e.g. DEBUG or INFO")
@click.version_option(__version__, prog_name="mellon")
@click.pass_context
def cli(ctx: click.Context, store_path: Path | None, log_level: str | None) -> None:
    settings = MellonSettings()
    if store_path is not None:
        settings.store_path = store_path
    if log_level is not None:
        settings.log_level = log_level

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    ctx.obj = settings


@cli.command()
@click.argument("hostname", required=False, metavar="HOSTNAME")
@click.option("--http", "use_http", is_flag=True, help="Serve through Starlette and uvicorn")
@click.pass_context
def serve(ctx: click.Context, hostname: str | None, use_http: bool) -> None:
    """Starts the auth server."""
    settings: MellonSettings = ctx.obj
    host = hostname or settings.host
    token_store = open_store(ctx)

    click.echo(f"Server starting up on {host}")
    try:
        if use_http:
            http_host, port = parse_hostport(host)
            run_http(token_store, http_host, port, log_level=settings.log_level)
        else:
            MellonServer.from_settings(token_store, settings, host).run()
    except KeyboardInterrupt:
        pass
    except (OSError, ValueError) as e:
        click.echo(f"Failed to host server: {e}", err=True)
        ctx.exit(1)
    click.echo("Server shut down!")


@cli.group()
def token() -> None:
    """Manage tokens by adding or removing."""


@token.command("add")
@click.argument("token_label")
@click.pass_context
def add_token(ctx: click.Context, token_label: str) -> None:
    """Add a new token."""
    token_store = open_store(ctx)
    try:
        new_token = token_store.create(token_label)
    except MellonError as e:
        click.echo(f"Failed to generate new token for label: {e}", err=True)
        ctx.exit(1)
    click.echo(new_token.secret)


@token.command("rescind")
@click.argument("token_label")
@click.pass_context
def rescind_token(ctx: click.Context, token_label: str) -> None:
    """Revoke an existing token by its label."""
    token_store = open_store(ctx)
    try:
        token_store.rescind(token_label)
    except MellonError as e:
        click.echo(f"Failed to rescind token: {e}", err=True)
        ctx.exit(1)
    click.echo(
        f"Token with label {token_label} has been removed. "
        "Be sure to restart or reload (SIGHUP) the server to load changes!"
    )


@token.command("list")
@click.pass_context
def list_tokens(ctx: click.Context) -> None:
    """List all tokens previously issued."""
    token_store = open_store(ctx)
    rows = [
        (t.label, t.masked_secret())
        for t in sorted(token_store.iter(), key=lambda t: t.label)
    ]
    click.echo(format_table(["Label", "Token"], rows))


def main() -> None:
    cli(prog_name="mellon")


if __name__ == "__main__":
    main()
