"""
Entry point of `haystack-link` CLI.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import dotenv
from click.exceptions import BadParameter, MissingParameter
from pydantic import ValidationError
from typer import Argument, Context, Exit, Option

from ...core import Connector, Node, encode_name
from ..config import Config, ServerConfig
from . import entity, query
from ._utils import (
    MainTyper,
    get_root_context,
    logger,
    lookup_param,
    print_tree,
    wait,
)

dotenv.load_dotenv()

app = MainTyper(
    "haystack-link",
    help="Haystack server toolkit",
)


@app.callback()
def main(
    ctx: Context,
    url: str
    | None = Option(
        None,
        help="Haystack API url, e.g. http://localhost:8080/api/demo",
        envvar="HAYSTACK_URL",
    ),
    user: str
    | None = Option(
        None,
        help="Haystack username",
        envvar="HAYSTACK_USER",
    ),
    password: str
    | None = Option(
        None,
        help="Haystack password",
        envvar="HAYSTACK_PASSWORD",
    ),
    server_name: str
    | None = Option(
        None,
        "--server",
        help="Server name as configured in .yaml",
        envvar="HAYSTACK_SERVER",
    ),
    config_file: Path = Option(
        "haystack-link.yaml",
        help=".yaml file containing server info, only applicable with --server",
        envvar="HAYSTACK_LINK_CONFIG_FILE",
        dir_okay=False,
    ),
    timeout: float = Option(
        10.0,
        help="Seconds to wait for the server",
        min=0.1,
    ),
):
    if server_name:
        root_context = RootContext.from_config(
            ctx=ctx,
            server_name=server_name,
            config_file=config_file,
            timeout=timeout,
        )
    else:
        if not url:
            raise MissingParameter(
                message="either --url or --server must be provided",
                ctx=ctx,
                param_hint=["url", "server"],
                param_type="option",
            )

        try:
            server = ServerConfig(url=url, user=user, password=password)
        except ValidationError as e:
            raise BadParameter(
                f"invalid server parameters: {e}",
                ctx=ctx,
                param=lookup_param(ctx, "url"),
            )

        root_context = RootContext(
            ctx=ctx,
            name="server",
            server=server,
            timeout=timeout,
            from_file=False,
        )

    ctx.obj = root_context


app.add_typer(query.app)
app.add_typer(entity.app)


@app.command()
def check(ctx: Context):
    """
    Check Haystack connection
    """
    root_context = get_root_context(ctx)

    with root_context.create_connector() as connector:
        about = wait(
            connector.submit(lambda client: client.about()),
            root_context.timeout,
            f"connect to {connector.url}",
        )

    product = about.get("productName", "unknown product")
    version = about.get("productVersion", "unknown version")
    logger.info(f"Connected to '{connector.url}', {product} {version}")


@app.command()
def nav(
    ctx: Context,
    nav_id: str
    | None = Argument(
        None,
        help="Nav id to start from, or navigation root if not given",
    ),
    depth: int = Option(
        2,
        help="Number of levels to fetch",
        min=1,
    ),
):
    """
    Print the navigation tree
    """
    root_context = get_root_context(ctx)

    with root_context.create_connector() as connector:
        if nav_id is None:
            node = connector.mount()
        else:
            node = connector.node.create_child(
                encode_name(nav_id), serializable=False
            )

        count = wait(
            connector.navigate(node, nav_id, depth),
            root_context.timeout,
            "navigate",
        )

    if count == 0:
        logger.info("Nothing to navigate")
        raise Exit()

    print_tree(node, label=nav_id or root_context.name)


def run():
    app()


@dataclass(kw_only=True)
class RootContext:
    ctx: Context
    name: str
    server: ServerConfig
    timeout: float
    from_file: bool

    @classmethod
    def from_config(
        cls,
        *,
        ctx: Context,
        server_name: str,
        config_file: Path,
        timeout: float,
    ) -> RootContext:
        # ensure config file exists
        if not config_file.is_file():
            raise BadParameter(
                message=f"file does not exist: {config_file}",
                ctx=ctx,
                param=lookup_param(ctx, "config_file"),
            )

        # get config from file
        try:
            config = Config.load_yaml(config_file)
        except (ValueError, ValidationError) as e:
            raise BadParameter(
                f"failed to load config file '{config_file}': {e}",
                ctx=ctx,
                param=lookup_param(ctx, "config_file"),
            )

        # get server from config
        server = config.servers.get(server_name)
        if not server:
            raise BadParameter(
                f"server '{server_name}' not found in '{config_file}'",
                ctx=ctx,
                param=lookup_param(ctx, "server_name"),
            )

        return RootContext(
            ctx=ctx,
            name=server_name,
            server=server,
            timeout=timeout,
            from_file=True,
        )

    def create_connector(self) -> Connector:
        """
        Create a connector mounted on a fresh in-memory server node.
        """
        node = Node(encode_name(self.name))
        return self.server.create_connector(node, logger=logger)


if __name__ == "__main__":
    app()
