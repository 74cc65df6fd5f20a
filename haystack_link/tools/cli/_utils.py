"""
Utilities specific to CLI functionality.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TYPE_CHECKING

import requests
from click import Parameter
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table as RichTable
from rich.tree import Tree as RichTree
from typer import Context, Exit, Typer

from ...core import HaystackError, Node, Table, decode_name

if TYPE_CHECKING:
    from .main import RootContext


console = Console()

rich_handler = RichHandler(
    console=console,
    rich_tracebacks=True,
    show_level=True,
    show_time=True,
    show_path=False,
)
rich_handler.setFormatter(logging.Formatter("%(message)s"))

logger = logging.getLogger("haystack-link")
logger.setLevel(logging.INFO)
logger.addHandler(rich_handler)
logger.propagate = False


class MainTyper(Typer):
    """
    Typer app with preconfigured settings.
    """

    def __init__(self, name: str, *, help: str):
        return super().__init__(
            name=name,
            help=help,
            rich_markup_mode="markdown",
            no_args_is_help=True,
            add_completion=False,
        )


def get_root_context(ctx: Context) -> RootContext:
    from .main import RootContext

    root_context = ctx.obj
    assert isinstance(root_context, RootContext)
    return root_context


def lookup_param(ctx: Context, name: str) -> Parameter:
    """
    Lookup param by name.
    """
    param = next((p for p in ctx.command.params if p.name == name), None)
    assert param, f"Could not find param with name: {name}"
    return param


def wait[T](future: Future[T], timeout: float, what: str) -> T:
    """
    Wait for a future, logging failures and exiting with an error code.
    """
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError:
        future.cancel()
        logger.error(f"Timed out after {timeout}s waiting for {what}")
        raise Exit(code=1)
    except (requests.RequestException, HaystackError) as e:
        logger.error(f"Failed to {what}: {e}")
        raise Exit(code=1)


def print_table(table: Table, *, title: str | None = None):
    """
    Print action result.
    """
    rich_table = RichTable(title=title)

    for column in table.columns:
        rich_table.add_column(column)

    for row in table.rows:
        rich_table.add_row(*["" if v is None else str(v) for v in row])

    console.print(rich_table)


def print_tree(node: Node, *, label: str | None = None):
    """
    Print a node and its descendants along with their values.
    """

    def add(parent: RichTree, node: Node):
        for name, child in sorted(node.children.items()):
            text = decode_name(name)
            if child.value is not None:
                text += f" = [cyan]{child.value}[/cyan]"
            add(parent.add(text), child)

    tree = RichTree(label or decode_name(node.name) or "/")
    add(tree, node)
    console.print(tree)
