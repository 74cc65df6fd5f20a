from __future__ import annotations

from typer import Argument, Context, Exit, Option

from ...core import ActionError, actions
from ._utils import MainTyper, get_root_context, logger, print_table

app = MainTyper(
    "query",
    help="Read records, history and expressions",
)


@app.command()
def read(
    ctx: Context,
    filter: str = Argument(help="Filter, e.g. 'site' or 'point and his'"),
    limit: int
    | None = Option(
        1,
        help="Maximum number of records, 0 for no limit",
        min=0,
    ),
):
    """
    Read records matching a filter
    """
    root_context = get_root_context(ctx)

    with root_context.create_connector() as connector:
        try:
            table = actions.read(
                connector,
                filter,
                limit or None,
                timeout=root_context.timeout,
            )
        except ActionError as e:
            logger.error(f"Read failed: {e}")
            raise Exit(code=1)

    print_table(table, title=filter)


@app.command()
def eval(
    ctx: Context,
    expr: str = Argument(help="Axon expression"),
):
    """
    Evaluate an expression
    """
    root_context = get_root_context(ctx)

    with root_context.create_connector() as connector:
        try:
            table = actions.eval(connector, expr, timeout=root_context.timeout)
        except ActionError as e:
            logger.error(f"Eval failed: {e}")
            raise Exit(code=1)

    print_table(table)


@app.command()
def his_read(
    ctx: Context,
    id: str = Argument(help="Point id"),
    range: str = Argument(
        help="Range, e.g. 'today', 'yesterday' or '2024-01-01,2024-01-31'"
    ),
):
    """
    Read history of a point
    """
    root_context = get_root_context(ctx)

    with root_context.create_connector() as connector:
        try:
            table = actions.his_read(
                connector, id, range, timeout=root_context.timeout
            )
        except ActionError as e:
            logger.error(f"History read failed: {e}")
            raise Exit(code=1)

    print_table(table, title=f"{id} ({range})")
