from __future__ import annotations

import time
from enum import StrEnum

from typer import Argument, Context, Exit, Option

from ...core import (
    ActionError,
    SubscribeStream,
    Table,
    actions,
    encode_name,
    reconcile,
)
from ._utils import (
    MainTyper,
    console,
    get_root_context,
    logger,
    print_table,
    print_tree,
    wait,
)

app = MainTyper(
    "entity",
    help="Operate on individual entities: points and equipment",
)


class ValueKind(StrEnum):
    BOOL = "bool"
    NUMBER = "number"
    STR = "str"


class DurationUnit(StrEnum):
    MS = "ms"
    SEC = "sec"
    MIN = "min"
    HR = "hr"
    DAY = "day"
    WK = "wk"
    MO = "mo"
    YR = "yr"


@app.command()
def point_write(
    ctx: Context,
    id: str = Argument(help="Point id"),
    value: str
    | None = Argument(
        None,
        help="Value to write, or omit to release the level",
    ),
    level: int = Option(
        17,
        help="Priority array level",
        min=actions.LEVELS.start,
        max=actions.LEVELS.stop - 1,
    ),
    value_type: ValueKind = Option(
        ValueKind.NUMBER,
        "--type",
        help="Type of value",
    ),
    unit: str | None = Option(None, help="Unit of number value"),
    who: str | None = Option(None, help="User performing the write"),
    duration: float
    | None = Option(
        None,
        help="Duration after which the level is released",
        min=0,
    ),
    duration_unit: DurationUnit
    | None = Option(
        None,
        help="Unit of duration",
    ),
):
    """
    Write to a level of a point's priority array
    """
    root_context = get_root_context(ctx)

    with root_context.create_connector() as connector:
        try:
            table = actions.point_write(
                connector,
                id,
                level,
                value,
                str(value_type),
                unit,
                who,
                duration,
                str(duration_unit) if duration_unit else None,
                timeout=root_context.timeout,
            )
        except ActionError as e:
            logger.error(f"Point write failed: {e}")
            raise Exit(code=1)

    print_table(table, title=id)


@app.command()
def invoke(
    ctx: Context,
    id: str = Argument(help="Entity id"),
    action: str = Argument(help="Action name"),
    str_arg: str | None = Option(None, "--str", help="String argument"),
    bool_arg: bool
    | None = Option(None, "--bool/--no-bool", help="Boolean argument"),
    number_arg: float
    | None = Option(None, "--number", help="Number argument"),
):
    """
    Invoke an action on an entity
    """
    root_context = get_root_context(ctx)

    args = {"str": str_arg, "bool": bool_arg, "number": number_arg}

    with root_context.create_connector() as connector:
        try:
            table = actions.invoke(
                connector, id, action, args, timeout=root_context.timeout
            )
        except ActionError as e:
            logger.error(f"Invoke failed: {e}")
            raise Exit(code=1)

    print_table(table, title=f"{id} {action}")


@app.command()
def watch(
    ctx: Context,
    ids: list[str] = Argument(help="Entity ids to watch"),
    poll_rate: float
    | None = Option(
        None,
        help="Poll interval in seconds, overrides configured rate",
        min=0.1,
    ),
    count: int = Option(
        1,
        help="Number of poll intervals to print",
        min=1,
    ),
):
    """
    Watch entities, printing their current state after each poll interval
    """
    root_context = get_root_context(ctx)

    try:
        refs = [actions.parse_ref(id) for id in ids]
    except ActionError as e:
        logger.error(str(e))
        raise Exit(code=1)

    with root_context.create_connector() as connector:
        if poll_rate is not None:
            connector.registry.reconfigure(poll_rate)

        for ref in refs:
            node = connector.node.create_child(
                encode_name(ref.val), serializable=False
            )

            row = wait(
                connector.submit(lambda client, ref=ref: client.read_by_id(ref)),
                root_context.timeout,
                f"read {ref}",
            )
            reconcile(node, row)

            connector.registry.subscribe(ref, node)

        print_tree(connector.node, label=root_context.name)

        for _ in range(count):
            time.sleep(connector.registry.poll_rate)
            print_tree(connector.node, label=root_context.name)


@app.command()
def subscribe(
    ctx: Context,
    id: str = Argument(help="Entity id"),
    poll_rate: int = Option(
        5000,
        help="Poll interval in milliseconds",
        min=1,
    ),
    count: int = Option(
        1,
        help="Number of poll intervals to stream",
        min=1,
    ),
):
    """
    Stream changes of an entity
    """
    root_context = get_root_context(ctx)

    def on_change(table: Table):
        print_table(table, title=id)

    with root_context.create_connector() as connector:
        try:
            stream = SubscribeStream(
                connector, id, on_change, poll_rate, logger=logger
            )
        except ActionError as e:
            logger.error(str(e))
            raise Exit(code=1)

        wait(stream.start(), root_context.timeout, f"subscribe to {id}")

        try:
            time.sleep(poll_rate / 1000 * count)
        finally:
            stream.stop()

    console.print(f"Stopped streaming {id}")
