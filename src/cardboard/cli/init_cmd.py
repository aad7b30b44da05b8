"""cardboard init — create the backing table."""

from __future__ import annotations

from cardboard.cli._output import print_fields
from cardboard.cli._storage import open_cardboard


def init_cmd() -> None:
    """Create the key-value table if it does not exist."""
    from cardboard.cli import state

    with open_cardboard() as cb:
        cb.create_table()
        data = {**cb.storage_info(), "status": "initialized"}
    print_fields(data, json_mode=state.json_output)
