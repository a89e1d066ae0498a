from __future__ import annotations

from partflow.datastructures import FieldDict, FieldPart


class FieldAggregator:
    """
    Collects fields instead of handing them to the consumer.

    `fields` keeps every accepted `FieldPart` in arrival order, `field` maps
    each name to its value, or to the list of its values once it repeats.
    """

    __slots__ = ("fields", "field")

    def __init__(self) -> None:
        self.fields: list[FieldPart] = []
        self.field = FieldDict()

    def add(self, part: FieldPart) -> None:
        self.fields.append(part)
        self.field.set(part.name, part.value)

    def __len__(self) -> int:
        return len(self.fields)
