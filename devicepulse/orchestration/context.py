"""
Context — the ordered key/value payload threaded through a run.

A Context is created from the triggering signal's payload, cloned once per
fan-out branch and merged again at a unique task.
"""

import copy
from collections.abc import MutableMapping
from typing import Any, Iterator, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from devicepulse.exceptions import ContextSchemaError

S = TypeVar("S", bound=BaseModel)


class Context(MutableMapping):
    """
    Mutable, ordered mapping owned by exactly one branch at a time.

    `joined` holds the branch contexts a merged Context was built from,
    ordered by branch source name. It is empty for every other Context.
    """

    def __init__(
        self,
        data: Optional[Mapping[str, Any]] = None,
        joined: Sequence["Context"] = (),
    ):
        self._data: dict[str, Any] = dict(data or {})
        self.joined: tuple[Context, ...] = tuple(joined)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Context({self._data!r})"

    def clone(self) -> "Context":
        """Deep copy for a new branch. Join provenance is not carried over."""
        return Context(copy.deepcopy(self._data))

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def validate(self, schema: type[S], task_name: str = "") -> S:
        """Validate the context against a stage schema."""
        try:
            return schema.model_validate(self._data)
        except PydanticValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ContextSchemaError(task_name or schema.__name__, errors) from e


def merge_contexts(
    sources: Sequence[tuple[str, Context]],
    owners: Optional[Mapping[str, str]] = None,
) -> Context:
    """
    Merge branch contexts at a fan-in point.

    For each key the first non-null value wins, walking the branches sorted by
    source task name (arrival index only breaks ties between branches from the
    same source). Fields listed in `owners` are taken from the owning branch
    when that branch supplied a non-null value.
    """
    ordered = [
        item for _, item in sorted(enumerate(sources), key=lambda pair: (pair[1][0], pair[0]))
    ]

    merged: dict[str, Any] = {}
    for _, ctx in ordered:
        for key, value in ctx.items():
            if merged.get(key) is None:
                merged[key] = copy.deepcopy(value)

    for key, owner in (owners or {}).items():
        for source, ctx in ordered:
            if source == owner and ctx.get(key) is not None:
                merged[key] = copy.deepcopy(ctx[key])
                break

    return Context(merged, joined=[ctx for _, ctx in ordered])
