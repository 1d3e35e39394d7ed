"""
Query features: filter, sort, paginate and field projection built from
untrusted query-string parameters.

``QueryFeatures`` narrows a ``QuerySpec`` one stage at a time; the storage
layer executes the resulting spec against a collection.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Type, Union, get_args

from fastapi import status
from pydantic import BaseModel

from api.errors import AppError, CastError
from api.models import VERSION_KEY

RESERVED_KEYS = ("sort", "limit", "page", "fields")

# Query-string operator token -> MongoDB comparison operator
OPERATORS = {
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
}

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 50
MAX_LIMIT = 1000
# skip is sent to MongoDB as a BSON int64
MAX_SKIP = 2 ** 63 - 1
DEFAULT_SORT = [("createdAt", -1)]

KEY_PATTERN = re.compile(r"^(?P<field>[^\[\]]+)(?:\[(?P<op>[^\[\]]*)\])?$")

QueryParams = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


@dataclass(frozen=True)
class QuerySpec:
    """A query over one collection: predicate, order, window and projection."""
    filter: Dict[str, Any] = field(default_factory=dict)
    sort: List[Tuple[str, int]] = field(default_factory=list)
    skip: int = 0
    limit: Optional[int] = None
    projection: Optional[Dict[str, int]] = None


def _cast_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ValueError(value)


CASTERS: Dict[type, Callable[[str], Any]] = {
    int: int,
    float: float,
    bool: _cast_bool,
    datetime: datetime.fromisoformat,
}


def casters_for(model: Type[BaseModel], prefix: str = "") -> Dict[str, Callable[[str], Any]]:
    """
    Map the camelCase field paths of ``model`` to value casters.

    Only int, float, bool and datetime fields get a caster; nested models
    contribute dotted paths (``publisher.publishedDate``).
    """
    casters = {}
    for name, model_field in model.model_fields.items():
        path = prefix + (model_field.alias or name)
        annotation = model_field.annotation
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if args:
            annotation = args[0]
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            casters.update(casters_for(annotation, prefix=path + "."))
        elif annotation in CASTERS:
            casters[path] = CASTERS[annotation]
    return casters


def _positive_int(value: Optional[str], default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _malformed(message: str) -> AppError:
    return AppError(message, status.HTTP_400_BAD_REQUEST)


class QueryFeatures:
    """
    Builds a QuerySpec from query-string parameters.

    Each stage returns ``self`` so stages chain in the order they are called:

        QueryFeatures(QuerySpec(), request.query_params.multi_items()).filter().sort().paginate().fields()
    """

    def __init__(
        self,
        query: QuerySpec,
        params: QueryParams,
        casters: Optional[Mapping[str, Callable[[str], Any]]] = None,
        protected: Iterable[str] = (),
    ):
        self.query = query
        items = params.items() if isinstance(params, Mapping) else params
        self.params: List[Tuple[str, str]] = [(str(key), str(value)) for key, value in items]
        self.casters = casters or {}
        self.protected = frozenset(protected)

    def _check_allowed(self, field_name: str) -> None:
        """Protected fields may not be filtered or sorted on."""
        if field_name.split(".", 1)[0] in self.protected:
            raise _malformed(f"Cannot query on field: {field_name}")

    def _last(self, key: str) -> Optional[str]:
        values = [value for name, value in self.params if name == key]
        return values[-1] if values else None

    def _cast(self, field_name: str, value: str) -> Any:
        caster = self.casters.get(field_name)
        if caster is None:
            return value
        try:
            return caster(value)
        except (TypeError, ValueError):
            raise CastError(field_name, value, kind=getattr(caster, "__name__", "value"))

    def _parse_key(self, key: str) -> Tuple[str, Optional[str]]:
        match = KEY_PATTERN.match(key)
        if not match:
            raise _malformed(f"Malformed filter parameter: {key}")
        field_name = match.group("field").strip()
        op = match.group("op")
        if not field_name or field_name.startswith("$") or ".$" in field_name:
            raise _malformed(f"Malformed filter parameter: {key}")
        if op is not None and op not in OPERATORS:
            raise _malformed(f"Unsupported filter operator '{op}' on {field_name}")
        return field_name, op

    def filter(self) -> "QueryFeatures":
        """Turn every non-reserved parameter into a constraint on its field."""
        equals: Dict[str, List[Any]] = {}
        ranges: Dict[str, Dict[str, Any]] = {}

        for key, value in self.params:
            if key in RESERVED_KEYS:
                continue
            field_name, op = self._parse_key(key)
            self._check_allowed(field_name)
            cast_value = self._cast(field_name, value)
            if op is None:
                equals.setdefault(field_name, []).append(cast_value)
            else:
                ranges.setdefault(field_name, {})[OPERATORS[op]] = cast_value

        conflicts = set(equals) & set(ranges)
        if conflicts:
            raise _malformed(f"Conflicting filters on {', '.join(sorted(conflicts))}")

        constraints: Dict[str, Any] = {}
        for field_name, values in equals.items():
            constraints[field_name] = values[0] if len(values) == 1 else {"$in": values}
        constraints.update(ranges)

        base = self.query.filter
        if not constraints:
            merged = dict(base)
        elif set(base) & set(constraints):
            merged = {"$and": [base, constraints]}
        else:
            merged = {**base, **constraints}
        self.query = replace(self.query, filter=merged)
        return self

    def sort(self) -> "QueryFeatures":
        """Apply ``sort=a,-b``; default to newest first."""
        sort_value = self._last("sort")
        order = []
        if sort_value:
            for item in _split_list(sort_value):
                if item.startswith("-"):
                    order.append((item[1:], -1))
                else:
                    order.append((item.lstrip("+"), 1))
            order = [(name, direction) for name, direction in order if name]
            for name, _ in order:
                self._check_allowed(name)
        self.query = replace(self.query, sort=order or list(DEFAULT_SORT))
        return self

    def paginate(self) -> "QueryFeatures":
        """
        Apply ``page`` and ``limit``; defaults are page 1 and 50 per page.

        ``limit`` is capped at MAX_LIMIT; a page whose offset does not fit
        in MAX_SKIP falls back to the first page.
        """
        page = _positive_int(self._last("page"), DEFAULT_PAGE)
        limit = min(_positive_int(self._last("limit"), DEFAULT_LIMIT), MAX_LIMIT)
        if (page - 1) * limit > MAX_SKIP:
            page = DEFAULT_PAGE
        self.query = replace(self.query, skip=(page - 1) * limit, limit=limit)
        return self

    def fields(self) -> "QueryFeatures":
        """Apply ``fields=a,b`` (inclusion) or ``fields=-a,-b`` (exclusion)."""
        fields_value = self._last("fields")
        names = _split_list(fields_value) if fields_value else []
        if not names:
            self.query = replace(self.query, projection={VERSION_KEY: 0})
            return self

        excluded = [name[1:] for name in names if name.startswith("-")]
        included = [name for name in names if not name.startswith("-")]
        # _id is the one field MongoDB lets an inclusion projection exclude
        if included and any(name != "_id" for name in excluded):
            raise _malformed("Cannot mix included and excluded fields in a projection")
        if any(not name or name.startswith("$") for name in excluded + included):
            raise _malformed(f"Malformed fields parameter: {fields_value}")

        if included:
            projection = {name: 1 for name in included}
            if excluded:
                projection["_id"] = 0
        else:
            projection = {name: 0 for name in excluded}
        self.query = replace(self.query, projection=projection)
        return self
