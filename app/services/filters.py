"""Query predicates applied to whichever usage table a query reads.

Raw records filter on `occurred_at`; rollups filter on `bucket_start`. A
`FilterSet` holds predicates by column role and binds them to a concrete
table only when the query is built, so the planner can switch sources
without rebuilding filters.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.sql import Select

from app.core.models import UsageRecord


def time_column(model):
    return model.occurred_at if model is UsageRecord else model.bucket_start


@dataclass(frozen=True)
class TimeRange:
    since: datetime
    until: Optional[datetime] = None

    def clauses(self, model) -> list:
        col = time_column(model)
        out = [col >= self.since]
        if self.until is not None:
            out.append(col <= self.until)
        return out


@dataclass(frozen=True)
class Equals:
    column: str
    value: Any

    def clauses(self, model) -> list:
        return [getattr(model, self.column) == self.value]


@dataclass
class FilterSet:
    time: TimeRange
    predicates: List[Equals] = field(default_factory=list)

    @classmethod
    def build(cls, time: TimeRange, **equals: Any) -> "FilterSet":
        return cls(time=time, predicates=[Equals(k, v) for k, v in equals.items() if v])

    def apply(self, stmt: Select, model, time_only: bool = False) -> Select:
        clauses = self.time.clauses(model)
        if not time_only:
            for predicate in self.predicates:
                clauses.extend(predicate.clauses(model))
        return stmt.where(*clauses)
