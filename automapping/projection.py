"""
Query projection: turns mapping rules into SQLAlchemy select() statements.

Columns are selected and labelled with destination field names so the
database only returns what the destination needs. Transformers and
conversions cannot run inside the query; they are applied in memory when
rows are materialized.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from sqlalchemy import inspect as sa_inspect, select
from sqlalchemy.orm import Mapper as SAMapper, Session
from sqlalchemy.sql import Select

from automapping.core.errors import ConfigurationError, log_execution_time, type_name
from automapping.core.mapping import AutoMapper
from automapping.core.rules import MappingRule, TypePair
from automapping.core.utils.cache import ThreadSafeCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionPlan:
    """Resolved column selection for one (model, destination) pair."""
    model: type
    dest_type: Any
    rule: MappingRule
    # (destination field name, source attribute name)
    columns: Tuple[Tuple[str, str], ...]

    @property
    def labels(self) -> List[str]:
        return [dest for dest, _ in self.columns]


class QueryProjector:
    """
    Builds and runs projections for the rules registered on a mapper.

    Resolver-backed destination fields, relationships and ignored fields are
    not selected; every other destination field is matched to a column the
    same way the executor matches fields.
    """

    def __init__(self, mapper: AutoMapper):
        """
        Initialize the projector.

        Args:
            mapper: Mapper whose rules drive the projections
        """
        self.mapper = mapper
        self._plans: ThreadSafeCache[TypePair, ProjectionPlan] = ThreadSafeCache("projections")

    def build_plan(self, model: type, dest_type: Any) -> ProjectionPlan:
        """
        Resolve which columns feed which destination fields.

        Args:
            model: SQLAlchemy mapped class
            dest_type: Destination type

        Returns:
            Projection plan

        Raises:
            ConfigurationError: If model is not a mapped class
        """
        orm_mapper = sa_inspect(model, raiseerr=False)
        if not isinstance(orm_mapper, SAMapper):
            raise ConfigurationError(f"{type_name(model)} is not an SQLAlchemy mapped class",
                                     code="not_mapped")

        rule = self.mapper.registry.resolve(model, dest_type) or MappingRule.convention(model, dest_type)

        plan = self._plans.get(rule.pair)
        if plan is not None and plan.rule is rule:
            return plan

        columns_by_key = {attr.key.casefold(): attr.key for attr in orm_mapper.column_attrs}
        columns = []
        for descriptor in self.mapper.registry.metadata.get_metadata(dest_type).writable_fields:
            if rule.resolver_for(descriptor.name) is not None:
                continue
            source_key = columns_by_key.get(rule.source_field_for(descriptor.name).casefold())
            if source_key is None or rule.is_ignored(source_key):
                continue
            columns.append((descriptor.name, source_key))

        plan = ProjectionPlan(model, dest_type, rule, tuple(columns))
        self._plans.set(rule.pair, plan)
        logger.debug(f"Projection plan for {rule.pair}: {plan.labels}")
        return plan

    def project(self, model: type, dest_type: Any) -> Select:
        """
        Build the select() statement for a projection.

        Args:
            model: SQLAlchemy mapped class
            dest_type: Destination type

        Returns:
            Select statement with one labelled column per destination field

        Raises:
            ConfigurationError: If no destination field matches a column
        """
        plan = self.build_plan(model, dest_type)
        if not plan.columns:
            raise ConfigurationError(f"No column of {type_name(model)} feeds {type_name(dest_type)}",
                                     code="empty_projection")
        return select(*[getattr(model, key).label(dest) for dest, key in plan.columns])

    def materialize(self, rows: Iterable[Any], plan: ProjectionPlan) -> Iterator[Any]:
        """
        Build destination objects from projected rows.

        Args:
            rows: Result rows of the statement returned by project()
            plan: Plan the statement was built from

        Yields:
            Destination objects
        """
        row_rule = plan.rule.narrow(dict, plan.dest_type)
        for row in rows:
            values: Dict[str, Any] = dict(row._mapping)
            for dest, key in plan.columns:
                transformer = plan.rule.transformer_for(key)
                if transformer is not None and values.get(dest) is not None:
                    values[dest] = transformer(values[dest])
            yield self.mapper.executor.map(values, plan.dest_type, rule=row_rule)

    @log_execution_time
    def fetch(self, session: Session, model: type, dest_type: Any, *criteria) -> List[Any]:
        """
        Run a projection and map the results.

        Args:
            session: SQLAlchemy session
            model: SQLAlchemy mapped class
            dest_type: Destination type
            *criteria: Optional WHERE clauses

        Returns:
            List of destination objects
        """
        statement = self.project(model, dest_type)
        if criteria:
            statement = statement.where(*criteria)
        plan = self.build_plan(model, dest_type)
        return list(self.materialize(session.execute(statement), plan))
