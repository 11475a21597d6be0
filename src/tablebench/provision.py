# Copyright (c) Syntropy Systems
"""Dataset provisioning: one physical copy of the dataset per variant."""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from pydantic import ValidationError

from tablebench.errors import BackendError, ConfigurationError, ProvisioningError
from tablebench.identifiers import is_identifier
from tablebench.models.bench import Variant, VariantSpec

if TYPE_CHECKING:
    from tablebench.backends import Backend

logger = logging.getLogger(__name__)

SpecLike = Union[VariantSpec, Mapping[str, object]]


def physical_name_for(source: str, variant_id: str) -> str:
    """Name of the table holding a variant's copy of source."""
    return f"{source}__{variant_id}"


@dataclass
class Provisioned:
    """Variants that were materialized, plus the ones that were not."""

    variants: list[Variant] = field(default_factory=list)
    errors: list[ProvisioningError] = field(default_factory=list)

    def get(self, variant_id: str) -> Variant | None:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


def validate_specs(variant_specs: Sequence[SpecLike]) -> list[VariantSpec]:
    """Check variant specs without touching the database.

    Raises ConfigurationError for an empty list, an unknown strategy,
    missing strategy options or duplicate ids.
    """
    if not variant_specs:
        msg = "At least one variant spec is required"
        raise ConfigurationError(msg)

    specs: list[VariantSpec] = []
    for raw in variant_specs:
        if isinstance(raw, VariantSpec):
            specs.append(raw)
            continue
        try:
            specs.append(VariantSpec.model_validate(raw))
        except ValidationError as e:
            label = raw.get("id", "?") if isinstance(raw, Mapping) else "?"
            msg = f"Invalid variant spec '{label}': {e.errors()[0]['msg']}"
            raise ConfigurationError(msg) from e

    seen: set[str] = set()
    for spec in specs:
        if spec.id in seen:
            msg = f"Duplicate variant id: {spec.id}"
            raise ConfigurationError(msg)
        seen.add(spec.id)
    return specs


class DatasetProvisioner:
    """Materializes variants through a backend and drops them afterwards."""

    backend: Backend

    def __init__(self, backend: Backend) -> None:
        self.backend = backend

    def provision(self, source: str, variant_specs: Sequence[SpecLike]) -> Provisioned:
        """Create one physical copy of source per spec.

        A variant that fails to materialize is reported in the result's
        errors; the remaining variants are still provisioned.
        """
        specs = validate_specs(variant_specs)
        if not is_identifier(source):
            msg = f"Invalid dataset table name: {source!r}"
            raise ConfigurationError(msg)

        source_rows = self.backend.count_rows(source)
        if source_rows == 0:
            msg = f"Dataset '{source}' is missing or empty"
            raise ConfigurationError(msg)

        result = Provisioned()
        for spec in specs:
            physical_name = physical_name_for(source, spec.id)
            logger.info(
                "Provisioning %s (%s) as %s", spec.id, spec.strategy, physical_name
            )
            try:
                row_count = self.backend.materialize(source, physical_name, spec)
            except BackendError as e:
                error = ProvisioningError(spec.id, str(e))
                logger.warning("%s", error)
                result.errors.append(error)
                continue

            if row_count != source_rows:
                logger.warning(
                    "Variant %s holds %d rows, dataset has %d",
                    spec.id,
                    row_count,
                    source_rows,
                )
            result.variants.append(
                Variant(
                    id=spec.id,
                    strategy=spec.strategy,
                    physical_name=physical_name,
                    source=source,
                    key_columns=spec.key_columns,
                    row_count=row_count,
                )
            )
        return result

    def teardown(self, variants: Sequence[Variant]) -> None:
        """Drop every provisioned copy. Failures are logged, not raised."""
        for variant in variants:
            try:
                self.backend.drop(variant.physical_name)
            except BackendError as e:
                logger.warning("Could not drop %s: %s", variant.physical_name, e)
