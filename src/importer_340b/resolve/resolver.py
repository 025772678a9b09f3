"""Cached find-or-create resolution of reference entities.

One ReferenceResolver lives for one import run. Its cache guarantees that a
natural key costs at most one storage lookup and at most one creation per
run; storage-side uniqueness on the natural key covers concurrent runs.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from importer_340b.errors import DuplicateRecordError, StorageError, StorageUnavailableError
from importer_340b.models import EntityType, ReferenceDataCreated, ReferenceEntity
from importer_340b.resolve.references import ReferenceRequest
from importer_340b.store.base import ReferenceStore

logger = logging.getLogger(__name__)

# Covered entities come before locations so a location can link to its entity
RESOLUTION_ORDER = (
    EntityType.COVERED_ENTITY,
    EntityType.PHARMACY,
    EntityType.PRESCRIBER,
    EntityType.LOCATION,
    EntityType.DRUG,
    EntityType.PATIENT,
    EntityType.INSURANCE_PLAN,
)

EntityRef = tuple[EntityType, str]


def entity_ref(entity: ReferenceEntity) -> EntityRef:
    return entity.entity_type, entity.natural_key


@dataclass
class ResolutionOutcome:
    """Surrogate ids and failures for the distinct keys of one batch."""

    ids: dict[EntityRef, str] = field(default_factory=dict)
    failures: dict[EntityRef, str] = field(default_factory=dict)

    def id_for(self, entity: ReferenceEntity) -> str | None:
        return self.ids.get(entity_ref(entity))

    def failure_for(self, entity: ReferenceEntity) -> str | None:
        return self.failures.get(entity_ref(entity))


class ReferenceResolver:
    """Resolve reference entities to surrogate ids, creating missing ones.

    Attributes:
        created: Entities this resolver created, per type. Reused entities
            are not counted.
    """

    def __init__(self, store: ReferenceStore) -> None:
        self._store = store
        self._cache: dict[EntityType, dict[str, str]] = {t: {} for t in EntityType}
        self.created = ReferenceDataCreated()

    def cached_id(self, entity: ReferenceEntity) -> str | None:
        return self._cache[entity.entity_type].get(entity.natural_key)

    def resolve(self, entity: ReferenceEntity) -> str:
        """Return the surrogate id for ``entity``, creating it if needed.

        Raises:
            StorageUnavailableError: If the store cannot be reached.
            StorageError: If the lookup or creation fails for this entity.
        """
        cache = self._cache[entity.entity_type]
        key = entity.natural_key
        if key in cache:
            return cache[key]

        entity_id = self._store.find_by_natural_key(entity.entity_type, key)
        if entity_id is None:
            try:
                entity_id = self._store.create(entity)
                self.created.increment(entity.entity_type)
                logger.debug(f"Created {entity.entity_type.value} {key}")
            except DuplicateRecordError:
                # Another run created it between our lookup and insert
                logger.info(f"Lost creation race for {entity.entity_type.value} {key}; reusing")
                entity_id = self._store.find_by_natural_key(entity.entity_type, key)
                if entity_id is None:
                    raise StorageError(
                        f"{entity.entity_type.value} {key} reported as duplicate but not found"
                    ) from None

        cache[key] = entity_id
        return entity_id

    def resolve_all(self, requests: Iterable[ReferenceRequest]) -> ResolutionOutcome:
        """Resolve the distinct natural keys named by ``requests``.

        Keys are resolved entity type by entity type in RESOLUTION_ORDER. A
        failure is recorded against its key and does not stop the others.

        Raises:
            StorageUnavailableError: If the store becomes unreachable.
        """
        outcome = ResolutionOutcome()
        ordered = sorted(requests, key=lambda r: RESOLUTION_ORDER.index(r.entity.entity_type))

        for request in ordered:
            ref = entity_ref(request.entity)
            if ref in outcome.ids or ref in outcome.failures:
                continue

            entity = request.entity
            if request.parent is not None and request.link_field:
                parent_id = outcome.id_for(request.parent)
                if parent_id is not None:
                    entity = replace(entity, **{request.link_field: parent_id})

            try:
                outcome.ids[ref] = self.resolve(entity)
            except StorageUnavailableError:
                raise
            except StorageError as e:
                logger.warning(f"Could not resolve {ref[0].value} {ref[1]}: {e}")
                outcome.failures[ref] = str(e)

        if outcome.failures:
            logger.warning(f"{len(outcome.failures)} reference keys failed to resolve")
        return outcome
