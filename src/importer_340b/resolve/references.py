"""Reference extraction from candidate records.

Turns a validated prescription or claim into the reference entities it
implies, one ReferenceRequest per reference role. Each builder derives the
entity's natural key through ``resolve.keys`` so lookup and creation always
agree.
"""

from dataclasses import dataclass
from typing import Any

from importer_340b.ingest.normalizers import digits_only, normalize_ndc, parse_date, to_number
from importer_340b.models import (
    CoveredEntity,
    Drug,
    InsurancePlan,
    Location,
    ParsedClaim,
    ParsedPrescription,
    Patient,
    Pharmacy,
    Prescriber,
    ReferenceEntity,
)
from importer_340b.resolve import keys

# Reference roles, in the order their ids appear on a normalized record
PRESCRIPTION_ROLES = (
    "covered_entity_id",
    "pharmacy_id",
    "prescriber_id",
    "location_id",
    "drug_id",
    "patient_id",
    "primary_insurance_id",
    "secondary_insurance_id",
)
CLAIM_ROLES = (
    "covered_entity_id",
    "pharmacy_id",
    "prescriber_id",
    "drug_id",
    "patient_id",
)


@dataclass(frozen=True)
class ReferenceRequest:
    """One reference a record needs resolved.

    Attributes:
        role: Id column on the normalized record, e.g. ``pharmacy_id``.
        field: Operator-facing field name used in resolution errors.
        entity: Entity to find or create.
        parent: Entity whose resolved id is linked onto ``entity``.
        link_field: Attribute of ``entity`` that receives the parent's id.
    """

    role: str
    field: str
    entity: ReferenceEntity
    parent: ReferenceEntity | None = None
    link_field: str | None = None


# ============ ENTITY BUILDERS ============


def build_covered_entity(
    identifier: str | None,
    entity_name: str | None = None,
    *,
    opaid: str | None = None,
    organization_identifier: str | None = None,
) -> CoveredEntity | None:
    key = keys.covered_entity_key(identifier, entity_name)
    if key is None:
        return None
    return CoveredEntity(
        natural_key=key,
        entity_name=entity_name or identifier or "Unknown",
        opaid=opaid,
        organization_identifier=organization_identifier,
    )


def build_pharmacy(
    pharmacy_name: str | None,
    npi: str | None,
    nabp: str | None,
    chain_pharmacy: str | None = None,
) -> Pharmacy | None:
    key = keys.pharmacy_key(npi, nabp, pharmacy_name)
    if key is None:
        return None
    return Pharmacy(
        natural_key=key,
        pharmacy_name=pharmacy_name or "Unknown",
        npi_number=digits_only(npi) or None,
        nabp_number=nabp,
        chain_pharmacy=chain_pharmacy,
    )


def build_prescriber(
    last_name: str | None,
    first_name: str | None,
    npi: str | None,
    dea: str | None,
    middle_name: str | None = None,
    suffix: str | None = None,
) -> Prescriber | None:
    key = keys.prescriber_key(npi, dea, last_name, first_name)
    if key is None:
        return None
    return Prescriber(
        natural_key=key,
        last_name=last_name or "Unknown",
        first_name=first_name,
        middle_name=middle_name,
        suffix=suffix,
        npi=digits_only(npi) or None,
        dea_number=dea,
    )


def build_location(location_identifier: str | None, location_name: str | None) -> Location | None:
    key = keys.location_key(location_identifier, location_name)
    if key is None:
        return None
    return Location(
        natural_key=key,
        location_name=location_name or location_identifier or "Unknown",
        location_identifier=location_identifier,
    )


def build_drug(ndc: Any, **attributes: Any) -> Drug | None:
    """Build a drug keyed by its NDC; other attributes pass through."""
    key = keys.drug_key(ndc)
    if key is None:
        return None
    package_size = to_number(attributes.pop("package_size", None))
    if not isinstance(package_size, (int, float)):
        package_size = None
    return Drug(
        natural_key=key,
        ndc_code=normalize_ndc(ndc) or "",
        package_size=package_size,
        **attributes,
    )


def build_patient(
    first_name: str | None,
    last_name: str | None,
    date_of_birth: Any,
    *,
    mrn: str | None = None,
    external_id: str | None = None,
    middle_name: str | None = None,
    suffix: str | None = None,
    gender: str | None = None,
) -> Patient | None:
    key = keys.patient_key(mrn, external_id, last_name, first_name, date_of_birth)
    if key is None:
        return None
    return Patient(
        natural_key=key,
        first_name=first_name or "Unknown",
        last_name=last_name or "Unknown",
        middle_name=middle_name,
        suffix=suffix,
        date_of_birth=parse_date(date_of_birth),
        gender=gender,
        mrn=mrn,
        patient_id_external=external_id,
    )


def build_insurance_plan(
    insurance_company: str | None,
    bin_number: str | None,
    pcn: str | None,
    plan_group: str | None = None,
    *,
    is_medicaid: bool = False,
    is_primary: bool = True,
) -> InsurancePlan | None:
    key = keys.insurance_plan_key(insurance_company, bin_number, pcn)
    if key is None:
        return None
    return InsurancePlan(
        natural_key=key,
        insurance_company=insurance_company or "Unknown",
        bin=bin_number,
        pcn=pcn,
        plan_group=plan_group,
        is_medicaid=is_medicaid,
        is_primary=is_primary,
    )


# ============ EXTRACTION PER RECORD KIND ============


def _requests(*candidates: tuple[str, str, ReferenceEntity | None]) -> list[ReferenceRequest]:
    return [
        ReferenceRequest(role=role, field=field_name, entity=entity)
        for role, field_name, entity in candidates
        if entity is not None
    ]


def prescription_references(prescription: ParsedPrescription) -> list[ReferenceRequest]:
    """List the references implied by one prescription.

    The location is linked to the prescription's covered entity.
    """
    p = prescription
    covered_entity = build_covered_entity(
        p.organization_identifier,
        organization_identifier=p.organization_identifier,
        opaid=p.organization_identifier,
    )

    requests = _requests(
        ("covered_entity_id", "Organization Identifier", covered_entity),
        (
            "pharmacy_id",
            "Pharmacy",
            build_pharmacy(p.pharmacy_name, p.pharmacy_npi, p.pharmacy_nabp),
        ),
        (
            "prescriber_id",
            "Prescriber",
            build_prescriber(
                p.prescriber_last_name,
                p.prescriber_first_name,
                p.prescriber_npi,
                p.prescriber_dea,
                middle_name=p.prescriber_middle_name,
                suffix=p.prescriber_suffix,
            ),
        ),
    )

    location = build_location(p.location_identifier, p.location_name)
    if location is not None:
        requests.append(
            ReferenceRequest(
                role="location_id",
                field="Location",
                entity=location,
                parent=covered_entity,
                link_field="covered_entity_id" if covered_entity else None,
            )
        )

    requests += _requests(
        (
            "drug_id",
            "NDC",
            build_drug(
                p.ndc_code,
                drug_name=p.medication_name,
                dose=p.dose,
                dose_units=p.dose_units,
                drug_form=p.drug_form,
                route_of_administration=p.route_of_administration,
            ),
        ),
        (
            "patient_id",
            "Patient",
            build_patient(
                p.patient_first_name,
                p.patient_last_name,
                p.patient_dob,
                mrn=p.patient_mrn,
                middle_name=p.patient_middle_name,
                suffix=p.patient_suffix,
            ),
        ),
        (
            "primary_insurance_id",
            "Primary Insurance",
            build_insurance_plan(
                p.primary_insurance_company,
                p.primary_bin,
                p.primary_pcn,
                p.primary_group,
                is_medicaid=p.primary_is_medicaid,
                is_primary=True,
            ),
        ),
        (
            "secondary_insurance_id",
            "Secondary Insurance",
            build_insurance_plan(
                p.secondary_insurance_company,
                p.secondary_bin,
                p.secondary_pcn,
                p.secondary_group,
                is_medicaid=p.secondary_is_medicaid,
                is_primary=False,
            ),
        ),
    )
    return requests


def claim_references(claim: ParsedClaim) -> list[ReferenceRequest]:
    """List the references implied by one claim.

    Claims carry no insurance plan or location references. A patient is only
    referenced when both first and last name are present.
    """
    c = claim
    pharmacy_npi, pharmacy_nabp = keys.split_nabp_npi(c.pharmacy_nabp_npi)
    prescriber_npi, prescriber_dea = keys.split_npi_dea(c.prescriber_npi_dea)
    prescriber_last, prescriber_first = keys.split_prescriber_name(c.prescriber_name)

    patient = None
    if c.first_name and c.last_name:
        patient = build_patient(
            c.first_name,
            c.last_name,
            c.date_of_birth,
            mrn=c.medical_record_number,
            external_id=c.patient_id_external,
            gender=c.gender,
        )

    return _requests(
        (
            "covered_entity_id",
            "Covered Entity",
            build_covered_entity(c.opaid, c.covered_entity_name, opaid=c.opaid),
        ),
        (
            "pharmacy_id",
            "Pharmacy",
            build_pharmacy(c.pharmacy_name, pharmacy_npi, pharmacy_nabp, c.chain_pharmacy),
        ),
        (
            "prescriber_id",
            "Prescriber",
            build_prescriber(prescriber_last, prescriber_first, prescriber_npi, prescriber_dea),
        ),
        (
            "drug_id",
            "NDC",
            build_drug(
                c.ndc,
                drug_name=c.drug_name,
                manufacturer_name=c.manufacturer_name,
                package_size=c.package_size,
                drug_indicator=c.drug_indicator,
            ),
        ),
        ("patient_id", "Patient", patient),
    )
