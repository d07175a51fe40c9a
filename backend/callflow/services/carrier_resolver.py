import logging
from typing import Any, Dict, Optional

from ..schemas.pydantic_schemas import CarrierStatus

logger = logging.getLogger(__name__)

ACTIVE = "ACTIVE"


def _label(identifier_kind: str, identifier: str) -> str:
    return f"{identifier_kind} {identifier}"


def classify_carrier(record: Dict[str, Any], identifier_kind: str, identifier: str, fallback_name: Optional[str] = None) -> Optional[CarrierStatus]:
    fmcsa = record.get("fmcsa_data") or {}
    if not isinstance(fmcsa, dict) or not fmcsa:
        return None
    name = record.get("carrier_name") or fallback_name
    authority = fmcsa.get("authority_status")
    insurance = fmcsa.get("insurance_status")
    display = f"{name or 'Carrier'} ({_label(identifier_kind, identifier)})"

    issues = []
    if authority != ACTIVE:
        issues.append(f"Authority: {authority or 'UNKNOWN'}")
    if insurance != ACTIVE:
        issues.append(f"Insurance: {insurance or 'UNKNOWN'}")

    if not issues:
        return CarrierStatus(check="verified", identifier=identifier, carrier_name=name,
                             note=f"{display} - VERIFIED ACTIVE & INSURED")
    return CarrierStatus(check="flagged", identifier=identifier, carrier_name=name, issues=issues,
                         note=f"{display} - {', '.join(issues)}")


def pending_status(usdot: Optional[str], mc: Optional[str], carrier_name: Optional[str]) -> CarrierStatus:
    parts = [p for p in (carrier_name, usdot and f"DOT {usdot}", mc and f"MC {mc}") if p]
    return CarrierStatus(
        check="pending",
        identifier=usdot or mc or "",
        carrier_name=carrier_name,
        note=f"Carrier mentioned: {' '.join(parts)} - Status pending lookup",
    )


def resolve_carrier(db, usdot: Optional[str], mc: Optional[str], carrier_name: Optional[str] = None) -> Optional[CarrierStatus]:
    """Classify an extracted DOT/MC from the cached carrier record; never calls out to a registry."""
    if not usdot and not mc:
        return None
    try:
        record = db.get_carrier_record(usdot=usdot, mc=mc)
    except Exception as e:
        logger.error(f"Carrier cache lookup failed for DOT={usdot} MC={mc}: {e}")
        return None

    if record:
        if usdot and str(record.get("usdot")) == str(usdot):
            status = classify_carrier(record, "DOT", usdot, carrier_name)
        else:
            status = classify_carrier(record, "MC", mc or usdot, carrier_name)
        if status is not None:
            logger.info(f"Carrier status from cache: {status.check} ({status.note})")
            return status

    status = pending_status(usdot, mc, carrier_name)
    logger.info(f"No cached carrier data: {status.note}")
    return status
