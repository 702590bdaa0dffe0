"""
Care Directory Module
=====================
Read-only catalogs shown on the results page (nearby doctors,
teleconsultation doctors, recommended medicines, pharmacies) and the
results builder that turns a finished consultation into an assessment.

The built-in catalogs are demo fixtures. A JSON file named by
``CARE_DIRECTORY_PATH`` can replace any of them; catalogs missing from the
file keep their defaults.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from uuid import uuid4

from dotenv import load_dotenv

from medconsult.conversation import HEALTH_MENTAL, HEALTH_PHYSICAL, SymptomRecord
from medconsult.symptom_classifier import SymptomAnalysis

load_dotenv()
logger = logging.getLogger(__name__)

CATALOG_DOCTORS = "doctors"
CATALOG_TELECONSULT = "teleconsult"
CATALOG_MEDICINES = "medicines"
CATALOG_PHARMACIES = "pharmacies"
CATALOGS = (CATALOG_DOCTORS, CATALOG_TELECONSULT, CATALOG_MEDICINES, CATALOG_PHARMACIES)

# ---------------------------------------------------------------------------
# Default catalogs (demo mode)
# ---------------------------------------------------------------------------
_DEFAULT_DOCTORS: list[dict] = [
    {
        "id": 1,
        "name": "Dr. Priya Sharma",
        "specialization": "General Physician",
        "rating": 4.8,
        "reviews": 245,
        "distance": "0.8 km",
        "availability": "Available Now",
        "consultation_fee": 500,
        "hospital": "Apollo Clinic",
        "address": "Sector 15, Gurgaon",
        "phone": "+91 98765 43210",
    },
    {
        "id": 2,
        "name": "Dr. Rajesh Kumar",
        "specialization": "Internal Medicine",
        "rating": 4.6,
        "reviews": 189,
        "distance": "1.2 km",
        "availability": "Next Available: 2:30 PM",
        "consultation_fee": 600,
        "hospital": "Max Healthcare",
        "address": "DLF Phase 2, Gurgaon",
        "phone": "+91 98765 43211",
    },
    {
        "id": 3,
        "name": "Dr. Anita Patel",
        "specialization": "Family Medicine",
        "rating": 4.9,
        "reviews": 312,
        "distance": "1.5 km",
        "availability": "Available Today",
        "consultation_fee": 450,
        "hospital": "Fortis Hospital",
        "address": "Sector 44, Gurgaon",
        "phone": "+91 98765 43212",
    },
]

_DEFAULT_TELECONSULT: list[dict] = [
    {
        "id": 1,
        "name": "Dr. Amit Singh",
        "specialization": "General Physician",
        "rating": 4.7,
        "reviews": 156,
        "availability": "Available Now",
        "consultation_fee": 300,
        "languages": ["English", "Hindi"],
        "experience": "8 years",
    },
    {
        "id": 2,
        "name": "Dr. Meera Joshi",
        "specialization": "Internal Medicine",
        "rating": 4.8,
        "reviews": 203,
        "availability": "Next Available: 1:00 PM",
        "consultation_fee": 400,
        "languages": ["English", "Hindi", "Marathi"],
        "experience": "12 years",
    },
]

_DEFAULT_MEDICINES: list[dict] = [
    {
        "id": 1,
        "name": "Paracetamol 500mg",
        "generic_name": "Acetaminophen",
        "dosage": "1 tablet every 6 hours",
        "duration": "3-5 days",
        "price": "₹25",
        "prescription": False,
        "side_effects": ["Nausea", "Stomach upset"],
        "contraindications": ["Liver disease"],
    },
    {
        "id": 2,
        "name": "Ibuprofen 400mg",
        "generic_name": "Ibuprofen",
        "dosage": "1 tablet every 8 hours",
        "duration": "3-5 days",
        "price": "₹35",
        "prescription": False,
        "side_effects": ["Stomach irritation", "Dizziness"],
        "contraindications": ["Kidney disease", "Heart conditions"],
    },
]

_DEFAULT_PHARMACIES: list[dict] = [
    {
        "id": 1,
        "name": "Apollo Pharmacy",
        "distance": "0.5 km",
        "rating": 4.5,
        "address": "Sector 14, Gurgaon",
        "phone": "+91 98765 43220",
        "hours": "24/7",
        "delivery": True,
        "in_stock": True,
    },
    {
        "id": 2,
        "name": "MedPlus",
        "distance": "0.7 km",
        "rating": 4.3,
        "address": "DLF Phase 1, Gurgaon",
        "phone": "+91 98765 43221",
        "hours": "8 AM - 10 PM",
        "delivery": True,
        "in_stock": True,
    },
    {
        "id": 3,
        "name": "1mg Store",
        "distance": "1.1 km",
        "rating": 4.6,
        "address": "Sector 29, Gurgaon",
        "phone": "+91 98765 43222",
        "hours": "9 AM - 9 PM",
        "delivery": False,
        "in_stock": False,
    },
]

# ---------------------------------------------------------------------------
# Assessment content
# ---------------------------------------------------------------------------
CONDITIONS = {
    HEALTH_PHYSICAL: "Tension Headache with Mild Fever",
    HEALTH_MENTAL: "Mild Anxiety with Sleep Disturbance",
}
ASSESSMENT_CONFIDENCE = 85
ASSESSMENT_SEVERITY = "Mild to Moderate"

RECOMMENDATIONS = [
    "Rest and adequate hydration",
    "Over-the-counter pain relief if needed",
    "Monitor symptoms for 24-48 hours",
    "Consult a doctor if symptoms worsen",
]

RED_FLAGS = [
    "Severe or worsening headache",
    "High fever (>101°F)",
    "Neck stiffness",
    "Vision changes",
]

MEDICAL_DISCLAIMER = (
    "This assessment is for informational purposes only and is not a medical "
    "diagnosis. Always consult a qualified healthcare professional."
)


class CareDirectory:
    """Read-only catalogs for the results page.

    Every accessor returns a deep copy, so callers cannot change the
    catalogs shared across sessions.

    Attributes:
        source: Path of the JSON file the catalogs were loaded from, or None
            for the built-in demo catalogs.
    """

    def __init__(
        self,
        doctors: Optional[list[dict]] = None,
        teleconsult: Optional[list[dict]] = None,
        medicines: Optional[list[dict]] = None,
        pharmacies: Optional[list[dict]] = None,
        source: Optional[str] = None,
    ) -> None:
        self._catalogs: dict[str, list[dict]] = {
            CATALOG_DOCTORS: copy.deepcopy(_DEFAULT_DOCTORS if doctors is None else doctors),
            CATALOG_TELECONSULT: copy.deepcopy(
                _DEFAULT_TELECONSULT if teleconsult is None else teleconsult
            ),
            CATALOG_MEDICINES: copy.deepcopy(_DEFAULT_MEDICINES if medicines is None else medicines),
            CATALOG_PHARMACIES: copy.deepcopy(
                _DEFAULT_PHARMACIES if pharmacies is None else pharmacies
            ),
        }
        self.source = source

    @classmethod
    def from_file(cls, path: str | Path) -> "CareDirectory":
        """Load catalogs from a JSON object keyed by catalog name.

        Raises:
            OSError: If the file cannot be read.
            ValueError: If the file is not valid JSON or a catalog is not a list.
        """
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"Care directory file {path} must contain a JSON object")

        catalogs: dict[str, list[dict]] = {}
        for name in CATALOGS:
            if name not in data:
                continue
            if not isinstance(data[name], list):
                raise ValueError(f"Catalog '{name}' in {path} must be a list")
            catalogs[name] = data[name]

        unknown = sorted(set(data) - set(CATALOGS))
        if unknown:
            logger.warning("Ignoring unknown catalogs in %s: %s", path, ", ".join(unknown))
        logger.info("Care directory loaded from %s (%d catalog(s)).", path, len(catalogs))
        return cls(**catalogs, source=str(path))

    @classmethod
    def from_env(cls) -> "CareDirectory":
        """Catalogs from ``CARE_DIRECTORY_PATH``, or the demo catalogs.

        An unreadable or malformed file is logged and the demo catalogs are
        used instead.
        """
        path = os.getenv("CARE_DIRECTORY_PATH", "")
        if not path:
            logger.info("CARE_DIRECTORY_PATH not set. Using demo care directory.")
            return cls()
        try:
            return cls.from_file(path)
        except (OSError, ValueError) as exc:
            logger.error("Failed to load care directory from %s: %s", path, exc)
            return cls()

    @property
    def is_demo(self) -> bool:
        return self.source is None

    def catalog(self, name: str) -> list[dict]:
        """Copy of one catalog.

        Raises:
            KeyError: If ``name`` is not one of ``CATALOGS``.
        """
        return copy.deepcopy(self._catalogs[name])

    def nearby_doctors(self) -> list[dict]:
        return self.catalog(CATALOG_DOCTORS)

    def teleconsult_doctors(self) -> list[dict]:
        return self.catalog(CATALOG_TELECONSULT)

    def medicines(self) -> list[dict]:
        return self.catalog(CATALOG_MEDICINES)

    def pharmacies(self) -> list[dict]:
        return self.catalog(CATALOG_PHARMACIES)


def build_results(
    record: SymptomRecord,
    directory: CareDirectory,
    analysis: Optional[SymptomAnalysis] = None,
) -> dict:
    """Build the results page content for a finished consultation.

    Args:
        record: SymptomRecord from ``ConversationDriver.proceed()``.
        directory: Catalogs to list alongside the assessment.
        analysis: Classification of the first message, if available.

    Returns:
        Results dict with the assessment and the directory listings.
    """
    now = datetime.now(timezone.utc)
    report_id = f"CR-{now.strftime('%Y')}-{uuid4().hex[:4].upper()}"

    results = {
        "report_id": report_id,
        "timestamp": now.isoformat(),
        "health_type": record.health_type,
        "language": record.language,
        "input_method": record.input_method,
        "symptoms": record.combined_symptom_text,
        "condition": CONDITIONS[record.health_type],
        "confidence": ASSESSMENT_CONFIDENCE,
        "severity": ASSESSMENT_SEVERITY,
        "recommendations": list(RECOMMENDATIONS),
        "red_flags": list(RED_FLAGS),
        "urgency_level": analysis.urgency_level if analysis else None,
        "suggested_actions": list(analysis.suggested_actions) if analysis else [],
        "disclaimer": MEDICAL_DISCLAIMER,
        "doctors": directory.nearby_doctors(),
        "teleconsult": directory.teleconsult_doctors(),
        "medicines": directory.medicines(),
        "pharmacies": directory.pharmacies(),
    }

    logger.info(
        "Results built: %s (%s, urgency=%s).",
        report_id,
        record.health_type,
        results["urgency_level"],
    )
    return results


def report_text(results: dict) -> str:
    """Plain-text consultation report for download."""
    lines = [
        "MedConsult Consultation Report",
        f"Report ID: {results['report_id']}",
        f"Date: {results['timestamp']}",
        "",
        f"Health type: {results['health_type']}",
        f"Symptoms: {results['symptoms']}",
        f"Possible condition: {results['condition']}",
        f"Confidence: {results['confidence']}%",
        f"Severity: {results['severity']}",
    ]
    if results.get("urgency_level"):
        lines.append(f"Urgency: {results['urgency_level']}")

    lines += ["", "Recommendations:"]
    lines += [f"  - {item}" for item in results["recommendations"] + results["suggested_actions"]]
    lines += ["", "Seek immediate care if you notice:"]
    lines += [f"  - {flag}" for flag in results["red_flags"]]

    lines += ["", "Nearby doctors:"]
    lines += [
        f"  - {doc.get('name', '')}, {doc.get('specialization', '')} ({doc.get('phone', '')})"
        for doc in results["doctors"]
    ]
    lines += ["", "Pharmacies:"]
    lines += [
        f"  - {shop.get('name', '')}, {shop.get('address', '')} ({shop.get('phone', '')})"
        for shop in results["pharmacies"]
    ]
    lines += ["", results["disclaimer"]]
    return "\n".join(lines) + "\n"
