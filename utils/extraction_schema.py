"""Response schemas passed to the extraction service.

Gemini accepts an OpenAPI-style subset; optional values are expressed with
``nullable`` rather than union types.
"""

from __future__ import annotations

import copy

STRUCTURAL_CHANGES_KEY = "structural_changes"
ECONOMIC_CHANGES_KEY = "economic_changes"
DELTA_KEYS: tuple[str, ...] = (STRUCTURAL_CHANGES_KEY, ECONOMIC_CHANGES_KEY)

COMPANY_TYPES: list[str] = [
    "ΑΕ (Ανώνυμη Εταιρία)",
    "ΕΠΕ (Εταιρία Περιορισμένης Ευθύνης)",
    "ΙΚΕ (Ιδιωτική Κεφαλαιουχική Εταιρεία)",
    "ΟΕ (Ομόρρυθμη Εταιρία)",
    "ΕΕ (Ετερόρρυθμη Εταιρία)",
    "ΜΙΚΕ (Μονοπρόσωπη Ιδιωτική Κεφαλαιουχική Εταιρεία)",
    "Ατομική Επιχείρηση",
    "Συνεταιρισμός",
    "Αστική Εταιρία",
    "Υποκατάστημα Αλλοδαπής",
    "Άλλο",
]


def _nullable_string(description: str) -> dict:
    return {"type": "string", "nullable": True, "description": description}


REPRESENTATIVE_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "name": {
            "type": "string",
            "description": "Full name, surname first, as written in the document.",
        },
        "role": _nullable_string("Role exactly as stated (e.g. Διαχειριστής, Μέλος ΔΣ)."),
        "is_active": {
            "type": "boolean",
            "description": "True if the person holds the role after this document.",
        },
        "tax_id": _nullable_string("9-digit tax id (ΑΦΜ) if stated."),
        "capital_amount": _nullable_string("Capital share amount, e.g. '1.500,00 Ευρώ'."),
        "capital_percentage": _nullable_string("Capital share percentage, e.g. '50%'."),
    },
    "required": ["name", "is_active"],
}


SNAPSHOT_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "gemi_id": _nullable_string("Registry (ΓΕΜΗ) number of the company."),
        "company_tax_id": _nullable_string("Company tax id (ΑΦΜ)."),
        "company_name": _nullable_string("Registered company name."),
        "representatives": {
            "type": "array",
            "items": REPRESENTATIVE_SCHEMA,
            "description": "Legal representatives, partners and board members. One entry per person.",
        },
        "registered_address": _nullable_string("Registered office street address."),
        "company_type": {
            "type": "string",
            "nullable": True,
            "enum": COMPANY_TYPES,
            "description": "Legal form of the company.",
        },
        "competent_gemi_office": _nullable_string("Chamber / registry office responsible for the company."),
        "region": _nullable_string("Region (Περιφέρεια)."),
        "city": _nullable_string("City."),
        "postal_code": _nullable_string("Postal code."),
        "document_date": _nullable_string("Document date as YYYY-MM-DD."),
    },
    "required": ["representatives"],
}


def _build_merge_schema() -> dict:
    schema = copy.deepcopy(SNAPSHOT_SCHEMA)
    schema["properties"][STRUCTURAL_CHANGES_KEY] = _nullable_string(
        "Changes this document makes to structure: representatives, roles, "
        "legal form, address. Null if none."
    )
    schema["properties"][ECONOMIC_CHANGES_KEY] = _nullable_string(
        "Changes this document makes to capital or ownership shares. Null if none."
    )
    return schema


MERGE_SCHEMA: dict = _build_merge_schema()
