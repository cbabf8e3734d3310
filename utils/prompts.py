"""Prompts for registry document extraction.

The documents are Greek business-registry (ΓΕΜΗ) publications; prompts keep
Greek legal terms verbatim because the model matches on them.
"""

from __future__ import annotations

import json
from typing import Any

_REPRESENTATIVE_RULES = """\
Representatives:
- Include only people with an explicit corporate role: Διαχειριστής, Ομόρρυθμος εταίρος,
  Ετερόρρυθμος εταίρος, Πρόεδρος ΔΣ, Αντιπρόεδρος ΔΣ, Διευθύνων Σύμβουλος, Μέλος ΔΣ, Εταίρος/Μέτοχος.
- Never include lawyers (δικηγόροι), accountants (λογιστές), notaries (συμβολαιογράφοι),
  witnesses (μάρτυρες) or registry officials, even when they sign the document.
- is_active = true for εκλέγεται / διορίζεται / αναλαμβάνει / παραμένει / συνεχίζει or a share > 0%.
- is_active = false for αποχωρεί / παραιτείται / αντικαθίσταται / παύει / λήγει η θητεία
  or when the person transfers all shares (μεταβιβάζει το σύνολο).
- Names: surname first, as written. Tax ids are 9 digits.
- capital_amount and capital_percentage are copied verbatim (e.g. "1.500,00 Ευρώ", "50%").
"""


def initial_extraction_prompt(document_date: str | None) -> str:
    """Prompt for the first document of an entity (no existing snapshot)."""

    return f"""You extract company metadata from Greek business-registry (ΓΕΜΗ) documents.
Read the attached document and fill in the JSON schema.

{_REPRESENTATIVE_RULES}
General:
- Use null for any field that is not explicitly stated or that you are unsure about.
- Keep Greek text in Greek characters. Use only the enum values where an enum is given.
- document_date is the publication date of this document as YYYY-MM-DD.

Document date: {document_date or "Unknown"}
"""


def merge_metadata_prompt(document_date: str | None, existing_snapshot: Any) -> str:
    """Prompt that folds a newer document into the existing snapshot."""

    existing = json.dumps(existing_snapshot, ensure_ascii=False, indent=2)
    return f"""You maintain the cumulative metadata of a Greek company from its registry (ΓΕΜΗ) documents.
The attached document is dated {document_date or "Unknown"} and is newer than everything already merged.

Update the existing metadata below with what this document states:
- Information in this document overrides older conflicting information.
- Keep existing fields and representatives the document does not mention; absence does not mean inactive.
- Merge representatives by person (allow for spelling and genitive variations); each person appears once.
- A person who transfers all shares gets is_active = false and null capital fields.
- Set document_date to this document's date.

{_REPRESENTATIVE_RULES}
Also describe what this document changed:
- structural_changes: changes to representatives, roles, legal form or address (null if none)
- economic_changes: changes to capital or ownership shares (null if none)

EXISTING METADATA:
{existing}

Return the complete updated metadata following the schema.
"""
