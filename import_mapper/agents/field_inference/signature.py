"""DSPy signature for the field inference agent."""

import dspy


class FieldInferenceSignature(dspy.Signature):
    """
    Map ambiguous columns of an uploaded product file onto a fixed target schema.

    Each source column comes with its inferred type and a few sample values.
    Use the header text, the sample values and the target field descriptions,
    aliases and formats to decide which target field each column holds.

    MAPPING RULES:
    - Only use target field names exactly as listed
    - Map each source column to at most ONE target field
    - Never map two source columns to the same target field
    - Leave a column out when no target fits; do not guess
    - Confidence is 0-100: 85+ only when header AND values clearly agree,
      50-70 when only one of them supports the mapping

    EXAMPLES:
    A) "Artikelnummer" with values ["AB-1001", "AB-1002"] -> sku
    B) "EAN Code" with values ["4006381333931"] -> gtin
    C) "Internal Flag" with values ["x", ""] -> leave unmapped
    """

    source_fields: str = dspy.InputField(
        desc="JSON array of source columns: name, type, sample_values, null_ratio"
    )
    target_fields: str = dspy.InputField(
        desc="JSON array of target fields: name, type, description, aliases, required, format"
    )

    mappings: str = dspy.OutputField(
        desc='JSON array of objects {"source_field": str, "target_field": str, "confidence": number 0-100, "rationale": str}'
    )
    reasoning: str = dspy.OutputField(
        desc="Brief explanation of the mapping decisions"
    )
