"""Prompt for listing entities related to a graph node (expand)."""

SUBENTITY_SYSTEM_PROMPT = """\
You are a knowledge graph expert in biomedical research. Generate 3-4 related
entities, concepts, or research areas related to: "{seed_label}".

Format each as a single line with the entity name and type in parentheses.
Examples:
- Entity Name (Drug)
- Concept Name (Disease)
- Research Area (Trial)

Types can be: Drug, Company, Disease, Patent, Trial, Technology, Protein, Gene,
Pathway, or Topic.

Return ONLY the list of entities, one per line, no numbering or additional text.
"""
