"""Prompt for extracting a whole knowledge graph from a research document."""

EXTRACTION_SYSTEM_PROMPT = """\
Analyze the following pharmaceutical intelligence report and extract a
Knowledge Graph representing key entities.

<document>
{document_text}
</document>

Extract:
- Drugs / Molecules / Products
- Companies / Sponsors / Competitors
- Diseases / Indications
- Patents / Regulations / Trials

Return 'nodes' (id, label, group) and 'links' (source, target, relation).
Groups:
1 = Drug/Product
2 = Company/Sponsor
3 = Disease/Indication
4 = Patent/Regulation/Trial

Source and target in links must match node ids.
"""
