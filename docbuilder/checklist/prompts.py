"""Assessment prompts for the two checklist variants.

compliance  - the model must answer with a JSON object
              {"complianceStatus": "Y|N|NA", "location": ..., "comments": ...}
submission  - the model answers "Assessment: <verdict>" then "Explanation: <text>"
"""

from docbuilder.checklist.models import COMPLIANCE, ChecklistItem, ChecklistVariant
from docbuilder.documents.content_extractor import combine_documents

COMPLIANCE_SYSTEM_PROMPT = """You are a compliance assessment expert for medical devices.
Analyze the documents to determine if they meet the following requirement:
{requirement}

The applied standards are: {applied_standards}

The compliance criteria is: {criteria}

Relevant documents that should be analyzed: {complying_documents}

Use only the document content provided to make your assessment.

You must categorize your assessment as one of these: "Y" for compliant, "N" for non-compliant, or "NA" for not applicable.

Your response MUST be in JSON format with the following structure:
{{
  "complianceStatus": "Y", "N", or "NA",
  "location": "Specific section(s) or page(s) that support compliance (if applicable)",
  "comments": "Detailed explanation of your assessment (100-200 words)"
}}

Return only valid JSON - no markdown formatting or other text."""

COMPLIANCE_USER_PROMPT = """I need to assess compliance for requirement #{label}:
"{requirement}"

Based on the documents: {document_names}

I need to determine if these documents demonstrate compliance with the requirement above.
For this assessment, I need:

1. A compliance status:
   - Use "Y" if the documents show clear compliance
   - Use "N" if the documents indicate non-compliance
   - Use "NA" if compliance cannot be determined from these documents

2. Specific locations in the documents that support this assessment (if any)

3. A detailed explanation (100-200 words) justifying the compliance determination

Document content:
{document_text}

Please format your response ONLY as a JSON object as specified, with no markdown or other text."""

SUBMISSION_SYSTEM_PROMPT = """You are an assistant that assesses compliance of documents against requirements.
You must categorize your assessment as one of these: "compliant", "non-compliant", or "needs-review".
Format your response with "Assessment:" followed by your category, then "Explanation:" followed by your reasoning."""

SUBMISSION_USER_PROMPT = """Requirement: {requirement}
{standards_line}{criteria_line}
Document content:
{document_text}

Please analyze the document content against the requirement and provide your assessment."""


def build_system_prompt(variant: ChecklistVariant, item: ChecklistItem) -> str:
    if variant is COMPLIANCE:
        return COMPLIANCE_SYSTEM_PROMPT.format(
            requirement=item.requirement,
            applied_standards=item.applied_standards or "None specified",
            criteria=item.criteria or "None specified",
            complying_documents=item.complying_documents or "All provided documents",
        )
    return SUBMISSION_SYSTEM_PROMPT


def build_user_prompt(variant: ChecklistVariant, item: ChecklistItem,
                      documents: dict) -> str:
    """User prompt with the full text of every document in {name: text}."""
    document_text = combine_documents(documents)
    if variant is COMPLIANCE:
        return COMPLIANCE_USER_PROMPT.format(
            label=item.label,
            requirement=item.requirement,
            document_names=", ".join(documents),
            document_text=document_text,
        )
    return SUBMISSION_USER_PROMPT.format(
        requirement=item.requirement,
        standards_line=f"Applied standards: {item.applied_standards}\n" if item.applied_standards else "",
        criteria_line=f"Criteria: {item.criteria}\n" if item.criteria else "",
        document_text=document_text,
    )
