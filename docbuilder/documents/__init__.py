"""Document services.

Modules:
    content_extractor  - stored file URL -> text (PDF via pypdf, DOCX via python-docx)
    template_filler    - DOCX template + {key: value} -> filled DOCX (Jinja2)
    field_extractor    - field-prompt config + documents -> extracted values (LLM)
    doc_chat           - question answering over selected documents (LLM)
"""
