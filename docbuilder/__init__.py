"""Document Extractor & Builder - service layer.

Sub-packages:
    config     - YAML + environment settings
    llm        - hosted chat-completion gateway (OpenRouter via the openai SDK)
    storage    - blob store, per-kind JSON config store, user file service
    documents  - text extraction, DOCX template filling, field extraction, chat
    checklist  - checklist models, prompts, response parsing, assessment loop
    web        - Flask JSON API
"""

__version__ = "0.4.0"
