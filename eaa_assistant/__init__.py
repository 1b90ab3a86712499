"""
EAA Assistant

Customer-support chatbot backend for European Accessibility Act compliance
questions.

Pipeline:
- Embed the question (hosted embedding model, cached)
- Retrieve similar document chunks from the vector store (cached)
- Trim chunks and compose an answer with a hosted chat model

Usage:
    from eaa_assistant.common import load_config, ResultCache
    from eaa_assistant.retriever import VectorSearchGateway, AnswerComposer
    from eaa_assistant.chat import AskOrchestrator
"""

__version__ = "0.1.0"
