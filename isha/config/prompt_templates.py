"""
Isha - Prompt Templates
========================
Centralised prompt management for the RAG engine.  All prompts live here
so they can be versioned and reviewed independently of application
logic.

Exports
-------
SYSTEM_PROMPT, RAG_PROMPT_TEMPLATE, CONTEXT_HEADER, CONTEXT_ENTRY_TEMPLATE,
NO_CONTEXT_SENTINEL.
"""

# ══════════════════════════════════════════════════════════════════════
#  SYSTEM PROMPT
# ══════════════════════════════════════════════════════════════════════

SYSTEM_PROMPT: str = """You are Isha, a calm and thoughtful AI assistant with access to a knowledge base of documents.

When answering questions, use the provided context from the documents to give accurate and helpful responses.
If the context doesn't contain relevant information, say so clearly and honestly.
Cite the source documents when possible.
Keep your answers clear, warm and concise."""


# ══════════════════════════════════════════════════════════════════════
#  RAG PROMPT
# ══════════════════════════════════════════════════════════════════════
# Sent as the single user message.  Placeholders: {context}, {question}.

RAG_PROMPT_TEMPLATE: str = "Context:\n{context}\n\nQuestion: {question}\n\nAnswer:"


# ══════════════════════════════════════════════════════════════════════
#  CONTEXT ASSEMBLY
# ══════════════════════════════════════════════════════════════════════

NO_CONTEXT_SENTINEL: str = "No relevant documents found in the knowledge base."

CONTEXT_HEADER: str = "Based on the following documents:\n\n"

# Placeholders: {index}, {relevance}, {source}, {text}.  {source} is
# either empty or ", from: <filename>".
CONTEXT_ENTRY_TEMPLATE: str = "Document {index} ({relevance}% relevant{source}):\n{text}\n\n"
