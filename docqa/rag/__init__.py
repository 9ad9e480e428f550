"""RAG (Retrieval-Augmented Generation) retrieval components.

This package contains modules for:
- Normalizing documents from both sources
- Sentence-aware and windowed chunking
- Batched embedding generation
- Persistent index storage with FAISS tables
- Hybrid vector and keyword search
- Document-level retrieval for question answering
"""
