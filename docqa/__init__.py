"""docqa - hybrid retrieval over shared documents and a documentation site."""
