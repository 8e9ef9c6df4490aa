"""Repository adapters: in-memory (memory) and SQLAlchemy (repositories, tables)."""
