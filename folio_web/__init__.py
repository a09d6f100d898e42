"""FastAPI surface of the Folio admin backend."""
