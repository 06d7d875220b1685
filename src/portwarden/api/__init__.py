# API module - FastAPI web front end
# Encrypt and decrypt endpoints protected by a per-process token
